"""
Custom exceptions for gpgmail.

This module defines all custom exceptions used throughout the package
for better error handling and debugging.
"""

from typing import Any, Optional


class GpgMailError(Exception):
    """Base exception for all gpgmail errors."""

    def __init__(self, message: str,
                 details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


# Configuration Exceptions
class ConfigurationError(GpgMailError):
    """Base exception for configuration-related errors."""


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration value is missing."""

    def __init__(
        self, config_key: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        """
        Initialize missing config error.

        Args:
            config_key: The missing configuration key.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            f"Missing required configuration: '{config_key}'", details)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid config error.

        Args:
            config_key: The configuration key with invalid value.
            value: The invalid value.
            reason: Optional reason why the value is invalid.
            details: Optional dictionary with additional error details.
        """
        message = f"Invalid configuration value for '{config_key}': {value}"
        if reason:
            message += f" - {reason}"
        super().__init__(message, details)
        self.config_key = config_key
        self.value = value
        self.reason = reason


class InvalidOptionsError(GpgMailError):
    """Raised when GPG options cannot be turned into a valid configuration."""


# Email/Message Exceptions
class MessageError(GpgMailError):
    """Base exception for message-related errors."""


class InvalidMessageError(MessageError):
    """Raised when a message is malformed or not in the expected state."""


class MessageDeliveryError(MessageError):
    """Raised when message delivery fails."""

    def __init__(
        self,
        recipient: str,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize message delivery error.

        Args:
            recipient: The intended recipient(s) of the message.
            reason: Optional reason for delivery failure.
            details: Optional dictionary with additional error details.
        """
        message = f"Failed to deliver message to '{recipient}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.recipient = recipient
        self.reason = reason


# Cryptography Exceptions
class CryptoError(GpgMailError):
    """Base exception for cryptography-related errors."""


class EncryptionError(CryptoError):
    """Raised when encryption fails."""


class DecryptionError(CryptoError):
    """Raised when decryption fails."""


class SignatureError(CryptoError):
    """Raised when signing fails."""


class KeyringError(CryptoError):
    """Raised when the local keyring cannot answer a key lookup."""


# Key server Exceptions
class KeyServerError(GpgMailError):
    """Raised when a key server request fails."""

    def __init__(
        self,
        key_id: str,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize key server error.

        Args:
            key_id: Fingerprint or key ID that was requested.
            reason: Optional reason for the failure.
            details: Optional dictionary with additional error details.
        """
        message = f"Key server lookup failed for '{key_id}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.key_id = key_id
        self.reason = reason
