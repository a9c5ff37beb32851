"""
GPG-capable mail message for gpgmail.

``GpgMessage`` wraps an ``email.message.Message`` and adds GPG mode,
encryption status checks, decryption, verification and delivery.

Example:
    mail = GpgMessage.from_bytes(raw, delivery_method=create_smtp_delivery())
    mail.gpg(encrypt=True, sign=True)
    mail.deliver()

    verified = signed_mail.verify(import_missing_keys=True)
    verified.signature_valid
"""

import logging
from collections.abc import Mapping
from email import message_from_bytes, message_from_string
from email.message import Message
from typing import Any, Optional, Union

from ..common.exceptions import MessageDeliveryError
from ..crypto.engine import GpgEngine, Signature, VerifyResult, create_engine
from ..crypto.hkp import KeyDirectory
from ..crypto.options import GpgOptions
from . import verification
from .delivery import DeliveryHandler, DeliveryStrategy, envelope_recipients
from .mode import GpgMode, disable_gpg, enable_gpg

logger = logging.getLogger(__name__)


class GpgMessage:
    """
    A mail message with OpenPGP support.

    The wrapped message is never modified by decrypt or verify; both
    return new ``GpgMessage`` objects carrying a ``verify_result``.
    """

    def __init__(
        self,
        message: Optional[Message] = None,
        engine: Optional[GpgEngine] = None,
        key_directory: Optional[KeyDirectory] = None,
        delivery_method: Optional[DeliveryStrategy] = None,
        delivery_handler: Optional[DeliveryHandler] = None,
        raise_delivery_errors: bool = True,
        perform_deliveries: bool = True,
    ) -> None:
        """
        Initialize the message.

        Args:
            message: Message to wrap; an empty one when omitted.
            engine: GPG engine; built from settings on first use when omitted.
            key_directory: Source for missing signer keys; a key server
                client is built on demand when omitted.
            delivery_method: Transport used by ``deliver``.
            delivery_handler: Hook that ``deliver`` goes through.
            raise_delivery_errors: Raise transport errors from ``deliver``.
            perform_deliveries: Actually hand the message to the transport.
        """
        self.message = message if message is not None else Message()
        self._engine = engine
        self.key_directory = key_directory
        self.delivery_method = delivery_method
        self.delivery_handler = delivery_handler
        self.raise_delivery_errors = raise_delivery_errors
        self.perform_deliveries = perform_deliveries
        self.raise_encryption_errors: Optional[bool] = None
        self.gpg_mode: Optional[GpgMode] = None
        self.verify_result: Optional[VerifyResult] = None

    @classmethod
    def from_bytes(cls, data: bytes, **kwargs: Any) -> "GpgMessage":
        return cls(message_from_bytes(data), **kwargs)

    @classmethod
    def from_string(cls, data: str, **kwargs: Any) -> "GpgMessage":
        return cls(message_from_string(data), **kwargs)

    @property
    def engine(self) -> GpgEngine:
        if self._engine is None:
            self._engine = create_engine()
        return self._engine

    def __getitem__(self, name: str) -> Optional[str]:
        return self.message[name]

    def __contains__(self, name: str) -> bool:
        return name in self.message

    def get(self, name: str, default: Any = None) -> Any:
        return self.message.get(name, default)

    def as_bytes(self) -> bytes:
        return self.message.as_bytes()

    def as_string(self) -> str:
        return self.message.as_string()

    def __repr__(self) -> str:
        return (
            f"<GpgMessage subject={self.message.get('Subject')!r} "
            f"content_type={self.message.get_content_type()!r}>"
        )

    def derive(
        self, message: Message, verify_result: Optional[VerifyResult] = None
    ) -> "GpgMessage":
        """New message sharing this message's collaborators and delivery flags."""
        derived = GpgMessage(
            message,
            engine=self._engine,
            key_directory=self.key_directory,
            delivery_method=self.delivery_method,
            raise_delivery_errors=self.raise_delivery_errors,
            perform_deliveries=self.perform_deliveries,
        )
        derived.verify_result = verify_result
        return derived

    def gpg(
        self,
        options: Union[GpgOptions, Mapping, bool, None] = None,
        **kwargs: Any,
    ) -> Optional[GpgMode]:
        """
        Get, set or turn off GPG mode.

        Options are ``encrypt`` (default on), ``sign`` (default off) and
        ``sign_as``; anything else is passed to the engine.

            mail.gpg()                      # current GpgMode or None
            mail.gpg(True)                  # encrypt
            mail.gpg(encrypt=True, sign=True)
            mail.gpg(sign_as="jane@doe.com") # sign only
            mail.gpg(False)                 # off

        Returns:
            The current mode when called without arguments, else None.
        """
        if options is None and not kwargs:
            return self.gpg_mode
        if options is False:
            disable_gpg(self)
            return None
        enable_gpg(self, options, **kwargs)
        return None

    def is_encrypted(self) -> bool:
        """True if this message is encrypted."""
        return self.engine.is_encrypted(self.message)

    def is_signed(self) -> bool:
        """True if this message is signed but not encrypted."""
        return self.engine.is_signed(self.message)

    def decrypt(
        self, options: Union[GpgOptions, Mapping, None] = None, **kwargs: Any
    ) -> "GpgMessage":
        """
        Return the decrypted message.

        Pass ``verify=True`` to check signatures as well; the outcome is in
        ``verify_result`` of the returned message. ``import_missing_keys``
        (with ``verify``) fetches unknown signer keys and retries once.
        """
        gpg_options = GpgOptions.coerce(options, **kwargs)
        decrypted, result = verification.decrypt(
            self.engine, self.message, gpg_options, self.key_directory
        )
        return self.derive(decrypted, result)

    def verify(
        self, options: Union[GpgOptions, Mapping, None] = None, **kwargs: Any
    ) -> "GpgMessage":
        """
        Verify signatures.

        Returns a new message with the signature removed and
        ``verify_result`` populated. Use ``import_missing_keys=True`` to
        fetch unknown signer keys and retry once.
        """
        gpg_options = GpgOptions.coerce(options, **kwargs)
        verified, result = verification.verify(
            self.engine, self.message, gpg_options, self.key_directory
        )
        return self.derive(verified, result)

    def import_keys_for_signatures(self, signatures: Optional[list[Signature]] = None) -> list[str]:
        """Fetch and import missing signer keys for ``signatures``."""
        return verification.import_keys_for_signatures(
            signatures or [], self.engine.keyring, self.key_directory
        )

    @property
    def signature_valid(self) -> bool:
        return self.verify_result is not None and self.verify_result.valid

    @property
    def signatures(self) -> tuple[Signature, ...]:
        if self.verify_result is None:
            return ()
        return self.verify_result.signatures

    def deliver(self) -> Any:
        """Deliver through the delivery handler if set, else directly."""
        if self.delivery_handler is not None:
            return self.delivery_handler.deliver_mail(self, self._deliver_now)
        return self._deliver_now()

    def _deliver_now(self) -> Any:
        if not self.perform_deliveries:
            logger.debug("Skipping delivery of %s", self.message.get("Message-ID"))
            return None

        recipients = ", ".join(envelope_recipients(self.message)) or "(no recipients)"
        try:
            if self.delivery_method is None:
                raise MessageDeliveryError(recipients, "no delivery method configured")
            result = self.delivery_method.deliver(self.message)
        except MessageDeliveryError as e:
            if self.raise_delivery_errors:
                raise
            logger.error("Delivery failed: %s", e)
            return None

        logger.info("Delivered message to %s", recipients)
        return result
