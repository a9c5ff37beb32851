"""
Mail integration for gpgmail.

This package connects OpenPGP operations to mail messages, including
per-message GPG mode, the delivery hook that protects messages at send
time, and decryption/verification with missing key recovery.
"""

from .delivery import (
    GPG_DELIVERY_HANDLER,
    DeliveryHandler,
    DeliveryStrategy,
    GpgDeliveryHandler,
    MemoryDelivery,
    SMTPDelivery,
    create_smtp_delivery,
)
from .message import GpgMessage
from .mode import GpgMode, disable_gpg, enable_gpg
from .verification import decrypt, import_keys_for_signatures, verify

__all__ = [
    # Message
    "GpgMessage",
    # Mode
    "GpgMode",
    "enable_gpg",
    "disable_gpg",
    # Delivery
    "GPG_DELIVERY_HANDLER",
    "DeliveryHandler",
    "DeliveryStrategy",
    "GpgDeliveryHandler",
    "MemoryDelivery",
    "SMTPDelivery",
    "create_smtp_delivery",
    # Verification
    "decrypt",
    "verify",
    "import_keys_for_signatures",
]
