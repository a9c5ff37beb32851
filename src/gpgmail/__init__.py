"""gpgmail - OpenPGP encryption, signing and verification for email messages."""

from gpgmail.__version__ import (
    __author__,
    __copyright__,
    __description__,
    __license__,
    __title__,
    __version__,
    __version_info__,
    get_version,
    get_version_info,
)
from gpgmail.crypto import GpgEngine, GpgOptions, KeyServerClient, Keyring, Signature, VerifyResult
from gpgmail.mail import GpgMessage, GpgMode

__all__ = [
    "__version__",
    "__version_info__",
    "__title__",
    "__description__",
    "__author__",
    "__license__",
    "__copyright__",
    "get_version",
    "get_version_info",
    "GpgEngine",
    "GpgMessage",
    "GpgMode",
    "GpgOptions",
    "KeyServerClient",
    "Keyring",
    "Signature",
    "VerifyResult",
]
