"""
Cryptography modules for gpgmail.

This package provides the OpenPGP side of message handling:
- Keyring access and tagged key lookups
- PGP/MIME encryption, decryption, signing, and verification
- HKP key server lookups for missing signer keys
"""

from .engine import (
    GpgEngine,
    Signature,
    VerifyResult,
    create_engine,
    signatures_from,
)
from .hkp import (
    DEFAULT_KEYSERVER,
    KeyDirectory,
    KeyServerClient,
    create_key_server_client,
    keyserver_from_gnupg_home,
    normalize_keyserver_url,
)
from .keyring import (
    KeyLookup,
    KeyLookupStatus,
    Keyring,
    PGPKey,
    create_keyring,
)
from .options import GpgOptions

__all__ = [
    # Engine
    "GpgEngine",
    "Signature",
    "VerifyResult",
    "create_engine",
    "signatures_from",
    # Key server
    "DEFAULT_KEYSERVER",
    "KeyDirectory",
    "KeyServerClient",
    "create_key_server_client",
    "keyserver_from_gnupg_home",
    "normalize_keyserver_url",
    # Keyring
    "KeyLookup",
    "KeyLookupStatus",
    "Keyring",
    "PGPKey",
    "create_keyring",
    # Options
    "GpgOptions",
]
