"""
Local OpenPGP keyring for gpgmail.

This module wraps a GnuPG home directory using the python-gnupg library.
The keyring is passed explicitly to the engine and the key server client
so callers and tests decide which keyring gets modified.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

import gnupg

from ..common.config import Settings, get_settings
from ..common.exceptions import CryptoError

logger = logging.getLogger(__name__)


@dataclass
class PGPKey:
    """Information about a PGP key."""

    fingerprint: str
    keyid: str
    type: str
    length: int
    uids: list[str] = field(default_factory=list)
    creation_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    trust: str = "unknown"
    is_expired: bool = False
    is_revoked: bool = False
    can_encrypt: bool = True
    can_sign: bool = True
    subkeys: list[str] = field(default_factory=list)

    @property
    def primary_uid(self) -> str:
        """Get the primary user ID."""
        return self.uids[0] if self.uids else ""

    @property
    def email(self) -> Optional[str]:
        """Extract email from primary UID."""
        uid = self.primary_uid
        if "<" in uid and ">" in uid:
            return uid[uid.index("<") + 1:uid.index(">")]
        return None


class KeyLookupStatus(str, Enum):
    """Outcome of resolving a key in the local keyring."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class KeyLookup:
    """Tagged result of a keyring lookup."""

    status: KeyLookupStatus
    key: Optional[PGPKey] = None
    detail: str = ""

    @classmethod
    def found(cls, key: PGPKey) -> "KeyLookup":
        return cls(KeyLookupStatus.FOUND, key=key)

    @classmethod
    def not_found(cls) -> "KeyLookup":
        return cls(KeyLookupStatus.NOT_FOUND)

    @classmethod
    def error(cls, detail: str) -> "KeyLookup":
        return cls(KeyLookupStatus.ERROR, detail=detail)

    @property
    def is_missing(self) -> bool:
        return self.status is KeyLookupStatus.NOT_FOUND


class Keyring:
    """
    Handle on a GnuPG keyring.

    Looks up and imports keys. The underlying ``gnupg.GPG`` instance is
    shared with the engine through the ``gpg`` attribute.
    """

    def __init__(
        self,
        gnupg_home: Optional[str] = None,
        gpg_binary: str = "gpg",
        use_agent: bool = True,
        keyring: Optional[str] = None,
        gpg: Optional[gnupg.GPG] = None,
    ) -> None:
        """
        Initialize the keyring.

        Args:
            gnupg_home: Path to GnuPG home directory.
            gpg_binary: Path to GPG binary.
            use_agent: Whether to use GPG agent.
            keyring: Path to custom keyring file.
            gpg: Pre-built GPG instance to use instead of creating one.

        Raises:
            CryptoError: If GnuPG cannot be started.
        """
        if gnupg_home:
            self.gnupg_home = gnupg_home
            os.makedirs(gnupg_home, exist_ok=True)
        else:
            self.gnupg_home = os.path.expanduser("~/.gnupg")

        if gpg is not None:
            self.gpg = gpg
            return

        options = []
        if not use_agent:
            options.append("--no-use-agent")
        if keyring:
            options.extend(["--keyring", keyring])

        try:
            self.gpg = gnupg.GPG(
                gnupghome=self.gnupg_home,
                gpgbinary=gpg_binary,
                options=options,
            )
            self.gpg.encoding = "utf-8"
        except (OSError, ValueError, RuntimeError) as e:
            raise CryptoError(f"Failed to initialize GnuPG: {e}")

        logger.info("Initialized keyring with home=%s", self.gnupg_home)

    def lookup(self, key_id: str, secret: bool = False) -> KeyLookup:
        """
        Resolve a key by fingerprint or key ID.

        Args:
            key_id: Key fingerprint or ID.
            secret: If True, look for a secret key.

        Returns:
            KeyLookup tagged FOUND, NOT_FOUND or ERROR.
        """
        if not key_id:
            return KeyLookup.not_found()

        try:
            keys = self.gpg.list_keys(secret=secret, keys=[key_id])
        except (OSError, ValueError) as e:
            return KeyLookup.error(f"Failed to look up key {key_id}: {e}")

        if not keys:
            return KeyLookup.not_found()
        return KeyLookup.found(self._parse_key_data(keys[0]))

    def get_key(self, key_id: str, secret: bool = False) -> Optional[PGPKey]:
        """
        Get a specific key by fingerprint or key ID.

        Returns:
            PGPKey object or None if not found or unreadable.
        """
        lookup = self.lookup(key_id, secret=secret)
        if lookup.status is KeyLookupStatus.ERROR:
            logger.error(lookup.detail)
        return lookup.key

    def _parse_key_data(self, key_data: dict) -> PGPKey:
        """Parse key data from GnuPG into PGPKey object."""
        creation_date = None
        if key_data.get("date"):
            try:
                creation_date = datetime.fromtimestamp(int(key_data["date"]))
            except (ValueError, TypeError):
                pass

        expiration_date = None
        if key_data.get("expires"):
            try:
                expiration_date = datetime.fromtimestamp(
                    int(key_data["expires"]))
            except (ValueError, TypeError):
                pass

        caps = key_data.get("cap", "")

        return PGPKey(
            fingerprint=key_data.get("fingerprint", ""),
            keyid=key_data.get("keyid", ""),
            type=key_data.get("type", ""),
            length=int(key_data.get("length", 0) or 0),
            uids=list(key_data.get("uids", [])),
            creation_date=creation_date,
            expiration_date=expiration_date,
            trust=key_data.get("trust", "unknown"),
            is_expired=key_data.get("trust", "") == "e",
            is_revoked=key_data.get("trust", "") == "r",
            can_encrypt="e" in caps or "E" in caps,
            can_sign="s" in caps or "S" in caps,
            subkeys=[sk[0] for sk in key_data.get("subkeys", [])],
        )

    def import_key(self, key_data: Union[str, bytes]) -> list[PGPKey]:
        """
        Import key material into the keyring.

        Args:
            key_data: ASCII-armored or binary key data.

        Returns:
            List of imported PGPKey objects.

        Raises:
            CryptoError: If nothing could be imported.
        """
        try:
            result = self.gpg.import_keys(key_data)
        except (OSError, ValueError) as e:
            raise CryptoError(f"Failed to import key: {e}")

        fingerprints = [fpr for fpr in result.fingerprints if fpr]
        if not fingerprints:
            reason = (
                result.results[0].get("text", "Unknown error")
                if result.results
                else "No keys found"
            )
            raise CryptoError(f"Failed to import key: {reason}")

        imported_keys = []
        for fingerprint in dict.fromkeys(fingerprints):
            key = self.get_key(fingerprint)
            if key:
                imported_keys.append(key)

        logger.info(
            "Imported %d key(s): %s",
            len(imported_keys),
            ", ".join(k.fingerprint for k in imported_keys),
        )

        return imported_keys


def create_keyring(settings: Optional[Settings] = None) -> Keyring:
    """
    Create a keyring from settings.

    Args:
        settings: Settings instance; the cached settings when omitted.

    Returns:
        Configured Keyring instance.
    """
    if settings is None:
        settings = get_settings()

    gnupg_settings = settings.gnupg
    return Keyring(
        gnupg_home=gnupg_settings.home,
        gpg_binary=gnupg_settings.binary,
        use_agent=gnupg_settings.use_agent,
        keyring=gnupg_settings.keyring,
    )
