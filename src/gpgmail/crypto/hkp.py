"""
HKP key server client for gpgmail.

Fetches public keys by fingerprint or key ID from an HKP/HKPS key server
and imports them into a ``Keyring``.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import requests

from ..common.config import Settings, get_settings
from ..common.exceptions import CryptoError, KeyServerError
from .keyring import Keyring

logger = logging.getLogger(__name__)

DEFAULT_KEYSERVER = "https://keys.openpgp.org"
HKP_PORT = 11371


class KeyDirectory(ABC):
    """A source of public keys that can import them into the local keyring."""

    @abstractmethod
    def fetch_and_import(self, key_id: str) -> bool:
        """
        Fetch the key for ``key_id`` and import it.

        Returns:
            True if a key was imported.
        """


def normalize_keyserver_url(url: str) -> str:
    """
    Turn an hkp:// or hkps:// key server address into an HTTP(S) base URL.

    Args:
        url: Key server address as written in GnuPG configuration.

    Returns:
        Base URL without trailing slash.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    netloc = parts.netloc

    if scheme == "hkp":
        scheme = "http"
        if parts.port is None:
            netloc = f"{netloc}:{HKP_PORT}"
    elif scheme == "hkps":
        scheme = "https"
    elif not scheme:
        # bare host name
        scheme, netloc = "https", parts.path

    path = parts.path if parts.scheme else ""
    return urlunsplit((scheme, netloc, path.rstrip("/"), "", ""))


def keyserver_from_gnupg_home(gnupg_home: str) -> Optional[str]:
    """
    Read the configured key server from dirmngr.conf or gpg.conf.

    Returns:
        The key server address, or None if none is configured.
    """
    for name in ("dirmngr.conf", "gpg.conf"):
        path = os.path.join(gnupg_home, name)
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    words = line.split()
                    if len(words) >= 2 and words[0] == "keyserver":
                        return words[1]
        except OSError as e:
            logger.debug("Could not read %s: %s", path, str(e))
    return None


class KeyServerClient(KeyDirectory):
    """
    Client for the HKP ``op=get`` lookup.

    With ``raise_errors=False`` every lookup or import failure is reported
    as a False result instead of an exception.
    """

    LOOKUP_PATH = "/pks/lookup"

    def __init__(
        self,
        keyring: Keyring,
        keyserver: Optional[str] = None,
        timeout: int = 30,
        raise_errors: bool = True,
        max_key_size: int = 1024 * 1024,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the key server client.

        Args:
            keyring: Keyring that fetched keys are imported into.
            keyserver: Key server address; read from the GnuPG home
                configuration when omitted.
            timeout: Request timeout in seconds.
            raise_errors: Raise KeyServerError instead of returning False.
            max_key_size: Largest accepted response in bytes.
            session: Optional requests session.
        """
        self.keyring = keyring
        if keyserver is None:
            keyserver = keyserver_from_gnupg_home(keyring.gnupg_home) or DEFAULT_KEYSERVER
        self.base_url = normalize_keyserver_url(keyserver)
        self.timeout = timeout
        self.raise_errors = raise_errors
        self.max_key_size = max_key_size
        self.session = session or requests.Session()

    @staticmethod
    def _search_term(key_id: str) -> str:
        key_id = key_id.strip().replace(" ", "")
        if key_id.lower().startswith("0x"):
            return key_id
        return f"0x{key_id}"

    def fetch(self, key_id: str) -> Optional[str]:
        """
        Fetch the ASCII-armored public key for ``key_id``.

        Returns:
            Armored key, or None if the key server does not know the key.

        Raises:
            KeyServerError: If the request fails or the response is unusable.
        """
        try:
            response = self.session.get(
                f"{self.base_url}{self.LOOKUP_PATH}",
                params={"op": "get", "options": "mr", "search": self._search_term(key_id)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise KeyServerError(key_id, str(e), {"keyserver": self.base_url})

        if response.status_code == 404:
            logger.debug("Key %s not found on %s", key_id, self.base_url)
            return None

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise KeyServerError(
                key_id, str(e), {"keyserver": self.base_url, "status": response.status_code}
            )

        if len(response.content) > self.max_key_size:
            raise KeyServerError(
                key_id,
                f"response too big (>{self.max_key_size} bytes)",
                {"keyserver": self.base_url},
            )

        key_data = response.text
        if "-----BEGIN PGP PUBLIC KEY BLOCK-----" not in key_data:
            raise KeyServerError(key_id, "response contains no public key", {"keyserver": self.base_url})
        return key_data

    def fetch_and_import(self, key_id: str) -> bool:
        """
        Fetch the key for ``key_id`` and import it into the keyring.

        Returns:
            True if at least one key was imported.

        Raises:
            KeyServerError: Only when ``raise_errors`` is set.
        """
        try:
            key_data = self.fetch(key_id)
            if key_data is None:
                return False
            imported = self.keyring.import_key(key_data)
        except KeyServerError as e:
            if self.raise_errors:
                raise
            logger.warning("%s", e)
            return False
        except CryptoError as e:
            if self.raise_errors:
                raise KeyServerError(key_id, str(e), {"keyserver": self.base_url})
            logger.warning("Failed to import key %s from %s: %s", key_id, self.base_url, e)
            return False

        logger.info("Imported key %s from %s", key_id, self.base_url)
        return bool(imported)


def create_key_server_client(
    keyring: Keyring,
    settings: Optional[Settings] = None,
    raise_errors: bool = True,
) -> KeyServerClient:
    """
    Create a key server client from settings.

    Args:
        keyring: Keyring that fetched keys are imported into.
        settings: Settings instance; the cached settings when omitted.
        raise_errors: Raise KeyServerError instead of returning False.

    Returns:
        Configured KeyServerClient instance.
    """
    if settings is None:
        settings = get_settings()

    return KeyServerClient(
        keyring,
        keyserver=settings.keyserver.url,
        timeout=settings.keyserver.timeout,
        raise_errors=raise_errors,
        max_key_size=settings.keyserver.max_key_size,
    )
