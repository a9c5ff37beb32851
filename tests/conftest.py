"""
Pytest fixtures for gpgmail tests.

This module provides fakes for the engine, keyring and key directory,
and common sample messages.
"""

import os
import sys
from email import message_from_string
from email.message import Message

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from gpgmail.common.exceptions import EncryptionError  # noqa: E402
from gpgmail.crypto.engine import GpgEngine, Signature, VerifyResult  # noqa: E402
from gpgmail.crypto.hkp import KeyDirectory  # noqa: E402
from gpgmail.crypto.keyring import KeyLookup, PGPKey  # noqa: E402


PLAIN_MESSAGE = """\
From: Alice <alice@example.com>
To: Bob <bob@example.com>
Cc: carol@example.com
Subject: Quarterly numbers
Message-ID: <1234@example.com>
Content-Type: text/plain; charset="utf-8"

Hello Bob,
the numbers are attached.
"""


def make_signature(key_id: str, valid: bool) -> Signature:
    return Signature(
        valid=valid,
        fingerprint=key_id,
        username=f"Signer {key_id}",
        status="signature valid" if valid else "no public key",
    )


def make_result(*signatures: Signature) -> VerifyResult:
    return VerifyResult(tuple(signatures))


class FakeKeyring:
    """Keyring answering lookups from in-memory sets."""

    def __init__(self, known=(), broken=()):
        self.known = set(known)
        self.broken = set(broken)
        self.lookups = []
        self.gnupg_home = "/nonexistent/gnupg"

    def lookup(self, key_id, secret=False):
        self.lookups.append(key_id)
        if key_id in self.broken:
            return KeyLookup.error(f"keyring unavailable for {key_id}")
        if key_id in self.known:
            return KeyLookup.found(
                PGPKey(fingerprint=key_id, keyid=key_id[-16:], type="1", length=4096)
            )
        return KeyLookup.not_found()


class FakeKeyDirectory(KeyDirectory):
    """Key directory that imports the keys it has into a FakeKeyring."""

    def __init__(self, keyring, available=()):
        self.keyring = keyring
        self.available = set(available)
        self.calls = []

    def fetch_and_import(self, key_id):
        self.calls.append(key_id)
        if key_id in self.available:
            self.keyring.known.add(key_id)
            return True
        return False


class FakeEngine:
    """Engine returning scripted verification results in order."""

    is_encrypted = staticmethod(GpgEngine.is_encrypted)
    is_signed = staticmethod(GpgEngine.is_signed)

    def __init__(self, keyring, results=(), error=None):
        self.keyring = keyring
        self.results = list(results) or [VerifyResult()]
        self.error = error
        self.calls = []

    def _respond(self, operation, message, options):
        self.calls.append((operation, options))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        output = Message()
        output["X-Attempt"] = str(len(self.calls))
        output.set_payload(f"{operation} output\n")
        return output, result

    def decrypt(self, message, options):
        return self._respond("decrypt", message, options)

    def verify(self, message, options):
        return self._respond("verify", message, options)

    def _protect(self, operation, message, options):
        self.calls.append((operation, options))
        if self.error is not None:
            raise self.error
        output = Message()
        output["Subject"] = message["Subject"]
        output["X-Protected"] = operation
        output.set_payload("protected\n")
        return output

    def encrypt(self, message, options):
        return self._protect("encrypt", message, options)

    def sign(self, message, options):
        return self._protect("sign", message, options)


@pytest.fixture
def plain_message():
    """A plain text message with To and Cc recipients."""
    return message_from_string(PLAIN_MESSAGE)


@pytest.fixture
def keyring():
    return FakeKeyring()


@pytest.fixture
def key_directory(keyring):
    return FakeKeyDirectory(keyring)


@pytest.fixture
def make_engine(keyring):
    """Factory for a FakeEngine bound to the keyring fixture."""

    def factory(*results, error=None):
        return FakeEngine(keyring, results, error=error)

    return factory


@pytest.fixture
def encryption_error():
    return EncryptionError("Encryption failed: invalid recipient")
