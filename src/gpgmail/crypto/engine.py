"""
PGP/MIME engine for gpgmail.

This module encrypts, decrypts, signs and verifies email messages
(RFC 3156 PGP/MIME, plus inline PGP on the receiving side) using the
python-gnupg library. Keys come from an explicit ``Keyring``.
"""

import copy
import logging
import os
import re
import secrets
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from email import message_from_bytes
from email.message import Message
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.policy import compat32
from email.utils import getaddresses
from typing import Any, Optional, Union

from ..common.exceptions import (
    DecryptionError,
    EncryptionError,
    InvalidMessageError,
    SignatureError,
)
from .keyring import Keyring, create_keyring
from .options import GpgOptions

logger = logging.getLogger(__name__)

PGP_MESSAGE_HEADER = "-----BEGIN PGP MESSAGE-----"
PGP_SIGNED_HEADER = "-----BEGIN PGP SIGNED MESSAGE-----"
PGP_SIGNATURE_HEADER = "-----BEGIN PGP SIGNATURE-----"
PGP_PUBLIC_KEY_HEADER = "-----BEGIN PGP PUBLIC KEY BLOCK-----"

# OpenPGP hash algorithm IDs (RFC 4880, 9.4) to micalg names
HASH_ALGORITHMS = {
    "1": "pgp-md5",
    "2": "pgp-sha1",
    "3": "pgp-ripemd160",
    "8": "pgp-sha256",
    "9": "pgp-sha384",
    "10": "pgp-sha512",
    "11": "pgp-sha224",
}

# Headers are written as parsed so signed parts serialize byte for byte
_NO_REFOLD = compat32.clone(max_line_length=None)


@dataclass(frozen=True)
class Signature:
    """One signer's outcome within a verification result."""

    valid: bool
    fingerprint: Optional[str] = None
    key_id: Optional[str] = None
    username: Optional[str] = None
    status: str = ""
    timestamp: Optional[datetime] = None
    trust_level: Optional[str] = None

    @property
    def lookup_id(self) -> Optional[str]:
        """Identifier to resolve the signer key with."""
        return self.fingerprint or self.key_id

    @property
    def email(self) -> Optional[str]:
        """Extract email from the signer identity."""
        uid = self.username or ""
        if "<" in uid and ">" in uid:
            return uid[uid.index("<") + 1:uid.index(">")]
        return None


@dataclass(frozen=True)
class VerifyResult:
    """Signatures found while verifying or decrypting a message."""

    signatures: tuple[Signature, ...] = ()

    @property
    def valid(self) -> bool:
        """True if there is at least one signature and all are valid."""
        return bool(self.signatures) and all(s.valid for s in self.signatures)

    @property
    def fingerprints(self) -> list[str]:
        return [s.lookup_id for s in self.signatures if s.lookup_id]


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(float(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def signatures_from(verified: Any) -> tuple[Signature, ...]:
    """
    Build signature records from a python-gnupg Verify or Crypt result.

    Per-signature details come from ``sig_info``. GnuPG only reports a
    missing signer key at the top level, so that record is added when it
    is not already covered.
    """
    signatures = []
    seen = set()

    for info in (getattr(verified, "sig_info", None) or {}).values():
        status = info.get("status") or ""
        fingerprint = info.get("fingerprint") or info.get("pubkey_fingerprint")
        signatures.append(
            Signature(
                valid=status == "signature valid",
                fingerprint=fingerprint,
                key_id=info.get("keyid"),
                username=info.get("username"),
                status=status,
                timestamp=_parse_timestamp(info.get("timestamp")),
                trust_level=info.get("trust_text"),
            )
        )
        seen.update(x for x in (fingerprint, info.get("keyid")) if x)

    fingerprint = getattr(verified, "fingerprint", None)
    key_id = getattr(verified, "key_id", None)
    if (fingerprint or key_id) and not ({fingerprint, key_id} & seen):
        signatures.append(
            Signature(
                valid=bool(getattr(verified, "valid", False)),
                fingerprint=fingerprint,
                key_id=key_id,
                username=getattr(verified, "username", None),
                status=getattr(verified, "status", None) or "",
                timestamp=_parse_timestamp(getattr(verified, "timestamp", None)),
                trust_level=getattr(verified, "trust_text", None),
            )
        )

    return tuple(signatures)


def _is_content_header(name: str) -> bool:
    return name.lower().startswith("content-")


def _content_entity(message: Message) -> Message:
    """Copy of the message body with only its Content-* headers."""
    entity = copy.deepcopy(message)
    for name in set(entity.keys()):
        if not _is_content_header(name):
            del entity[name]
    if entity.get("Content-Type") is None:
        entity["Content-Type"] = 'text/plain; charset="us-ascii"'
    return entity


def _rewrap(source: Message, entity: Message) -> Message:
    """New message with the envelope headers of ``source`` around ``entity``."""
    result = Message()
    for name, value in source.items():
        if not _is_content_header(name) and name.lower() != "mime-version":
            result[name] = value
    result["MIME-Version"] = "1.0"
    for name, value in entity.items():
        if _is_content_header(name):
            result[name] = value
    result.set_payload(entity.get_payload())
    result.preamble = entity.preamble
    result.epilogue = entity.epilogue
    return result


def _make_boundary() -> str:
    return f"=-=gpgmail-{secrets.token_hex(12)}=-="


def _canonicalize(data: bytes) -> bytes:
    return re.sub(rb"\r?\n", b"\r\n", data)


def _text_payload(message: Message) -> str:
    payload = message.get_payload(decode=True)
    if payload is None:
        return ""
    charset = message.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _set_text(message: Message, text: str) -> None:
    """
    Replace a text/plain body with ``text``.

    Like ``MIMEText``, us-ascii is used when it suffices; otherwise the
    declared charset, falling back to utf-8. The transfer encoding is
    chosen to match so the message can be serialized.
    """
    del message["Content-Transfer-Encoding"]
    for charset in ("us-ascii", message.get_content_charset(), "utf-8"):
        if not charset:
            continue
        try:
            text.encode(charset)
        except (UnicodeEncodeError, LookupError):
            continue
        break
    message.set_payload(text, charset)


def _inline_armor(message: Message) -> Optional[str]:
    """First line of an inline PGP block in a text/plain body, if any."""
    if message.is_multipart() or message.get_content_type() != "text/plain":
        return None
    for line in _text_payload(message).splitlines():
        if line.strip():
            return line.strip()
    return None


def _signed_part_bytes(message: Message) -> bytes:
    """Canonical bytes of the first body part of a multipart/signed message."""
    boundary = message.get_boundary()
    if not boundary:
        raise InvalidMessageError("multipart/signed message has no boundary")

    raw = message.as_bytes(policy=_NO_REFOLD)
    delimiter = b"--" + boundary.encode("ascii")
    header_end = re.search(rb"\r?\n\r?\n", raw)
    offset = header_end.end() - 1 if header_end else 0

    start = raw.find(b"\n" + delimiter, offset)
    if start == -1:
        raise InvalidMessageError("multipart/signed message has no body part")
    start = raw.index(b"\n", start + 1) + 1
    end = raw.find(b"\n" + delimiter, start)
    if end == -1:
        raise InvalidMessageError("multipart/signed message is truncated")

    body = raw[start:end]
    if body.endswith(b"\r"):
        body = body[:-1]
    return _canonicalize(body)


def _clearsigned_text(text: str) -> str:
    """Plain text of a clearsigned block, dash-escaping removed."""
    lines = text.splitlines()
    try:
        start = next(i for i, line in enumerate(lines) if line.strip() == PGP_SIGNED_HEADER)
    except StopIteration:
        return text
    # skip armor headers (Hash: ...) up to the first blank line
    body_start = start + 1
    while body_start < len(lines) and lines[body_start].strip():
        body_start += 1
    body = []
    for line in lines[body_start + 1:]:
        if line.strip() == PGP_SIGNATURE_HEADER:
            break
        body.append(line[2:] if line.startswith("- ") else line)
    return "\n".join(body) + "\n"


class GpgEngine:
    """
    OpenPGP operations on email messages.

    Encrypting and signing produce RFC 3156 PGP/MIME messages. Decrypting
    and verifying accept PGP/MIME and inline PGP and return a new message
    together with a ``VerifyResult``. Input messages are never modified.
    """

    def __init__(self, keyring: Keyring) -> None:
        """
        Initialize the engine.

        Args:
            keyring: Keyring holding the keys used for all operations.
        """
        self.keyring = keyring

    @property
    def gpg(self):
        return self.keyring.gpg

    # Status predicates

    @staticmethod
    def is_encrypted(message: Message) -> bool:
        """True if the message is PGP/MIME or inline PGP encrypted."""
        if (
            message.get_content_type() == "multipart/encrypted"
            and message.get_param("protocol") == "application/pgp-encrypted"
        ):
            return True
        return _inline_armor(message) == PGP_MESSAGE_HEADER

    @staticmethod
    def is_signed(message: Message) -> bool:
        """True if the message is PGP/MIME signed or clearsigned, but not encrypted."""
        if (
            message.get_content_type() == "multipart/signed"
            and message.get_param("protocol") == "application/pgp-signature"
        ):
            return True
        return _inline_armor(message) == PGP_SIGNED_HEADER

    # Sending side

    def encrypt(self, message: Message, options: Union[GpgOptions, Mapping, None] = None) -> Message:
        """
        Encrypt a message, signing it as well when requested.

        Args:
            message: Message to encrypt.
            options: GPG options; ``sign``/``sign_as`` add a signature and
                ``passphrase``, ``always_trust``, ``recipients`` and ``keys``
                are read from the pass-through options.

        Returns:
            New multipart/encrypted message.

        Raises:
            EncryptionError: If there are no recipients or GnuPG fails.
        """
        options = GpgOptions.coerce(options)
        recipients = self._recipients(message, options)
        if not recipients:
            raise EncryptionError("No recipients to encrypt the message for")

        data = _canonicalize(_content_entity(message).as_bytes())
        signer_args = self._signer_args(options)

        encrypted = self.gpg.encrypt(
            data,
            recipients,
            sign=True if options.wants_signature else None,
            passphrase=options.get("passphrase"),
            always_trust=bool(options.get("always_trust", False)),
            armor=True,
            extra_args=signer_args or None,
        )

        if not encrypted.ok:
            raise EncryptionError(
                f"Encryption failed: {encrypted.status}",
                {"recipients": recipients, "stderr": getattr(encrypted, "stderr", "")},
            )

        logger.debug(
            "Encrypted message for %d recipient(s), signed=%s",
            len(recipients),
            options.wants_signature,
        )

        control = MIMEBase("application", "pgp-encrypted")
        del control["MIME-Version"]
        control["Content-Description"] = "PGP/MIME version identification"
        control.set_payload("Version: 1\n")

        body = MIMEBase("application", "octet-stream", name="encrypted.asc")
        del body["MIME-Version"]
        body["Content-Description"] = "OpenPGP encrypted message"
        body["Content-Disposition"] = 'inline; filename="encrypted.asc"'
        body.set_payload(str(encrypted))

        outer = MIMEMultipart(
            "encrypted", boundary=_make_boundary(), protocol="application/pgp-encrypted"
        )
        outer.preamble = "This is an OpenPGP/MIME encrypted message (RFC 4880 and 3156)"
        outer.attach(control)
        outer.attach(body)

        return _rewrap(message, outer)

    def sign(self, message: Message, options: Union[GpgOptions, Mapping, None] = None) -> Message:
        """
        Sign a message with a detached PGP/MIME signature.

        Args:
            message: Message to sign.
            options: GPG options; ``sign_as`` selects the signing keys and
                ``passphrase`` unlocks them.

        Returns:
            New multipart/signed message.

        Raises:
            SignatureError: If GnuPG cannot produce a signature.
        """
        options = GpgOptions.coerce(options)

        # re-parse so the part is serialized the same way when sent
        content = message_from_bytes(_content_entity(message).as_bytes())
        data = _canonicalize(content.as_bytes(policy=_NO_REFOLD))

        signed = self.gpg.sign(
            data,
            passphrase=options.get("passphrase"),
            detach=True,
            clearsign=False,
            extra_args=self._signer_args(options) or None,
        )

        if not signed.data:
            raise SignatureError(f"Signing failed: {signed.status}")

        micalg = HASH_ALGORITHMS.get(str(getattr(signed, "hash_algo", "")), "pgp-sha256")
        logger.debug("Signed message, key=%s, micalg=%s", signed.fingerprint, micalg)

        signature = MIMEBase("application", "pgp-signature", name="signature.asc")
        del signature["MIME-Version"]
        signature["Content-Description"] = "OpenPGP digital signature"
        signature["Content-Disposition"] = 'attachment; filename="signature.asc"'
        signature.set_payload(str(signed))

        outer = MIMEMultipart(
            "signed",
            boundary=_make_boundary(),
            micalg=micalg,
            protocol="application/pgp-signature",
        )
        outer.preamble = "This is an OpenPGP/MIME signed message (RFC 4880 and 3156)"
        outer.attach(content)
        outer.attach(signature)

        return _rewrap(message, outer)

    # Receiving side

    def decrypt(
        self, message: Message, options: Union[GpgOptions, Mapping, None] = None
    ) -> tuple[Message, VerifyResult]:
        """
        Decrypt a message.

        Args:
            message: Encrypted message.
            options: GPG options; ``verify`` collects signatures and
                ``passphrase``/``always_trust`` are passed to GnuPG.

        Returns:
            Tuple of the decrypted message and its verification result,
            which is empty unless ``verify`` was requested.

        Raises:
            InvalidMessageError: If the message is not encrypted.
            DecryptionError: If GnuPG cannot decrypt it.
        """
        options = GpgOptions.coerce(options)
        ciphertext, pgp_mime = self._ciphertext(message)

        decrypted = self.gpg.decrypt(
            ciphertext,
            passphrase=options.get("passphrase"),
            always_trust=bool(options.get("always_trust", False)),
        )

        if not decrypted.ok:
            raise DecryptionError(
                f"Decryption failed: {decrypted.status}",
                {"stderr": getattr(decrypted, "stderr", "")},
            )

        if pgp_mime:
            plaintext = message_from_bytes(decrypted.data)
            result_message = _rewrap(message, plaintext)
        else:
            result_message = copy.deepcopy(message)
            _set_text(result_message, str(decrypted))

        if not options.verify:
            return result_message, VerifyResult()

        signatures = signatures_from(decrypted)
        if not signatures and self.is_signed(result_message):
            # signed first, then encrypted as a separate step
            return self.verify(result_message, options)

        logger.debug("Decrypted message with %d signature(s)", len(signatures))
        return result_message, VerifyResult(signatures)

    def verify(
        self, message: Message, options: Union[GpgOptions, Mapping, None] = None
    ) -> tuple[Message, VerifyResult]:
        """
        Verify the signatures of a signed message.

        Returns:
            Tuple of a new message with the signature removed and the
            verification result.

        Raises:
            InvalidMessageError: If the message is not signed.
        """
        if message.get_content_type() == "multipart/signed":
            return self._verify_pgp_mime(message)
        if _inline_armor(message) == PGP_SIGNED_HEADER:
            return self._verify_inline(message)
        raise InvalidMessageError(
            "Message is not signed",
            {"content_type": message.get_content_type()},
        )

    def _verify_pgp_mime(self, message: Message) -> tuple[Message, VerifyResult]:
        parts = message.get_payload()
        if not isinstance(parts, list) or len(parts) < 2:
            raise InvalidMessageError("multipart/signed message needs a body and a signature")

        data = _signed_part_bytes(message)
        signature_parts = [
            p for p in parts[1:] if p.get_content_type() == "application/pgp-signature"
        ]
        if not signature_parts:
            raise InvalidMessageError("multipart/signed message has no PGP signature")

        signatures: list[Signature] = []
        for part in signature_parts:
            with tempfile.NamedTemporaryFile(delete=False) as tmp:
                tmp.write(part.get_payload(decode=True) or b"")
                tmp_path = tmp.name
            try:
                verified = self.gpg.verify_data(tmp_path, data)
            finally:
                os.unlink(tmp_path)
            signatures.extend(signatures_from(verified))

        result = VerifyResult(tuple(signatures))
        self._log_result(result)
        return _rewrap(message, copy.deepcopy(parts[0])), result

    def _verify_inline(self, message: Message) -> tuple[Message, VerifyResult]:
        text = _text_payload(message)
        verified = self.gpg.verify(text.encode("utf-8"))

        stripped = copy.deepcopy(message)
        _set_text(stripped, _clearsigned_text(text))

        result = VerifyResult(signatures_from(verified))
        self._log_result(result)
        return stripped, result

    @staticmethod
    def _log_result(result: VerifyResult) -> None:
        if result.valid:
            logger.debug("Signature(s) verified: %s", ", ".join(result.fingerprints))
        else:
            logger.warning(
                "Signature verification failed: %s",
                ", ".join(s.status for s in result.signatures) or "no signatures",
            )

    def _ciphertext(self, message: Message) -> tuple[bytes, bool]:
        """Return the ciphertext and whether it came from PGP/MIME."""
        if message.get_content_type() == "multipart/encrypted":
            for part in message.get_payload():
                if part.get_content_type() == "application/octet-stream":
                    return part.get_payload(decode=True) or b"", True
            raise InvalidMessageError("multipart/encrypted message has no encrypted part")

        if _inline_armor(message) == PGP_MESSAGE_HEADER:
            return message.get_payload(decode=True) or b"", False

        raise InvalidMessageError(
            "Message is not encrypted",
            {"content_type": message.get_content_type()},
        )

    def _recipients(self, message: Message, options: GpgOptions) -> list[str]:
        """Recipient key IDs, importing any keys passed in the options."""
        explicit = options.get("recipients")
        if explicit:
            recipients = [explicit] if isinstance(explicit, str) else list(explicit)
        else:
            headers = (
                message.get_all("To", [])
                + message.get_all("Cc", [])
                + message.get_all("Bcc", [])
            )
            recipients = [addr for _, addr in getaddresses(headers) if addr]

        keys = options.get("keys") or {}
        if isinstance(keys, str):
            keys = [keys]
        if not isinstance(keys, Mapping):
            for key_data in keys:
                self.keyring.import_key(key_data)
            keys = {}

        resolved = []
        for recipient in recipients:
            key = keys.get(recipient)
            if key and PGP_PUBLIC_KEY_HEADER in key:
                imported = self.keyring.import_key(key)
                resolved.append(imported[0].fingerprint if imported else recipient)
            elif key:
                resolved.append(key)
            else:
                resolved.append(recipient)
        return list(dict.fromkeys(resolved))

    @staticmethod
    def _signer_args(options: GpgOptions) -> list[str]:
        args: list[str] = []
        for signer in options.signers:
            args.extend(["--local-user", signer])
        return args


def create_engine(keyring: Optional[Keyring] = None) -> GpgEngine:
    """
    Create an engine, building the keyring from settings when omitted.

    Args:
        keyring: Keyring to use.

    Returns:
        Configured GpgEngine instance.
    """
    return GpgEngine(keyring or create_keyring())
