"""Tests for GpgMessage."""

from conftest import PLAIN_MESSAGE, make_result, make_signature
from gpgmail.crypto.engine import VerifyResult
from gpgmail.mail.delivery import MemoryDelivery
from gpgmail.mail.message import GpgMessage


def test_wraps_parsed_message(make_engine):
    mail = GpgMessage.from_string(PLAIN_MESSAGE, engine=make_engine())

    assert mail["Subject"] == "Quarterly numbers"
    assert "Cc" in mail
    assert mail.get("Bcc", "none") == "none"
    assert not mail.is_encrypted()
    assert not mail.is_signed()
    assert "Quarterly numbers" in repr(mail)


def test_status_checks_are_read_only(plain_message, make_engine, keyring, key_directory):
    mail = GpgMessage(plain_message, engine=make_engine(), key_directory=key_directory)
    before = mail.as_string()

    mail.is_encrypted()
    mail.is_signed()

    assert mail.as_string() == before
    assert key_directory.calls == []
    assert keyring.lookups == []
    assert mail.engine.calls == []


def test_from_bytes_round_trip(make_engine):
    mail = GpgMessage.from_bytes(PLAIN_MESSAGE.encode(), engine=make_engine())
    assert b"Hello Bob," in mail.as_bytes()


def test_decrypt_returns_new_message_with_result(plain_message, make_engine, key_directory):
    expected = make_result(make_signature("AAAA", True))
    transport = MemoryDelivery()
    mail = GpgMessage(
        plain_message,
        engine=make_engine(expected),
        key_directory=key_directory,
        delivery_method=transport,
        raise_delivery_errors=False,
    )

    decrypted = mail.decrypt(verify=True)

    assert decrypted is not mail
    assert decrypted.verify_result is expected
    assert decrypted.signature_valid
    assert decrypted.signatures == expected.signatures
    assert decrypted.delivery_method is transport
    assert decrypted.raise_delivery_errors is False
    assert decrypted.key_directory is key_directory
    assert mail.verify_result is None


def test_decrypt_uses_message_key_directory(plain_message, make_engine, key_directory):
    engine = make_engine(make_result(make_signature("AAAA", False)))
    mail = GpgMessage(plain_message, engine=engine, key_directory=key_directory)

    result = mail.decrypt({"verify": True, "import_missing_keys": True})

    assert key_directory.calls == ["AAAA"]
    assert len(engine.calls) == 2
    assert not result.signature_valid


def test_verify_with_keyword_options(plain_message, make_engine, key_directory):
    engine = make_engine(make_result(make_signature("AAAA", False)))
    mail = GpgMessage(plain_message, engine=engine, key_directory=key_directory)

    verified = mail.verify(import_missing_keys=True)

    assert [op for op, _ in engine.calls] == ["verify", "verify"]
    assert verified["X-Attempt"] == "2"


def test_unverified_message_has_no_signatures(plain_message, make_engine):
    mail = GpgMessage(plain_message, engine=make_engine(VerifyResult()))
    assert not mail.signature_valid
    assert mail.signatures == ()


def test_import_keys_for_signatures(plain_message, make_engine, keyring, key_directory):
    mail = GpgMessage(plain_message, engine=make_engine(), key_directory=key_directory)
    keyring.known.add("BBBB")

    mail.import_keys_for_signatures([make_signature("AAAA", False), make_signature("BBBB", False)])

    assert key_directory.calls == ["AAAA"]
    assert mail.import_keys_for_signatures() == []
