"""Tests for decryption and verification with missing key recovery."""

from unittest.mock import patch

import pytest
import requests

from conftest import FakeKeyDirectory, make_result, make_signature
from gpgmail.common.config import get_settings
from gpgmail.common.exceptions import InvalidConfigError, KeyringError
from gpgmail.crypto.hkp import KeyServerClient
from gpgmail.crypto.options import GpgOptions
from gpgmail.mail import verification


class TestDecrypt:
    def test_without_import_flag_never_uses_key_directory(
        self, make_engine, plain_message, key_directory
    ):
        engine = make_engine(make_result(make_signature("AAAA", False)))

        _, result = verification.decrypt(
            engine, plain_message, {"verify": True}, key_directory
        )

        assert not result.valid
        assert key_directory.calls == []
        assert len(engine.calls) == 1

    def test_import_flag_false_never_uses_key_directory(
        self, make_engine, plain_message, key_directory
    ):
        engine = make_engine(make_result(make_signature("AAAA", False)))

        verification.decrypt(
            engine,
            plain_message,
            {"verify": True, "import_missing_keys": False},
            key_directory,
        )

        assert key_directory.calls == []
        assert len(engine.calls) == 1

    def test_import_flag_ignored_without_verify(
        self, make_engine, plain_message, key_directory
    ):
        engine = make_engine(make_result(make_signature("AAAA", False)))

        verification.decrypt(
            engine, plain_message, {"import_missing_keys": True}, key_directory
        )

        assert len(engine.calls) == 1
        assert key_directory.calls == []

    def test_valid_signatures_return_first_result(
        self, make_engine, plain_message, key_directory
    ):
        first = make_result(make_signature("AAAA", True))
        engine = make_engine(first, make_result(make_signature("AAAA", False)))

        decrypted, result = verification.decrypt(
            engine,
            plain_message,
            {"verify": True, "import_missing_keys": True},
            key_directory,
        )

        assert result is first
        assert decrypted["X-Attempt"] == "1"
        assert key_directory.calls == []

    def test_missing_key_imported_then_retried_once(
        self, make_engine, keyring, plain_message
    ):
        directory = FakeKeyDirectory(keyring, available={"AAAA"})
        second = make_result(make_signature("AAAA", True))
        engine = make_engine(make_result(make_signature("AAAA", False)), second)

        decrypted, result = verification.decrypt(
            engine,
            plain_message,
            {"verify": True, "import_missing_keys": True},
            directory,
        )

        assert directory.calls == ["AAAA"]
        assert [op for op, _ in engine.calls] == ["decrypt", "decrypt"]
        assert result is second
        assert decrypted["X-Attempt"] == "2"

    def test_second_result_returned_even_if_still_invalid(
        self, make_engine, plain_message, key_directory
    ):
        still_bad = make_result(make_signature("AAAA", False))
        engine = make_engine(make_result(make_signature("AAAA", False)), still_bad)

        _, result = verification.decrypt(
            engine,
            plain_message,
            {"verify": True, "import_missing_keys": True},
            key_directory,
        )

        assert result is still_bad
        assert len(engine.calls) == 2
        assert key_directory.calls == ["AAAA"]

    def test_engine_never_sees_import_flag(
        self, make_engine, plain_message, key_directory
    ):
        engine = make_engine(make_result(make_signature("AAAA", False)))

        verification.decrypt(
            engine,
            plain_message,
            {"verify": True, "import_missing_keys": True, "passphrase": "secret"},
            key_directory,
        )

        for _, options in engine.calls:
            assert options.import_missing_keys is None
            assert options.verify is True
            assert options.get("passphrase") == "secret"

    def test_retry_uses_same_options(self, make_engine, plain_message, key_directory):
        engine = make_engine(make_result(make_signature("AAAA", False)))

        verification.decrypt(
            engine,
            plain_message,
            GpgOptions(verify=True, import_missing_keys=True),
            key_directory,
        )

        first_options, second_options = (options for _, options in engine.calls)
        assert first_options == second_options

    def test_input_message_unchanged(self, make_engine, plain_message, key_directory):
        before = plain_message.as_string()
        engine = make_engine(make_result(make_signature("AAAA", False)))

        verification.decrypt(
            engine,
            plain_message,
            {"verify": True, "import_missing_keys": True},
            key_directory,
        )

        assert plain_message.as_string() == before


class TestVerify:
    def test_without_import_flag_single_call(
        self, make_engine, plain_message, key_directory
    ):
        engine = make_engine(make_result(make_signature("AAAA", False)))

        _, result = verification.verify(engine, plain_message, None, key_directory)

        assert not result.valid
        assert [op for op, _ in engine.calls] == ["verify"]
        assert key_directory.calls == []

    def test_import_flag_honoured_without_verify_option(
        self, make_engine, plain_message, key_directory
    ):
        engine = make_engine(make_result(make_signature("AAAA", False)))

        verification.verify(
            engine, plain_message, {"import_missing_keys": True}, key_directory
        )

        assert [op for op, _ in engine.calls] == ["verify", "verify"]
        assert key_directory.calls == ["AAAA"]

    def test_two_missing_keys_imported_before_single_retry(
        self, make_engine, keyring, plain_message
    ):
        directory = FakeKeyDirectory(keyring, available={"AAAA", "BBBB"})
        first = make_result(make_signature("AAAA", False), make_signature("BBBB", False))
        engine = make_engine(first)

        events = []
        original_verify = engine.verify

        def recording_verify(message, options):
            events.append(("engine", list(directory.calls)))
            return original_verify(message, options)

        engine.verify = recording_verify

        verification.verify(
            engine, plain_message, {"import_missing_keys": True}, directory
        )

        assert directory.calls == ["AAAA", "BBBB"]
        assert events == [("engine", []), ("engine", ["AAAA", "BBBB"])]

    def test_known_keys_are_not_fetched(self, make_engine, keyring, plain_message):
        keyring.known.add("AAAA")
        directory = FakeKeyDirectory(keyring)
        engine = make_engine(
            make_result(make_signature("AAAA", False), make_signature("BBBB", False))
        )

        verification.verify(
            engine, plain_message, {"import_missing_keys": True}, directory
        )

        assert directory.calls == ["BBBB"]
        assert len(engine.calls) == 2

    def test_keyring_error_propagates(self, make_engine, keyring, plain_message):
        keyring.broken.add("AAAA")
        directory = FakeKeyDirectory(keyring)
        engine = make_engine(make_result(make_signature("AAAA", False)))

        with pytest.raises(KeyringError):
            verification.verify(
                engine, plain_message, {"import_missing_keys": True}, directory
            )

        assert directory.calls == []
        assert len(engine.calls) == 1

    def test_key_server_failure_does_not_raise(
        self, make_engine, keyring, plain_message, tmp_path
    ):
        keyring.gnupg_home = str(tmp_path)
        session = requests.Session()
        client = KeyServerClient(keyring, raise_errors=False, session=session)
        engine = make_engine(make_result(make_signature("AAAA", False)))

        with patch.object(session, "get", side_effect=requests.ConnectionError("offline")):
            _, result = verification.verify(
                engine, plain_message, {"import_missing_keys": True}, client
            )

        assert not result.valid
        assert len(engine.calls) == 2

    def test_default_key_directory_built_without_raising(
        self, make_engine, keyring, plain_message
    ):
        engine = make_engine(make_result(make_signature("AAAA", False)))
        directory = FakeKeyDirectory(keyring)

        with patch.object(
            verification, "create_key_server_client", return_value=directory
        ) as factory:
            verification.verify(engine, plain_message, {"import_missing_keys": True})

        factory.assert_called_once_with(keyring, raise_errors=False)
        assert directory.calls == ["AAAA"]


class TestImportKeysForSignatures:
    def test_empty_signatures_is_noop(self, keyring, key_directory):
        assert verification.import_keys_for_signatures([], keyring, key_directory) == []
        assert keyring.lookups == []
        assert key_directory.calls == []

    def test_returns_fetched_key_ids(self, keyring):
        directory = FakeKeyDirectory(keyring, available={"AAAA"})
        signatures = [make_signature("AAAA", False), make_signature("CCCC", False)]

        fetched = verification.import_keys_for_signatures(signatures, keyring, directory)

        assert fetched == ["AAAA"]
        assert directory.calls == ["AAAA", "CCCC"]

    def test_uses_key_id_when_fingerprint_unknown(self, keyring, key_directory):
        from gpgmail.crypto.engine import Signature

        signature = Signature(valid=False, key_id="0123456789ABCDEF", status="no public key")

        verification.import_keys_for_signatures([signature], keyring, key_directory)

        assert key_directory.calls == ["0123456789ABCDEF"]

    def test_signature_without_identity_skipped(self, keyring, key_directory):
        from gpgmail.crypto.engine import Signature

        verification.import_keys_for_signatures(
            [Signature(valid=False)], keyring, key_directory
        )

        assert keyring.lookups == []
        assert key_directory.calls == []

    def test_repeated_signer_fetched_once(self, keyring, key_directory):
        signatures = [make_signature("AAAA", False), make_signature("AAAA", False)]

        verification.import_keys_for_signatures(signatures, keyring, key_directory)

        assert key_directory.calls == ["AAAA"]
        assert keyring.lookups == ["AAAA"]


class TestUnusableKeyServer:
    @pytest.fixture(autouse=True)
    def settings_from_environment(self, monkeypatch):
        monkeypatch.delenv("GPGMAIL_CONFIG_FILE", raising=False)
        monkeypatch.delenv("GPGMAIL_KEYSERVER_URL", raising=False)
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_bad_keyserver_line_still_retries(self, make_engine, keyring, plain_message, tmp_path):
        (tmp_path / "dirmngr.conf").write_text("keyserver hkp://keys.example.org:abc\n")
        keyring.gnupg_home = str(tmp_path)
        engine = make_engine(make_result(make_signature("AAAA", False)))

        _, result = verification.verify(engine, plain_message, {"import_missing_keys": True})

        assert not result.valid
        assert len(engine.calls) == 2

    def test_broken_config_file_still_retries(self, make_engine, plain_message, tmp_path, monkeypatch):
        config = tmp_path / "gpgmail.toml"
        config.write_text('[keyserver]\ntimeout = "soon"\n')
        monkeypatch.setenv("GPGMAIL_CONFIG_FILE", str(config))
        engine = make_engine(make_result(make_signature("AAAA", False), make_signature("BBBB", False)))

        _, result = verification.decrypt(
            engine, plain_message, {"verify": True, "import_missing_keys": True}
        )

        assert not result.valid
        assert [op for op, _ in engine.calls] == ["decrypt", "decrypt"]

    def test_directory_built_once(self, make_engine, keyring, plain_message):
        engine = make_engine(make_result(make_signature("AAAA", False), make_signature("BBBB", False)))

        with patch.object(
            verification,
            "create_key_server_client",
            side_effect=InvalidConfigError("keyserver", "x", "unusable"),
        ) as factory:
            verification.verify(engine, plain_message, {"import_missing_keys": True})

        factory.assert_called_once_with(keyring, raise_errors=False)
        assert keyring.lookups == ["AAAA", "BBBB"]
        assert len(engine.calls) == 2
