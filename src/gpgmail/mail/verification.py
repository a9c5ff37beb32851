"""
Decryption and verification with missing key recovery.

``decrypt`` and ``verify`` call the engine once. When the caller asks for
``import_missing_keys`` and the signatures do not verify, signer keys that
are missing from the local keyring are fetched from the key directory and
the engine call is repeated exactly once. The second result is returned
whether or not it verifies.

A decrypt or verify call can therefore perform network key lookups
before it returns.
"""

import logging
from collections.abc import Iterable, Mapping
from email.message import Message
from typing import Optional, Union

from ..common.exceptions import ConfigurationError, KeyringError
from ..crypto.engine import GpgEngine, Signature, VerifyResult
from ..crypto.hkp import KeyDirectory, create_key_server_client
from ..crypto.keyring import Keyring, KeyLookupStatus
from ..crypto.options import GpgOptions

logger = logging.getLogger(__name__)

OptionsArg = Union[GpgOptions, Mapping, None]


def _default_key_directory(keyring: Keyring) -> Optional[KeyDirectory]:
    """Key server client from settings, or None if it cannot be built."""
    try:
        return create_key_server_client(keyring, raise_errors=False)
    except (ConfigurationError, ValueError) as e:
        logger.warning("Cannot fetch missing keys, no usable key server: %s", e)
        return None


def import_keys_for_signatures(
    signatures: Iterable[Signature],
    keyring: Keyring,
    key_directory: Optional[KeyDirectory] = None,
) -> list[str]:
    """
    Fetch and import the keys of signers that are missing from the keyring.

    Only a key that the keyring reports as not found triggers a fetch, and
    each key is tried once per call. Without an explicit ``key_directory``
    a key server client that does not raise is built from settings on
    first use; if that fails the missing keys are left unfetched.

    Args:
        signatures: Signature records to resolve.
        keyring: Keyring to resolve signer keys in.
        key_directory: Where to fetch missing keys from.

    Returns:
        Key IDs that were fetched and imported.

    Raises:
        KeyringError: If the keyring fails for any other reason.
    """
    fetched = []
    attempted = set()
    directory_ready = key_directory is not None

    for signature in signatures:
        key_id = signature.lookup_id
        if not key_id or key_id in attempted:
            continue
        attempted.add(key_id)

        lookup = keyring.lookup(key_id)
        if lookup.status is KeyLookupStatus.ERROR:
            raise KeyringError(lookup.detail, {"key_id": key_id})
        if lookup.status is KeyLookupStatus.FOUND:
            continue

        if not directory_ready:
            key_directory = _default_key_directory(keyring)
            directory_ready = True
        if key_directory is not None and key_directory.fetch_and_import(key_id):
            fetched.append(key_id)

    return fetched


def decrypt(
    engine: GpgEngine,
    message: Message,
    options: OptionsArg = None,
    key_directory: Optional[KeyDirectory] = None,
) -> tuple[Message, VerifyResult]:
    """
    Decrypt a message, optionally verifying and recovering missing keys.

    ``import_missing_keys`` only applies together with ``verify``; it is
    never passed on to the engine.

    Returns:
        Tuple of the decrypted message and the result of the last
        engine call.
    """
    options = GpgOptions.coerce(options)
    import_missing_keys = bool(options.verify and options.import_missing_keys)
    engine_options = options.without_import_flag()

    decrypted, result = engine.decrypt(message, engine_options)
    if import_missing_keys and not result.valid:
        import_keys_for_signatures(result.signatures, engine.keyring, key_directory)
        return engine.decrypt(message, engine_options)
    return decrypted, result


def verify(
    engine: GpgEngine,
    message: Message,
    options: OptionsArg = None,
    key_directory: Optional[KeyDirectory] = None,
) -> tuple[Message, VerifyResult]:
    """
    Verify a signed message, optionally recovering missing keys.

    Returns:
        Tuple of the message without its signature and the result of the
        last engine call.
    """
    options = GpgOptions.coerce(options)
    import_missing_keys = bool(options.import_missing_keys)
    engine_options = options.without_import_flag()

    verified, result = engine.verify(message, engine_options)
    if import_missing_keys and not result.valid:
        import_keys_for_signatures(result.signatures, engine.keyring, key_directory)
        return engine.verify(message, engine_options)
    return verified, result
