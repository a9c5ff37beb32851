#!/usr/bin/env python3
"""
Command-line interface for gpgmail.

This module provides the main entry point for the gpgmail command
when installed as a package (via `pip install gpgmail`).

Usage:
    gpgmail [OPTIONS] status FILE
    gpgmail [OPTIONS] decrypt FILE [--verify] [--import-missing-keys]
    gpgmail [OPTIONS] verify FILE [--import-missing-keys]

Options:
    --debug         Enable debug logging
    --config FILE   Read settings from a TOML file
    --gnupg-home    GnuPG home directory to use
    --version       Show version and exit
    --help          Show this message and exit
"""

import argparse
import logging
import os
import sys
from typing import Optional

from gpgmail import __version__
from gpgmail.common.config import GnuPGSettings, Settings, get_settings
from gpgmail.common.exceptions import GpgMailError
from gpgmail.crypto.engine import GpgEngine, VerifyResult
from gpgmail.crypto.hkp import create_key_server_client
from gpgmail.crypto.keyring import create_keyring
from gpgmail.mail.message import GpgMessage

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BAD_SIGNATURE = 2


def setup_logging(settings: Settings, debug: bool = False) -> None:
    """
    Configure logging for the command line.

    Args:
        settings: Settings holding the log level and format.
        debug: Enable debug logging.
    """
    log_level = logging.DEBUG if debug else getattr(logging, settings.logging.level)

    logging.basicConfig(
        level=log_level,
        format=settings.logging.format,
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
    )

    if not debug:
        logging.getLogger("gnupg").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="gpgmail",
        description="gpgmail - OpenPGP for email messages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Check whether a message is encrypted or signed:
        gpgmail status message.eml

    Decrypt and verify, fetching unknown signer keys:
        gpgmail decrypt message.eml --verify --import-missing-keys

Environment Variables:
    GPGMAIL_DEBUG            Enable debug mode (true/false)
    GPGMAIL_CONFIG_FILE      TOML configuration file
    GPGMAIL_GNUPG_HOME       GnuPG home directory
    GPGMAIL_KEYSERVER_URL    Key server for missing keys
        """,
    )

    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", help="TOML configuration file")
    parser.add_argument("--gnupg-home", help="GnuPG home directory")
    parser.add_argument(
        "--version",
        action="version",
        version=f"gpgmail {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status = subparsers.add_parser("status", help="Show whether a message is encrypted or signed")
    status.add_argument("file", help="Message file, or - for stdin")

    decrypt = subparsers.add_parser("decrypt", help="Decrypt a message")
    decrypt.add_argument("file", help="Message file, or - for stdin")
    decrypt.add_argument("--verify", action="store_true", help="Verify signatures too")
    decrypt.add_argument(
        "--import-missing-keys",
        action="store_true",
        help="Fetch unknown signer keys from the key server (with --verify)",
    )
    decrypt.add_argument("--passphrase", help="Passphrase for the secret key")
    decrypt.add_argument("-o", "--output", help="Write the decrypted message here")

    verify = subparsers.add_parser("verify", help="Verify a signed message")
    verify.add_argument("file", help="Message file, or - for stdin")
    verify.add_argument(
        "--import-missing-keys",
        action="store_true",
        help="Fetch unknown signer keys from the key server",
    )
    verify.add_argument("-o", "--output", help="Write the message without signature here")

    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    """Settings from --config or the environment, with command line overrides."""
    settings = Settings.from_toml(args.config) if args.config else get_settings()
    if args.gnupg_home:
        gnupg = settings.gnupg.model_dump()
        gnupg["home"] = args.gnupg_home
        settings = settings.model_copy(update={"gnupg": GnuPGSettings(**gnupg)})
    return settings


def read_message(path: str, **kwargs) -> GpgMessage:
    if path == "-":
        return GpgMessage.from_bytes(sys.stdin.buffer.read(), **kwargs)
    with open(path, "rb") as f:
        return GpgMessage.from_bytes(f.read(), **kwargs)


def write_message(message: GpgMessage, output: Optional[str]) -> None:
    data = message.as_bytes()
    if output:
        with open(output, "wb") as f:
            f.write(data)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()


def print_signatures(result: Optional[VerifyResult]) -> None:
    if result is None or not result.signatures:
        print("No signatures", file=sys.stderr)
        return
    for signature in result.signatures:
        state = "good" if signature.valid else "BAD"
        print(
            f"{state} signature from {signature.username or '(unknown)'} "
            f"[{signature.lookup_id or '?'}]: {signature.status}",
            file=sys.stderr,
        )


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the gpgmail command.

    Returns:
        Exit code (0 for success, 1 for errors, 2 for bad signatures).
    """
    args = parse_args(argv)
    debug = args.debug or os.getenv("GPGMAIL_DEBUG", "").lower() in ("true", "1", "yes")

    try:
        settings = load_settings(args)
    except GpgMailError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(settings, debug)
    logger = logging.getLogger(__name__)
    logger.debug("Starting gpgmail v%s", __version__)

    try:
        keyring = create_keyring(settings)
        engine = GpgEngine(keyring)
        key_directory = create_key_server_client(keyring, settings, raise_errors=False)
        message = read_message(args.file, engine=engine, key_directory=key_directory)

        if args.command == "status":
            print(f"encrypted: {'yes' if message.is_encrypted() else 'no'}")
            print(f"signed: {'yes' if message.is_signed() else 'no'}")
            return EXIT_OK

        if args.command == "decrypt":
            options = {"verify": args.verify, "import_missing_keys": args.import_missing_keys}
            if args.passphrase:
                options["passphrase"] = args.passphrase
            result = message.decrypt(options)
            write_message(result, args.output)
            if not args.verify:
                return EXIT_OK
        else:
            result = message.verify(import_missing_keys=args.import_missing_keys)
            write_message(result, args.output)

        print_signatures(result.verify_result)
        return EXIT_OK if result.signature_valid else EXIT_BAD_SIGNATURE

    except OSError as e:
        logger.error("Cannot read message: %s", e)
        return EXIT_ERROR

    except GpgMailError as e:
        logger.error("%s", e)
        return EXIT_ERROR

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
