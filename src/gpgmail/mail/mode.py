"""
Per-message GPG mode.

Enabling GPG mode records the options and installs the GPG delivery hook
in place of the message's current delivery handler. Disabling it puts the
saved handler back, unless the caller has replaced the hook since.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Union, TYPE_CHECKING

from ..crypto.options import GpgOptions
from .delivery import GPG_DELIVERY_HANDLER, DeliveryHandler

if TYPE_CHECKING:
    from .message import GpgMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GpgMode:
    """GPG configuration active on a message."""

    options: GpgOptions
    previous_delivery_handler: Optional[DeliveryHandler] = None

    @property
    def encrypt(self) -> bool:
        return self.options.wants_encryption

    @property
    def sign(self) -> bool:
        return self.options.wants_signature

    @property
    def sign_as(self) -> Optional[Union[str, list[str]]]:
        return self.options.sign_as


def enable_gpg(
    message: "GpgMessage",
    options: Union[GpgOptions, Mapping, bool, None] = None,
    **kwargs: Any,
) -> None:
    """
    Turn on GPG mode, or replace the options of the active mode.

    The options are replaced, not merged. The delivery handler saved when
    the mode was first enabled is kept.
    """
    gpg_options = GpgOptions.coerce(options, **kwargs)

    if message.raise_encryption_errors is None:
        message.raise_encryption_errors = True

    current = message.gpg_mode
    if current is not None:
        previous = current.previous_delivery_handler
    else:
        previous = message.delivery_handler

    message.gpg_mode = GpgMode(options=gpg_options, previous_delivery_handler=previous)
    message.delivery_handler = GPG_DELIVERY_HANDLER
    logger.debug(
        "GPG mode on: encrypt=%s sign=%s",
        gpg_options.wants_encryption,
        gpg_options.wants_signature,
    )


def disable_gpg(message: "GpgMessage") -> None:
    """Turn off GPG mode. Safe to call when the mode is not active."""
    current = message.gpg_mode
    if current is not None and message.delivery_handler is GPG_DELIVERY_HANDLER:
        message.delivery_handler = current.previous_delivery_handler
    message.gpg_mode = None
    logger.debug("GPG mode off")
