"""
Delivery hooks and strategies for gpgmail.

A message delivers through its ``delivery_handler`` hook when one is set,
otherwise straight through its ``delivery_method``. Turning GPG mode on
installs ``GPG_DELIVERY_HANDLER``, which encrypts or signs the message
right before it is handed to the delivery method.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from email.message import Message
from email.utils import getaddresses
from typing import Any, Optional, TYPE_CHECKING

import aiosmtplib

from ..common.config import Settings, get_settings
from ..common.exceptions import GpgMailError, MessageDeliveryError

if TYPE_CHECKING:
    from .message import GpgMessage

logger = logging.getLogger(__name__)


def envelope_recipients(message: Message) -> list[str]:
    """Addresses from the To, Cc and Bcc headers."""
    headers = message.get_all("To", []) + message.get_all("Cc", []) + message.get_all("Bcc", [])
    return [addr for _, addr in getaddresses(headers) if addr]


class DeliveryStrategy(ABC):
    """Transport that hands a finished message over for delivery."""

    @abstractmethod
    def deliver(self, message: Message) -> Any:
        """
        Deliver a message.

        Raises:
            MessageDeliveryError: If the message cannot be delivered.
        """


class MemoryDelivery(DeliveryStrategy):
    """Keeps delivered messages in memory."""

    def __init__(self) -> None:
        self.deliveries: list[Message] = []

    def deliver(self, message: Message) -> Message:
        self.deliveries.append(message)
        return message


class SMTPDelivery(DeliveryStrategy):
    """
    Submits messages to an SMTP server using aiosmtplib.

    ``deliver`` is for synchronous callers; code already running in an
    event loop awaits ``send`` instead.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        start_tls: bool = True,
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.start_tls = start_tls
        self.timeout = timeout

    def deliver(self, message: Message) -> Any:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.send(message))
        raise MessageDeliveryError(
            ", ".join(envelope_recipients(message)) or "(no recipients)",
            "deliver() called from a running event loop, await send() instead",
            {"host": self.host, "port": self.port},
        )

    async def send(self, message: Message) -> Any:
        """
        Submit a message.

        Raises:
            MessageDeliveryError: If the SMTP server cannot be reached or
                rejects the message.
        """
        recipients = envelope_recipients(message)
        try:
            response = await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise MessageDeliveryError(
                ", ".join(recipients) or "(no recipients)",
                str(e),
                {"host": self.host, "port": self.port},
            )

        logger.info(
            "Submitted message to %s:%d for %d recipient(s)",
            self.host,
            self.port,
            len(recipients),
        )
        return response


def create_smtp_delivery(settings: Optional[Settings] = None) -> SMTPDelivery:
    """
    Create an SMTP delivery strategy from settings.

    Args:
        settings: Settings instance; the cached settings when omitted.

    Returns:
        Configured SMTPDelivery instance.
    """
    if settings is None:
        settings = get_settings()

    smtp = settings.smtp
    return SMTPDelivery(
        host=smtp.host,
        port=smtp.port,
        username=smtp.username,
        password=smtp.password,
        start_tls=smtp.start_tls,
        timeout=smtp.timeout,
    )


class DeliveryHandler(ABC):
    """Hook that runs around the delivery of a message."""

    @abstractmethod
    def deliver_mail(self, message: "GpgMessage", send: Callable[[], Any]) -> Any:
        """
        Deliver ``message``.

        Args:
            message: Message being delivered.
            send: Delivers ``message`` unchanged when called.
        """


class GpgDeliveryHandler(DeliveryHandler):
    """
    Encrypts or signs a message according to its GPG mode at send time.

    Engine errors are raised when the message has
    ``raise_encryption_errors`` set. Otherwise they are logged and the
    message is not sent; it never goes out unprotected.
    """

    def deliver_mail(self, message: "GpgMessage", send: Callable[[], Any]) -> Any:
        mode = message.gpg()
        if mode is None:
            return send()

        options = mode.options
        try:
            if options.wants_encryption:
                protected = message.engine.encrypt(message.message, options)
            elif options.wants_signature:
                protected = message.engine.sign(message.message, options)
            else:
                return send()
        except GpgMailError as e:
            if message.raise_encryption_errors:
                raise
            logger.warning(
                "Not delivering message %s: %s",
                message.get("Message-ID", "(no message id)"),
                e,
            )
            return None

        return message.derive(protected).deliver()

    def __repr__(self) -> str:
        return "GPG_DELIVERY_HANDLER"


GPG_DELIVERY_HANDLER = GpgDeliveryHandler()
