"""Notification dispatcher: validates and forwards messages to the open session."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import TransportError, ValidationError

if TYPE_CHECKING:
    from .connection import ConnectionManager

_LOGGER = logging.getLogger(__name__)

DEFAULT_ADDRESS_SUFFIX = "s.whatsapp.net"

# International number: optional "+", then 2-15 digits without a leading zero.
_PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
# Formatting characters tolerated in user input.
_FORMATTING_RE = re.compile(r"[\s\-().]")


@dataclass(frozen=True)
class DeliveryReceipt:
    """Outcome of a successful send."""

    delivery_id: str
    destination: str


def normalize_destination(destination: str, suffix: str = DEFAULT_ADDRESS_SUFFIX) -> str:
    """Validate a phone number and map it onto the network's address scheme.

    >>> normalize_destination("+1 (234) 567-890")
    '1234567890@s.whatsapp.net'

    Raises:
        ValidationError: If the number is not in international format.
    """
    if not isinstance(destination, str):
        raise ValidationError("Destination must be a string")
    compact = _FORMATTING_RE.sub("", destination)
    if not _PHONE_RE.match(compact):
        raise ValidationError(
            "Invalid phone number format. Use international format (e.g., +1234567890)"
        )
    return f"{compact.lstrip('+')}@{suffix}"


class NotificationDispatcher:
    """Sends notifications through the connection manager's open session.

    The dispatcher never retries; retry policy belongs to the caller.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        *,
        address_suffix: str = DEFAULT_ADDRESS_SUFFIX,
    ) -> None:
        self._manager = manager
        self._address_suffix = address_suffix

    async def send(self, destination: str, body: str) -> DeliveryReceipt:
        """Send a text message.

        Raises:
            ValidationError: Malformed destination or empty body.
            NotConnectedError: No open session.
            TransportError: The transport failed or the network rejected the message.
        """
        address = normalize_destination(destination, self._address_suffix)
        if not isinstance(body, str) or not body.strip():
            raise ValidationError("Message body must not be empty")

        session = self._manager.active_session()

        _LOGGER.info("Sending message to %s", address)
        try:
            receipt = await session.send(address, {"text": body})
        except TransportError as err:
            _LOGGER.error(
                "Failed to send message to %s: %s (status_code=%s)",
                address,
                err,
                err.status_code,
            )
            raise

        if not receipt.delivery_id:
            raise TransportError("Transport returned an empty delivery id")

        _LOGGER.info("Message sent to %s as %s", address, receipt.delivery_id)
        return DeliveryReceipt(delivery_id=receipt.delivery_id, destination=address)
