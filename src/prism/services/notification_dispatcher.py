"""Notification dispatcher: fans domain events out to interested parties.

The dispatcher is the boundary to the real-time transport. It resolves an
``Audience`` into transport groups and hands the event to an injected
``Publisher``. Delivery is best-effort: ``publish`` never raises, so a dead
socket can never roll back the state change that produced the event.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from prism.app.config import get_settings
from prism.domain.enums import EventType
from prism.domain.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


def agency_group(agency_id: str) -> str:
    return f"agency:{agency_id}"


def client_group(client_id: str) -> str:
    return f"client:{client_id}"


@dataclass(frozen=True)
class Audience:
    """Who should receive an event.

    Agency staff of ``agency_id`` receive it when ``include_staff`` is set;
    users of ``client_id`` receive it when a client is given.
    """

    agency_id: str
    client_id: Optional[str] = None
    include_staff: bool = True

    @classmethod
    def staff(cls, agency_id: str) -> "Audience":
        return cls(agency_id=agency_id)

    @classmethod
    def pair(cls, agency_id: str, client_id: str) -> "Audience":
        return cls(agency_id=agency_id, client_id=client_id)

    def groups(self) -> list[str]:
        groups: list[str] = []
        if self.include_staff:
            groups.append(agency_group(self.agency_id))
        if self.client_id:
            groups.append(client_group(self.client_id))
        return groups


class Publisher(Protocol):
    """Transport primitive: deliver one message to every member of the groups."""

    async def publish(self, groups: list[str], message: dict) -> None: ...


class NullPublisher:
    """Publisher used before a transport is wired in. Drops everything."""

    async def publish(self, groups: list[str], message: dict) -> None:
        logger.debug("No transport configured; dropping %s", message.get("type"))


class RecordingPublisher:
    """In-memory publisher that keeps every delivered message (tests, CLI)."""

    def __init__(self):
        self.sent: list[tuple[list[str], dict]] = []

    async def publish(self, groups: list[str], message: dict) -> None:
        self.sent.append((list(groups), message))

    def of_type(self, event_type: EventType | str) -> list[dict]:
        value = event_type.value if isinstance(event_type, EventType) else event_type
        return [msg for _, msg in self.sent if msg["type"] == value]


class NotificationDispatcher:
    """Fan out domain events through a ``Publisher``."""

    def __init__(
        self,
        publisher: Optional[Publisher] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.publisher = publisher or NullPublisher()
        if timeout_seconds is None:
            timeout_seconds = get_settings().notification_timeout_seconds
        self.timeout_seconds = timeout_seconds
        self.failures = 0

    async def publish(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        audience: Audience,
    ) -> bool:
        """Deliver an event. Returns False on failure instead of raising."""
        message = {
            "type": event_type.value,
            **payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        groups = audience.groups()
        try:
            await asyncio.wait_for(
                self.publisher.publish(groups, message),
                timeout=self.timeout_seconds,
            )
        except Exception as exc:
            self.failures += 1
            error = NotificationDeliveryError(
                f"Failed to deliver {event_type.value} to {', '.join(groups)}: {exc!r}"
            )
            logger.error("%s", error)
            return False

        logger.info("Published %s to %s", event_type.value, ", ".join(groups))
        return True


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency: the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher
