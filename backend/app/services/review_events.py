"""Typed domain events emitted by the SSC review workflow.

Events are published only after the transaction that produced them has
committed.  Delivery is fire-and-forget: a failing publisher is logged and
never undoes or fails the committed decision.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol, Union
from uuid import UUID

from app.models.db.base import utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageDecided:
    application_id: UUID
    stage: str
    outcome: str
    reviewer_id: str
    decision_id: UUID
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StageReopened:
    application_id: UUID
    stage: str
    reviewer_id: str
    reason: str
    decision_id: UUID
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StageRevisionRequested:
    application_id: UUID
    stage: str
    reviewer_id: str
    notes: str
    decision_id: UUID
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ApplicationUnderReview:
    application_id: UUID
    application_number: str
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ApplicationApproved:
    application_id: UUID
    application_number: str
    approved_amount: Optional[Decimal]
    decided_by: str
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ApplicationRejected:
    application_id: UUID
    application_number: str
    reason: str
    decided_by: str
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ApplicationWithdrawn:
    application_id: UUID
    application_number: str
    reason: Optional[str]
    withdrawn_by: str
    occurred_at: datetime = field(default_factory=utcnow)


ReviewEvent = Union[
    StageDecided,
    StageReopened,
    StageRevisionRequested,
    ApplicationUnderReview,
    ApplicationApproved,
    ApplicationRejected,
    ApplicationWithdrawn,
]


def event_payload(event: ReviewEvent) -> dict[str, Any]:
    """Flatten an event into a JSON-friendly dict tagged with its type."""
    payload = {"event": type(event).__name__}
    for key, value in asdict(event).items():
        if isinstance(value, (UUID, Decimal)):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        payload[key] = value
    return payload


# ---------------------------------------------------------------------------
# Publishers
# ---------------------------------------------------------------------------


class EventPublisher(Protocol):
    async def publish(self, event: ReviewEvent) -> None: ...


class LoggingEventPublisher:
    """Default publisher: writes each event to the application log.

    Notification delivery (SMS, email) lives in a separate service that
    tails these records; swap in a real channel by passing another
    ``EventPublisher`` to the workflow.
    """

    async def publish(self, event: ReviewEvent) -> None:
        logger.info("Review event: %s", event_payload(event))


async def publish_all(
    publisher: EventPublisher | None, events: list[ReviewEvent]
) -> None:
    """Publish *events* in order; failures are logged and skipped."""
    if publisher is None:
        return
    for event in events:
        try:
            await publisher.publish(event)
        except Exception as exc:
            logger.warning(
                "Failed to publish %s for application %s: %s",
                type(event).__name__,
                event.application_id,
                exc,
            )
