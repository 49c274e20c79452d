"""
Engine event log.

Every successful entry point emits one or more events. Events from a call that
reverts are rolled back with the rest of the state and never published.
"""
import logging
from typing import Any, Dict, List, Optional
from enum import Enum

from ..database.models import Event
from .guard import Revertible

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of engine events."""
    # Game lifecycle
    GAME_CREATED = "game_created"
    GAME_JOINED = "game_joined"
    GAME_CANCELLED = "game_cancelled"
    RESOLVED_WITH_SIGNER = "resolved_with_signer"
    GAME_RESOLVED = "game_resolved"
    REFUNDED = "refunded"

    # Pull payments
    FUNDS_CLAIMED = "funds_claimed"

    # Timelocked admin actions
    ACTION_QUEUED = "action_queued"
    ACTION_EXECUTED = "action_executed"
    WHITELIST_UPDATED = "whitelist_updated"
    TRUSTED_SIGNER_UPDATED = "trusted_signer_updated"
    SEED_COMMITTED = "seed_committed"
    FEES_WITHDRAWN = "fees_withdrawn"
    PAUSED = "paused"
    UNPAUSED = "unpaused"
    UPGRADE_AUTHORIZED = "upgrade_authorized"
    DAILY_LIMIT_UPDATED = "daily_limit_updated"


class EventSeverity(Enum):
    """Severity levels for events."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EventLog(Revertible):
    """Append-only event log with rollback support.

    The log only grows inside a call, so a checkpoint is just its length.
    """

    def __init__(self, chain):
        self.chain = chain
        self._events: List[Event] = []

    def __len__(self) -> int:
        return len(self._events)

    def snapshot(self) -> Dict[str, int]:
        return {"length": len(self._events)}

    def restore(self, snapshot: Dict[str, int]) -> None:
        del self._events[snapshot["length"]:]

    def commit(self, snapshot: Dict[str, int]) -> None:
        pass

    def emit(
        self,
        event_type: EventType,
        severity: EventSeverity = EventSeverity.INFO,
        **args: Any,
    ) -> Event:
        """Record an event at the current block.

        Args:
            event_type: Type of event
            severity: Severity level
            **args: Event arguments

        Returns:
            The recorded Event
        """
        event = Event(
            event_type=event_type.value,
            args=dict(args),
            block=self.chain.block_number,
            timestamp=self.chain.timestamp,
            severity=severity.value,
        )
        self._events.append(event)
        return event

    def publish(self, since: int = 0):
        """Write committed events to the application logger."""
        for event in self._events[since:]:
            log_msg = f"[EVENT] {event.event_type} | block={event.block}"
            if event.args:
                details = ", ".join(f"{k}={v}" for k, v in event.args.items())
                log_msg += f" | {details}"

            if event.severity == EventSeverity.CRITICAL.value:
                logger.critical(log_msg)
            elif event.severity == EventSeverity.WARNING.value:
                logger.warning(log_msg)
            else:
                logger.info(log_msg)

    def events(
        self,
        event_type: Optional[EventType] = None,
        limit: Optional[int] = None,
    ) -> List[Event]:
        """Get recorded events, oldest first.

        Args:
            event_type: Filter by event type
            limit: Return only the most recent N matches

        Returns:
            List of events
        """
        matches = [
            e for e in self._events
            if event_type is None or e.event_type == event_type.value
        ]
        if limit is not None:
            matches = matches[-limit:] if limit > 0 else []
        return matches

    def last(self, event_type: EventType) -> Optional[Event]:
        """Most recent event of a type, or None."""
        matches = self.events(event_type, limit=1)
        return matches[0] if matches else None

    def load(self, events: List[Event]):
        """Replace the log contents (used when restoring from the database)."""
        self._events = list(events)
