"""
Two-phase timelock for privileged actions.

First call with a given fingerprint queues it; an identical call after the
delay executes it. Changing any parameter changes the fingerprint, so each
exact parameter set must sit in the queue for the full delay.
"""
import functools
import hashlib
import inspect
import json
import logging
from typing import Any, Callable, Dict, Optional

from ..errors import AuthorizationError, TimingError, ValidationError
from .audit import EventType, EventSeverity
from .guard import Revertible

logger = logging.getLogger(__name__)


def fingerprint(action: str, *params: Any) -> str:
    """Hash of the action name and its parameters.

    Args:
        action: Action name (e.g. "setWhitelist")
        *params: JSON-serializable action parameters

    Returns:
        sha256 hex digest
    """
    payload = json.dumps([action, *params], separators=(",", ":"), sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TimelockGate(Revertible):
    """Queue of pending admin actions keyed by fingerprint."""

    def __init__(self, chain, events, delay: int):
        self.chain = chain
        self.events = events
        self.delay = delay
        self.queue: Dict[str, int] = {}  # fingerprint -> execute-after timestamp

    def queued_at(self, action_id: str) -> Optional[int]:
        """Execute-after timestamp for a pending fingerprint, or None."""
        return self.queue.get(action_id)

    def ready(self, action: str, *params: Any) -> bool:
        """Queue or consume a gated action.

        Returns:
            False if the action was just queued, True if the queued entry was
            consumed and the effect should now be applied.

        Raises:
            TimingError: If the action is queued but the delay has not elapsed
        """
        action_id = fingerprint(action, *params)
        now = self.chain.timestamp
        execute_after = self.queue.get(action_id)

        if execute_after is None:
            execute_after = now + self.delay
            self._put(self.queue, action_id, execute_after)
            self.events.emit(
                EventType.ACTION_QUEUED,
                action=action,
                fingerprint=action_id,
                execute_after=execute_after,
            )
            logger.info(f"[TIMELOCK] Queued {action}{list(params)} until {execute_after}")
            return False

        if now < execute_after:
            raise TimingError("timelocked")

        self._drop(self.queue, action_id)
        self.events.emit(
            EventType.ACTION_EXECUTED,
            EventSeverity.WARNING,
            action=action,
            fingerprint=action_id,
        )
        logger.info(f"[TIMELOCK] Executing {action}{list(params)}")
        return True


def normalize_param(name: str, annotation: Any, value: Any) -> Any:
    """Coerce an action parameter to its annotated type before fingerprinting.

    `1` and `True` must queue the same action, so bool parameters accept 0/1
    and are stored as bool. Ints reject bools and non-integers.

    Raises:
        ValidationError: If the value cannot represent the annotated type
    """
    if annotation is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValidationError(f"bad {name}")
    if annotation is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"bad {name}")
        return value
    if annotation is str and not isinstance(value, str):
        raise ValidationError(f"bad {name}")
    return value


def timelocked(action: str, **normalizers: Callable[[Any], Any]) -> Callable:
    """Gate an owner-only engine method behind the timelock.

    The decorated method receives the caller first, then the action parameters,
    which may be passed positionally or by keyword. Parameters are normalized
    (by the named normalizer, else by annotation) before the fingerprint is
    taken, and the method body sees the normalized values.

    The wrapper returns False when it only queued the action and True when it
    executed it. The owner must provide `owner` and `timelock` attributes.
    """
    def decorator(method: Callable) -> Callable:
        signature = inspect.signature(method)
        names = list(signature.parameters)[2:]

        @functools.wraps(method)
        def wrapper(self, sender: str, *args: Any, **kwargs: Any) -> bool:
            if sender != self.owner:
                raise AuthorizationError("!owner")

            bound = signature.bind(self, sender, *args, **kwargs)
            bound.apply_defaults()
            params = []
            for name in names:
                value = bound.arguments[name]
                if name in normalizers:
                    params.append(normalizers[name](value))
                else:
                    params.append(normalize_param(name, signature.parameters[name].annotation, value))

            if not self.timelock.ready(action, *params):
                return False
            method(self, sender, *params)
            return True

        return wrapper

    return decorator
