"""
Atomic, non-reentrant entry points.

Every mutating engine call runs inside `entrypoint`: a busy flag rejects nested
calls (e.g. from a receiver hook during a payout), and every revertible store
opens a checkpoint so a failing call leaves no partial effects behind.

Checkpoints cost O(what the call touched). Small scalar attributes are copied
when the checkpoint opens; large mappings are never copied, instead each write
made through `_put`/`_drop` records the previous value in a journal that is
replayed backwards on rollback.
"""
import copy
import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import ReentrancyError

logger = logging.getLogger(__name__)

_MISSING = object()


class Revertible:
    """Mixin for stores that can be rolled back by an entry point."""

    # Small attributes copied whole at every checkpoint
    _revertible: Tuple[str, ...] = ()

    _journal: Optional[List[Tuple[Dict, Any, Any]]] = None
    _depth = 0

    def snapshot(self) -> Dict[str, Any]:
        """Open a checkpoint. Checkpoints nest."""
        if self._journal is None:
            self._journal = []
        self._depth += 1
        return {
            "mark": len(self._journal),
            "attrs": {name: copy.copy(getattr(self, name)) for name in self._revertible},
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Undo everything written since the checkpoint and close it."""
        journal = self._journal
        while len(journal) > snapshot["mark"]:
            mapping, key, previous = journal.pop()
            if previous is _MISSING:
                mapping.pop(key, None)
            else:
                mapping[key] = previous
        for name, value in snapshot["attrs"].items():
            setattr(self, name, value)
        self._close()

    def commit(self, snapshot: Dict[str, Any]) -> None:
        """Keep everything written since the checkpoint and close it.

        An inner commit keeps its journal entries so an outer checkpoint can
        still roll them back.
        """
        self._close()

    def _close(self):
        self._depth -= 1
        if self._depth == 0:
            self._journal = None

    def _record(self, mapping: Dict, key: Any, previous: Any = _MISSING):
        if self._journal is not None:
            self._journal.append((mapping, key, previous))

    def _put(self, mapping: Dict, key: Any, value: Any):
        """Journaled `mapping[key] = value`."""
        self._record(mapping, key, mapping.get(key, _MISSING))
        mapping[key] = value

    def _drop(self, mapping: Dict, key: Any):
        """Journaled `mapping.pop(key)`."""
        if key in mapping:
            self._record(mapping, key, mapping.pop(key))


def entrypoint(func: Callable = None, *, payable: bool = False) -> Callable:
    """Wrap an engine method as an atomic, non-reentrant entry point.

    The wrapped method must take the caller identity as its first argument.
    For payable entry points the keyword `value` is moved from the caller to
    the engine account before the body runs.

    The owner object must provide `revertibles()`, `chain`, `address`, `events`
    and an `_in_call` flag.
    """
    def decorator(method: Callable) -> Callable:
        @functools.wraps(method)
        def wrapper(self, sender: str, *args, **kwargs):
            if self._in_call:
                logger.warning(f"[GUARD] Rejected nested call to {method.__name__} from {sender}")
                raise ReentrancyError("reentrant call")

            self._in_call = True
            checkpoints = [(store, store.snapshot()) for store in self.revertibles()]
            events_before = len(self.events)

            try:
                value = kwargs.get("value", 0) if payable else 0
                if value:
                    # Attached value lands before the body runs (msg.value)
                    self.chain.move_native(sender, self.address, value)
                result = method(self, sender, *args, **kwargs)
            except Exception as e:
                for store, checkpoint in reversed(checkpoints):
                    store.restore(checkpoint)
                logger.info(f"[GUARD] {method.__name__} reverted: {e}")
                raise
            else:
                for store, checkpoint in checkpoints:
                    store.commit(checkpoint)
            finally:
                self._in_call = False

            self.events.publish(since=events_before)
            return result

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
