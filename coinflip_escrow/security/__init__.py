"""Security primitives: audit events, atomic entry points, the admin timelock and API sessions."""
from .audit import EventLog, EventType, EventSeverity
from .guard import Revertible, entrypoint
from .timelock import TimelockGate, fingerprint, normalize_param, timelocked
from .auth import SessionStore, login_message, verify_wallet_signature

__all__ = [
    "EventLog",
    "EventType",
    "EventSeverity",
    "Revertible",
    "entrypoint",
    "TimelockGate",
    "fingerprint",
    "normalize_param",
    "timelocked",
    "SessionStore",
    "login_message",
    "verify_wallet_signature",
]
