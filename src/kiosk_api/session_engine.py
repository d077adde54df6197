"""
Session timer engine for kiosk and admin-console contexts.

The engine owns the current session and three timers:

- ``logout``: fires at ``expires_at`` and ends the session.
- ``warning``: admin-like sessions only, fires ``WARNING_LEAD`` before expiry.
- ``tick``: once the warning fired, publishes the remaining seconds every
  second so a caller can show a countdown and offer "extend".

Each timer kind has exactly one handle slot. Every re-arm cancels the slot's
current handle and stores the new one in the same synchronous call, so two
live timers of one kind can never exist.

The local session slot is authoritative. The optional ``remote_sign_out``
callable synchronizes a server-side credential on a best-effort basis; the
two are not updated atomically.
"""

import asyncio
import datetime
import enum
import logging
from typing import Callable, Optional

from .audit import AuditEvent, actor_from_identity
from .errors import InvalidCredential
from .identity import Identity, Session, SessionPolicy, policy_for

logger = logging.getLogger(__name__)

ACTIVITY_EVENTS = frozenset({"mousemove", "mousedown", "keydown", "touchstart", "scroll"})
TICK_INTERVAL = 1.0


class SessionState(str, enum.Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    WARNING_PENDING = "warning_pending"
    EXPIRED = "expired"


# PUBLIC_INTERFACE
class AsyncioScheduler:
    """
    Schedules callbacks on an asyncio event loop.

    Without an explicit loop, call_later uses the running loop, so the engine
    must then be driven from inside that loop (a coroutine or a callback).
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]):
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError("AsyncioScheduler needs a running event loop or an explicit loop") from None
        return loop.call_later(max(0.0, delay), callback)


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


# PUBLIC_INTERFACE
class SessionEngine:
    """
    Owns one session and its timers.

    Args:
        store: SessionStore holding the persisted slot.
        verifier: callable(pin) -> Identity, raising InvalidCredential.
        admin_console: True inside the admin console. Outside it sessions are
            renewed on activity with an idle timeout and never warn.
        scheduler: object with call_later(delay_seconds, callback) -> handle.
        clock: callable returning an aware UTC datetime.
        audit_sink: object with log_event(event); failures are ignored.
        remote_sign_out: callable(identity), best effort.
        on_expired: called after a forced logout.
        on_warning_tick: called with the remaining whole seconds.
    """

    def __init__(
        self,
        store,
        verifier: Callable[[str], Identity],
        *,
        admin_console: bool = False,
        scheduler=None,
        clock: Callable[[], datetime.datetime] = _utcnow,
        audit_sink=None,
        remote_sign_out: Optional[Callable[[Identity], None]] = None,
        on_expired: Optional[Callable[[], None]] = None,
        on_warning_tick: Optional[Callable[[int], None]] = None,
    ):
        self._store = store
        self._verifier = verifier
        self.admin_console = admin_console
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock
        self._audit_sink = audit_sink
        self._remote_sign_out = remote_sign_out
        self._on_expired = on_expired
        self._on_warning_tick = on_warning_tick

        self._session: Optional[Session] = None
        self._state = SessionState.NO_SESSION
        self._timers = {"logout": None, "warning": None, "tick": None}
        self._disposed = False

    # ---- read-only view ----

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._session.identity if self._session else None

    @property
    def expires_at(self) -> Optional[datetime.datetime]:
        return self._session.expires_at if self._session else None

    @property
    def seconds_remaining(self) -> Optional[int]:
        if self._session is None:
            return None
        remaining = (self._session.expires_at - self._clock()).total_seconds()
        return max(0, int(remaining + 0.999))

    def policy(self, identity: Identity) -> SessionPolicy:
        return policy_for(identity.role, self.admin_console)

    # ---- lifecycle ----

    # PUBLIC_INTERFACE
    def start(self) -> Optional[Identity]:
        """Restores a persisted session, if any, and arms its timers."""
        self._ensure_alive()
        self._cancel_all()
        session = self._store.load()
        if session is None:
            self._session = None
            self._state = SessionState.NO_SESSION
            return None
        self._session = session
        self._state = SessionState.ACTIVE
        self._arm(session)
        return session.identity

    # PUBLIC_INTERFACE
    def stop(self) -> None:
        """Cancels all timers and keeps the persisted session for the next start()."""
        self._cancel_all()

    # PUBLIC_INTERFACE
    def dispose(self) -> None:
        self._cancel_all()
        self._disposed = True

    # ---- operations ----

    # PUBLIC_INTERFACE
    def login(self, pin: str) -> Identity:
        """
        Verifies the PIN and starts a fresh session.

        Raises:
            InvalidCredential: the PIN was not accepted; no session is created.
            RuntimeError: the timers could not be armed; nothing is stored.
        """
        self._ensure_alive()
        identity = self._verifier(pin)
        if not isinstance(identity, Identity):
            raise InvalidCredential()
        session = Session(identity=identity, expires_at=self._clock() + self.policy(identity).duration)
        self._arm(session)
        self._store.save(session)
        self._session = session
        self._state = SessionState.ACTIVE
        self._audit("auth.login", identity)
        return identity

    # PUBLIC_INTERFACE
    def extend(self) -> Optional[datetime.datetime]:
        """
        Pushes expiry to now + the role's full session duration and
        re-arms every timer. Cancels a running warning countdown.
        """
        self._ensure_alive()
        if self._session is None:
            return None
        identity = self._session.identity
        session = Session(identity=identity, expires_at=self._clock() + self.policy(identity).duration)
        self._store.save(session)
        self._session = session
        self._state = SessionState.ACTIVE
        self._arm(session)
        return session.expires_at

    # PUBLIC_INTERFACE
    def record_activity(self, kind: str) -> bool:
        """
        Idle-timeout renewal. Returns True when the activity renewed the session.
        Only known interaction signals count, and only outside the admin console.
        """
        if self._disposed or kind not in ACTIVITY_EVENTS or self._session is None:
            return False
        idle_timeout = self.policy(self._session.identity).idle_timeout
        if idle_timeout is None:
            return False
        now = self._clock()
        if not self._session.is_valid(now):
            return False
        session = Session(identity=self._session.identity, expires_at=now + idle_timeout)
        self._store.save(session)
        self._session = session
        self._state = SessionState.ACTIVE
        self._cancel("warning")
        self._cancel("tick")
        self._schedule("logout", session.expires_at - now, self._on_logout_timer)
        return True

    # PUBLIC_INTERFACE
    def logout(self) -> None:
        """Ends the session from any state. Local state is always cleared."""
        identity = self.identity
        self._end_session(SessionState.NO_SESSION)
        if identity is not None:
            self._audit("auth.logout", identity)
            self._sign_out_remote(identity)

    # ---- timers ----

    def _arm(self, session: Session) -> None:
        now = self._clock()
        self._cancel_all()
        self._schedule("logout", session.expires_at - now, self._on_logout_timer)
        lead = self.policy(session.identity).warning_lead
        if lead is not None:
            self._schedule("warning", session.expires_at - lead - now, self._on_warning_timer)

    def _schedule(self, kind: str, delay: datetime.timedelta, callback) -> None:
        self._cancel(kind)
        self._timers[kind] = self._scheduler.call_later(max(0.0, delay.total_seconds()), callback)

    def _cancel(self, kind: str) -> None:
        handle = self._timers[kind]
        self._timers[kind] = None
        if handle is not None:
            handle.cancel()

    def _cancel_all(self) -> None:
        for kind in self._timers:
            self._cancel(kind)

    def _on_logout_timer(self) -> None:
        self._timers["logout"] = None
        if self._session is None:
            return
        now = self._clock()
        if now < self._session.expires_at:
            # Scheduler fired early; wait out the remainder.
            self._schedule("logout", self._session.expires_at - now, self._on_logout_timer)
            return
        identity = self._session.identity
        logger.info("Session for %s expired", identity.id)
        self._end_session(SessionState.EXPIRED)
        self._sign_out_remote(identity)
        if self._on_expired is not None:
            self._on_expired()

    def _on_warning_timer(self) -> None:
        self._timers["warning"] = None
        if self._session is None:
            return
        self._state = SessionState.WARNING_PENDING
        self._on_tick()

    def _on_tick(self) -> None:
        self._timers["tick"] = None
        if self._session is None or self._state is not SessionState.WARNING_PENDING:
            return
        remaining = self.seconds_remaining
        if self._on_warning_tick is not None:
            self._on_warning_tick(remaining)
        if remaining > 0:
            self._schedule("tick", datetime.timedelta(seconds=TICK_INTERVAL), self._on_tick)

    # ---- helpers ----

    def _end_session(self, state: SessionState) -> None:
        self._cancel_all()
        self._store.clear()
        self._session = None
        self._state = state

    def _sign_out_remote(self, identity: Identity) -> None:
        if self._remote_sign_out is None:
            return
        try:
            self._remote_sign_out(identity)
        except Exception as e:  # noqa: BLE001
            logger.warning("Remote sign-out failed, local session already cleared: %s", e)

    def _audit(self, event_type: str, identity: Identity) -> None:
        if self._audit_sink is None:
            return
        event = AuditEvent(
            event_type=event_type,
            level="audit",
            action=event_type.split(".", 1)[-1],
            actor=actor_from_identity(identity),
            source="client",
            context={"admin_console": self.admin_console},
        )
        try:
            self._audit_sink.log_event(event)
        except Exception as e:  # noqa: BLE001
            logger.warning("Audit sink raised: %s", e)

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise RuntimeError("SessionEngine has been disposed")
