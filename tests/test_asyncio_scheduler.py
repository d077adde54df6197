from __future__ import annotations

import asyncio
import datetime

import pytest

from kiosk_api import session_engine
from kiosk_api.identity import Identity, Role, SessionPolicy
from kiosk_api.session_engine import AsyncioScheduler, SessionEngine, SessionState
from kiosk_api.session_store import MemorySessionStore
from tests.helpers.fakes import FakeVerifier

CLERK = Identity(id=1, name="Anna", role=Role.USER, department="Reception")


@pytest.fixture
def short_sessions(monkeypatch):
    def policy(role, admin_console):
        return SessionPolicy(duration=datetime.timedelta(milliseconds=50))

    monkeypatch.setattr(session_engine, "policy_for", policy)


def _engine(**kwargs):
    return SessionEngine(MemorySessionStore(), FakeVerifier({"1111": CLERK}), **kwargs)


def test_session_expires_on_a_real_event_loop(short_sessions):
    async def scenario():
        expired = asyncio.Event()
        engine = _engine(scheduler=AsyncioScheduler(), on_expired=expired.set)
        engine.login("1111")
        assert engine.state is SessionState.ACTIVE
        await asyncio.wait_for(expired.wait(), timeout=2)
        return engine

    engine = asyncio.run(scenario())
    assert engine.state is SessionState.EXPIRED
    assert engine.identity is None


def test_logout_cancels_loop_timers(short_sessions):
    async def scenario():
        expired = []
        engine = _engine(scheduler=AsyncioScheduler(), on_expired=lambda: expired.append(True))
        engine.login("1111")
        engine.logout()
        await asyncio.sleep(0.15)
        return engine, expired

    engine, expired = asyncio.run(scenario())
    assert expired == []
    assert engine.state is SessionState.NO_SESSION


def test_explicit_loop_can_be_used_from_outside_it(short_sessions):
    loop = asyncio.new_event_loop()
    try:
        expired = []
        engine = _engine(scheduler=AsyncioScheduler(loop), on_expired=lambda: expired.append(True))
        engine.login("1111")
        loop.run_until_complete(asyncio.sleep(0.15))
        assert expired == [True]
    finally:
        loop.close()


def test_login_without_running_loop_fails_cleanly():
    store = MemorySessionStore()
    engine = SessionEngine(store, FakeVerifier({"1111": CLERK}), scheduler=AsyncioScheduler())
    with pytest.raises(RuntimeError, match="running event loop"):
        engine.login("1111")
    assert engine.state is SessionState.NO_SESSION
    assert store.load() is None
