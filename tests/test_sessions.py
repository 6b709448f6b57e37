from __future__ import annotations

from datetime import datetime, timedelta, timezone

from localdata.sessions import SessionManager


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def test_create_resolve_and_destroy() -> None:
    sessions = SessionManager()
    token = sessions.create("user-1")

    assert sessions.resolve(token) == "user-1"
    assert sessions.destroy(token) == "user-1"
    assert sessions.resolve(token) is None
    # Destroying twice is harmless.
    assert sessions.destroy(token) is None
    assert sessions.destroy(None) is None


def test_unknown_and_missing_tokens_resolve_to_none() -> None:
    sessions = SessionManager()

    assert sessions.resolve("not-a-session") is None
    assert sessions.resolve(None) is None
    assert sessions.resolve("") is None


def test_sessions_expire_after_idle_ttl() -> None:
    clock = FakeClock()
    sessions = SessionManager(ttl=timedelta(minutes=30), clock=clock)
    token = sessions.create("user-1")

    clock.advance(minutes=20)
    assert sessions.resolve(token) == "user-1"
    # The lookup above slid the expiry forward.
    clock.advance(minutes=20)
    assert sessions.resolve(token) == "user-1"

    clock.advance(minutes=31)
    assert sessions.resolve(token) is None
    assert sessions.active_sessions("user-1") == 0


def test_destroy_user_revokes_every_session() -> None:
    sessions = SessionManager(ttl=timedelta(hours=1))
    first = sessions.create("user-1")
    second = sessions.create("user-1")
    other = sessions.create("user-2")

    assert sessions.active_sessions("user-1") == 2
    assert sessions.destroy_user("user-1") == 2
    assert sessions.resolve(first) is None
    assert sessions.resolve(second) is None
    assert sessions.resolve(other) == "user-2"
    assert sessions.destroy_user("user-1") == 0
    assert sessions.cookie_max_age == 3600


def test_purge_expired() -> None:
    clock = FakeClock()
    sessions = SessionManager(ttl=timedelta(minutes=5), clock=clock)
    stale = sessions.create("user-1")
    clock.advance(minutes=4)
    fresh = sessions.create("user-2")
    clock.advance(minutes=2)

    assert sessions.purge_expired() == 1
    assert sessions.resolve(stale) is None
    assert sessions.resolve(fresh) == "user-2"
