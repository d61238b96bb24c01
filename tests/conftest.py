"""
Shared pytest fixtures for the LocalPass test suite.

  - Audit logger -> temp directory (no events in the real ./audit_logs)
  - FAST_KDF     -> smallest valid Argon2id profile so tests stay quick
  - Fake timers and clock so idle-lock tests never sleep
"""

import pytest

from localpass.vault.encryption import KdfParams
from localpass.vault.session import VaultSession
from localpass.vault.store import VaultStore

FAST_KDF = KdfParams(memory=64, time=1, parallelism=1)

MASTER_PASSWORD = "correct-Horse-42"
NEW_PASSWORD = "Another-Secret-99"


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import localpass.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


class FakeTimer:
    """Stands in for threading.Timer; fires only when the test says so."""

    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    @property
    def pending(self):
        return self.started and not self.cancelled

    def fire(self):
        self.callback()


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, callback):
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    def pending(self, interval=None):
        return [
            t for t in self.timers
            if t.pending and (interval is None or t.interval == interval)
        ]


class FakeClock:
    """Millisecond clock that only moves when advanced."""

    def __init__(self, start=1_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms=1):
        self.now += ms
        return self.now


@pytest.fixture
def fast_kdf():
    return FAST_KDF


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return FakeTimerFactory()


class FakeClipboard:
    def __init__(self):
        self.writes = []

    def write(self, text):
        self.writes.append(text)

    @property
    def text(self):
        return self.writes[-1] if self.writes else ""


@pytest.fixture
def clipboard():
    return FakeClipboard()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "vault.db"


@pytest.fixture
def store(db_path, clock):
    s = VaultStore(db_path, clock=clock)
    s.open()
    yield s
    s.close()


@pytest.fixture
def make_session(db_path, clock, timers, clipboard):
    """Factory for sessions sharing one database file."""
    sessions = []

    def _make(**kwargs):
        kwargs.setdefault("kdf_params", FAST_KDF)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("timer_factory", timers)
        kwargs.setdefault("clipboard_writer", clipboard.write)
        session = VaultSession(VaultStore(db_path, clock=clock), **kwargs)
        session.open()
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        session.close()


@pytest.fixture
def session(make_session):
    """Open, uninitialized, locked session."""
    return make_session()


@pytest.fixture
def unlocked(session):
    """Session after setup() with MASTER_PASSWORD."""
    ok, message = session.setup(MASTER_PASSWORD)
    assert ok, message
    return session
