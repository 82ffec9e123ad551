# backend/tests/test_session.py
#
# The 90-minute session window and the single scheduled logout.

from clinic.session import (
    EXPIRED_MESSAGE,
    TIMEOUT_MESSAGE,
    SessionGate,
    evaluate_session,
    expired_message,
    parse_session_cookie,
)

WINDOW_MS = 90 * 60 * 1000


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def live(self):
        return [h for h in self.handles if not h.cancelled]


def _gate(now_ms, scheduler, logouts):
    return SessionGate(WINDOW_MS, on_logout=logouts.append, scheduler=scheduler, clock=lambda: now_ms)


def test_evaluate_session_boundaries():
    assert evaluate_session(0, WINDOW_MS - 1, WINDOW_MS).expired is False
    assert evaluate_session(0, WINDOW_MS, WINDOW_MS).expired is True
    assert evaluate_session(0, 1000, WINDOW_MS).remaining_ms == WINDOW_MS - 1000


def test_expired_start_logs_out_once_and_schedules_nothing():
    # Arrange
    scheduler, logouts = FakeScheduler(), []
    now = 1_700_000_000_000
    gate = _gate(now, scheduler, logouts)

    # Act
    status = gate.evaluate(now - 91 * 60 * 1000)

    # Assert
    assert status.expired is True
    assert logouts == [EXPIRED_MESSAGE]
    assert scheduler.handles == []
    assert gate.pending is False


def test_fresh_start_schedules_exactly_one_logout_at_remaining_time():
    # Arrange
    scheduler, logouts = FakeScheduler(), []
    now = 1_700_000_000_000
    gate = _gate(now, scheduler, logouts)

    # Act
    gate.evaluate(now - 30 * 60 * 1000)

    # Assert
    assert logouts == []
    assert len(scheduler.live) == 1
    assert scheduler.live[0].delay == 60 * 60


def test_reevaluation_replaces_the_scheduled_logout():
    scheduler, logouts = FakeScheduler(), []
    now = 1_700_000_000_000
    gate = _gate(now, scheduler, logouts)

    gate.evaluate(now - 10 * 60 * 1000)
    gate.evaluate(now - 20 * 60 * 1000)

    assert len(scheduler.handles) == 2
    assert scheduler.handles[0].cancelled is True
    assert len(scheduler.live) == 1
    assert scheduler.live[0].delay == 70 * 60


def test_scheduled_logout_fires_timeout_message():
    scheduler, logouts = FakeScheduler(), []
    now = 1_700_000_000_000
    gate = _gate(now, scheduler, logouts)
    gate.evaluate(now)

    scheduler.live[0].callback()

    assert logouts == [TIMEOUT_MESSAGE]
    assert gate.pending is False


def test_parse_session_cookie():
    assert parse_session_cookie("1700000000000") == 1700000000000
    assert parse_session_cookie(None) is None
    assert parse_session_cookie("garbage") is None


def test_expired_message_follows_the_configured_window():
    scheduler, logouts = FakeScheduler(), []
    now = 1_700_000_000_000
    gate = SessionGate(30 * 60 * 1000, on_logout=logouts.append, scheduler=scheduler, clock=lambda: now)

    gate.evaluate(now - 31 * 60 * 1000)

    assert logouts == [expired_message(30 * 60 * 1000)]
    assert "30 min" in logouts[0]
    assert "90 min" in EXPIRED_MESSAGE
