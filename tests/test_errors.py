import pytest

from claw_bridge.backoff import ReconnectPolicy
from claw_bridge.errors import (
    BadSession,
    ConnectionDead,
    LoggedOut,
    RestartRequired,
    SessionConflict,
    StartTimeout,
    TransientNetworkError,
    classify_close,
    describe_close,
)


@pytest.mark.parametrize(
    "code,message,expected",
    [
        (401, "Connection Failure", LoggedOut),
        (500, "Bad MAC", BadSession),
        (440, "Stream Errored", SessionConflict),
        (None, "Stream Errored (conflict)", SessionConflict),
        (515, "Stream Errored (restart required)", RestartRequired),
        (408, "Timed Out", TransientNetworkError),
        (428, "Connection Closed", TransientNetworkError),
        (None, "", TransientNetworkError),
    ],
)
def test_classify_close(code, message, expected):
    assert type(classify_close(code, message)) is expected


def test_recoverable_flags():
    assert classify_close(515).recoverable
    assert classify_close(408).recoverable
    assert not classify_close(401).recoverable
    assert not classify_close(440).recoverable


def test_describe_close():
    assert describe_close(RestartRequired("x")) == "restart required"
    assert describe_close(ConnectionDead("x")) == "connection dead"
    assert describe_close(StartTimeout("x")) == "start timed out"
    assert describe_close(classify_close(408, "Timed Out")) == "status 408: Timed Out"


def test_backoff_grows_and_caps():
    policy = ReconnectPolicy(base_seconds=3.0, growth=1.5, cap_seconds=60.0)

    assert [policy.delay(n) for n in (1, 2, 3)] == pytest.approx([3.0, 4.5, 6.75])
    assert policy.delay(20) == 60.0
    assert policy.delay(100_000) == 60.0


def test_restart_required_uses_fixed_delay():
    policy = ReconnectPolicy(restart_required_seconds=1.0)

    assert policy.delay_for(RestartRequired("x"), attempts=9) == 1.0
    assert policy.delay_for(TransientNetworkError("x"), attempts=1) == 3.0
