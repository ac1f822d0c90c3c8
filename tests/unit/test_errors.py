"""Unit tests for the error taxonomy."""
import json

from hostsweep.base.exceptions import ConfigFileNotFoundError, LockBusyError, PrivilegeError
from hostsweep.errors import ErrorCode, SweepError, handle_error


def test_sweep_error_message_carries_code():
    err = SweepError(ErrorCode.TASK_FAILED, "ps failed", details={"task": "ps"})
    assert str(err) == "[TASK_001] ps failed"
    assert not err.fatal


def test_round_trip_through_dict():
    err = SweepError(ErrorCode.LOCK_BUSY, "busy", details={"holder_pid": 42})
    again = SweepError.from_dict(json.loads(err.to_json()))
    assert again.code == ErrorCode.LOCK_BUSY
    assert again.details == {"holder_pid": 42}


def test_fatal_preconditions():
    assert ConfigFileNotFoundError("/etc/x.conf").fatal
    assert LockBusyError("/var/lock/hostsweep.lock", 7).fatal
    assert PrivilegeError(1000).fatal


def test_lock_busy_message():
    err = LockBusyError("/var/lock/hostsweep.lock", 4242)
    assert err.message == "Another instance is running (lock busy: /var/lock/hostsweep.lock). Holder PID: 4242"
    assert err.to_dict()["details"]["holder_pid"] == 4242


def test_handle_error_wraps_generic_exceptions():
    wrapped = handle_error(ValueError("bad"), context="while scoring")
    assert wrapped.code == ErrorCode.SYSTEM_INTERNAL_ERROR
    assert wrapped.message == "while scoring: bad"
    assert wrapped.details["original_type"] == "ValueError"

    assert handle_error(PermissionError("nope")).code == ErrorCode.SYSTEM_PRIVILEGE_REQUIRED

    original = SweepError(ErrorCode.NOTIFY_WEBHOOK_FAILED, "x")
    assert handle_error(original) is original
