from __future__ import annotations

import pytest

from assetvault.core.events import EventHub
from assetvault.core.results import LookupErrorCode, ResultError, error, ok, ok_if_exists


def test_listeners_run_in_subscription_order():
    hub = EventHub("test")
    seen: list[tuple[str, int]] = []
    hub.subscribe("status", lambda payload: seen.append(("first", payload)))
    hub.subscribe("status", lambda payload: seen.append(("second", payload)))

    hub.emit("status", 1)
    hub.emit("other", 2)

    assert seen == [("first", 1), ("second", 1)]


def test_failing_listener_does_not_stop_delivery():
    hub = EventHub("test")
    seen: list[int] = []

    def broken(payload):
        raise RuntimeError("listener bug")

    hub.subscribe("status", broken)
    hub.subscribe("status", seen.append)

    hub.emit("status", 7)
    assert seen == [7]


def test_unsubscribe():
    hub = EventHub("test")
    seen: list[int] = []
    unsubscribe = hub.subscribe("status", seen.append)
    hub.emit("status", 0)

    unsubscribe()
    unsubscribe()
    hub.emit("status", 1)

    assert seen == [0]


def test_results():
    assert ok(3).ok and ok(3).unwrap() == 3
    assert ok().value is None

    missing = ok_if_exists(None)
    assert not missing.ok
    assert missing.error is LookupErrorCode.DOES_NOT_EXIST
    with pytest.raises(ResultError):
        missing.unwrap()

    assert ok_if_exists("found").value == "found"
    assert error(LookupErrorCode.DOES_NOT_EXIST).error is LookupErrorCode.DOES_NOT_EXIST
