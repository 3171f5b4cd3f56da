"""
Event Bus Tests

Tests for the publish/subscribe channel and state snapshots.

To run these tests:
    pytest tests/core/test_event_bus.py -v
"""

import dataclasses

import pytest

from core.event_bus import ALL_EVENTS, EventBus, UploadManagerSnapshot

# =============================================================================
# PUBLISH / SUBSCRIBE TESTS
# =============================================================================


@pytest.mark.unit
def test_publish_reaches_subscribers():
    """
    Test basic delivery.

    Should:
    - Call handlers of the published event with (event_type, data)
    - Not call handlers of other events
    """
    bus = EventBus()
    received = []
    other = []

    bus.subscribe("upload-queued", lambda event, data: received.append((event, data)))
    bus.subscribe("upload-failed", lambda event, data: other.append(data))

    bus.publish("upload-queued", {"id": "upl_1"})

    assert received == [("upload-queued", {"id": "upl_1"})]
    assert other == []


@pytest.mark.unit
def test_wildcard_subscriber_sees_everything():
    bus = EventBus()
    names = []
    bus.subscribe(ALL_EVENTS, lambda event, data: names.append(event))

    bus.publish("initialized")
    bus.publish("state-changed", None)

    assert names == ["initialized", "state-changed"]


@pytest.mark.unit
def test_unsubscribe_function():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe("log", lambda event, data: received.append(data))

    bus.publish("log", "first")
    unsubscribe()
    bus.publish("log", "second")

    assert received == ["first"]


@pytest.mark.unit
def test_failing_handler_does_not_break_publisher():
    """
    Test handler isolation.

    Should:
    - Swallow and log the handler exception
    - Still deliver to the remaining handlers
    """
    bus = EventBus()
    received = []

    def broken(event, data):
        raise RuntimeError("handler bug")

    bus.subscribe("error", broken)
    bus.subscribe("error", lambda event, data: received.append(data))

    bus.publish("error", "disk full")

    assert received == ["disk full"]


# =============================================================================
# SNAPSHOT TESTS
# =============================================================================


@pytest.mark.unit
def test_snapshot_is_immutable_and_serializable():
    snapshot = UploadManagerSnapshot(
        initialized=True,
        paused=False,
        providers=("s3",),
        accounts=({"id": "acc_1"},),
        active=({"id": "upl_1"},),
        queued=({"id": "upl_2"}, {"id": "upl_3"}),
        completed=(),
    )

    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.paused = True

    data = snapshot.to_dict()
    assert data["queue_status"] == {
        "paused": False,
        "queue_length": 2,
        "active_uploads": 1,
    }
    assert data["uploads"]["queued"] == [{"id": "upl_2"}, {"id": "upl_3"}]
    assert data["accounts"] == [{"id": "acc_1"}]
