from pathlib import Path
from av1d.domain.events import CandidateSkipped, ScanCycleFinished
from av1d.infrastructure.event_bus import EventBus


def test_publish_subscribe():
    bus = EventBus()
    received = []
    bus.subscribe(ScanCycleFinished, received.append)

    event = ScanCycleFinished(admitted=2)
    bus.publish(event)

    assert received == [event]


def test_decorator_subscription():
    bus = EventBus()
    received = []

    @bus.subscribe(CandidateSkipped)
    def on_skip(event):
        received.append(event.reason)

    bus.publish(CandidateSkipped(path=Path("/lib/a.mkv"), reason="already AV1"))
    assert received == ["already AV1"]


def test_only_matching_type_delivered():
    bus = EventBus()
    received = []
    bus.subscribe(CandidateSkipped, received.append)

    bus.publish(ScanCycleFinished())
    assert received == []


def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("observer bug")

    bus.subscribe(ScanCycleFinished, broken)
    bus.subscribe(ScanCycleFinished, received.append)

    bus.publish(ScanCycleFinished())
    assert len(received) == 1
