import pytest

from src.geotrack.core.location_types import LocationSample
from src.geotrack.core.subscribers import SubscriberRegistry


def test_notify_delivers_to_every_listener():
    registry = SubscriberRegistry()
    seen_a: list[tuple] = []
    seen_b: list[tuple] = []
    registry.subscribe(lambda sample, status: seen_a.append((sample, status)))
    registry.subscribe(lambda sample, status: seen_b.append((sample, status)))

    sample = LocationSample(latitude=37.0, longitude=-122.0)
    failed = registry.notify(sample, "active")

    assert failed == 0
    assert seen_a == [(sample, "active")]
    assert seen_b == [(sample, "active")]


def test_raising_listener_does_not_block_others():
    registry = SubscriberRegistry()
    seen: list[str] = []

    def _boom(sample, status):
        raise RuntimeError("listener failed")

    registry.subscribe(_boom)
    registry.subscribe(lambda sample, status: seen.append(status))

    assert registry.notify(None, "loading") == 1
    assert seen == ["loading"]


def test_unsubscribe_is_idempotent():
    registry = SubscriberRegistry()
    seen: list[str] = []
    unsubscribe = registry.subscribe(lambda sample, status: seen.append(status))
    assert registry.count() == 1

    unsubscribe()
    unsubscribe()
    registry.notify(None, "inactive")

    assert registry.count() == 0
    assert seen == []


def test_unsubscribe_from_inside_callback():
    registry = SubscriberRegistry()
    seen: list[str] = []
    handles: dict[str, object] = {}

    def _once(sample, status):
        seen.append(status)
        handles["unsubscribe"]()

    handles["unsubscribe"] = registry.subscribe(_once)
    registry.notify(None, "loading")
    registry.notify(None, "active")

    assert seen == ["loading"]


def test_clear_and_non_callable():
    registry = SubscriberRegistry()
    registry.subscribe(lambda sample, status: None)
    registry.clear()
    assert registry.count() == 0
    with pytest.raises(TypeError):
        registry.subscribe("not callable")  # type: ignore[arg-type]
