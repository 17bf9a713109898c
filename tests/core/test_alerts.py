from src.geotrack.core.alerts import UserAlerts


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_breaker_alert_fires_once_until_closed():
    alerts = UserAlerts()
    first = alerts.breaker_opened("Unable to get location")
    assert first is not None
    assert first["kind"] == "breaker_open"
    assert first["alert_id"].startswith("alrt_")
    assert alerts.breaker_opened("Unable to get location") is None

    alerts.breaker_closed()
    assert alerts.breaker_opened("Unable to get location") is not None
    assert len(alerts.recent()) == 2


def test_permission_alert_is_rate_limited():
    clock = _FakeClock()
    alerts = UserAlerts(permission_cooldown_sec=600, clock=clock)

    assert alerts.permission_denied("Enable location access") is not None
    clock.now = 599
    assert alerts.permission_denied("Enable location access") is None
    clock.now = 600
    assert alerts.permission_denied("Enable location access") is not None
    assert [item["kind"] for item in alerts.recent()] == ["permission_denied", "permission_denied"]


def test_alert_sink_receives_copies_and_sink_errors_are_contained():
    delivered: list[dict] = []
    alerts = UserAlerts(on_alert=delivered.append)
    alerts.breaker_opened("down")
    assert delivered[0]["message"] == "down"

    def _boom(alert):
        raise RuntimeError("sink failed")

    failing = UserAlerts(on_alert=_boom)
    assert failing.breaker_opened("down") is not None
    assert len(failing.recent()) == 1


def test_recent_limits_results():
    alerts = UserAlerts(permission_cooldown_sec=0)
    for _ in range(5):
        alerts.permission_denied("denied")
    assert len(alerts.recent(limit=3)) == 3
