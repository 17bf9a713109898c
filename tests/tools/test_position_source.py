import importlib
import json
import socket
from urllib.error import HTTPError, URLError

import pytest

from src.geotrack.core.errors import PermissionDeniedError, PositionTimeoutError, PositionUnavailableError
from src.geotrack.tools.position_source import IpPositionSource, StaticPositionSource, build_position_source

position_module = importlib.import_module("src.geotrack.tools.position_source")


class _FakeResponse:
    def __init__(self, payload) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def test_static_source_serves_configured_coordinates():
    source = StaticPositionSource(latitude=40.44, longitude=-79.99, accuracy=25.0)
    sample = source.get_position()
    assert (sample.latitude, sample.longitude, sample.accuracy) == (40.44, -79.99, 25.0)


def test_static_source_permission_and_missing_coordinates():
    with pytest.raises(PermissionDeniedError):
        StaticPositionSource(latitude=1.0, longitude=2.0, permission_granted=False).get_position()
    with pytest.raises(PositionUnavailableError):
        StaticPositionSource(latitude=None, longitude=None).get_position()


def test_ip_source_parses_coordinates(monkeypatch):
    def fake_urlopen(req, timeout=10):
        assert timeout == 7
        assert req.full_url == "https://ip.example/json"
        return _FakeResponse({"latitude": 37.3, "longitude": "-122.0", "city": "Cupertino"})

    monkeypatch.setattr(position_module, "urlopen", fake_urlopen)
    sample = IpPositionSource(url="https://ip.example/json").get_position(timeout_sec=7)
    assert sample.latitude == 37.3
    assert sample.longitude == -122.0


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (HTTPError("https://ip.example", 403, "Forbidden", {}, None), PermissionDeniedError),
        (HTTPError("https://ip.example", 503, "Unavailable", {}, None), PositionUnavailableError),
        (URLError(socket.timeout("timed out")), PositionTimeoutError),
        (TimeoutError("timed out"), PositionTimeoutError),
        (URLError("connection refused"), PositionUnavailableError),
    ],
)
def test_ip_source_maps_transport_errors(monkeypatch, error, expected):
    def fake_urlopen(req, timeout=10):
        raise error

    monkeypatch.setattr(position_module, "urlopen", fake_urlopen)
    with pytest.raises(expected):
        IpPositionSource().get_position()


def test_ip_source_rejects_error_payloads(monkeypatch):
    monkeypatch.setattr(
        position_module,
        "urlopen",
        lambda req, timeout=10: _FakeResponse({"error": True, "reason": "RateLimited"}),
    )
    with pytest.raises(PositionUnavailableError, match="RateLimited"):
        IpPositionSource().get_position()

    monkeypatch.setattr(position_module, "urlopen", lambda req, timeout=10: _FakeResponse({"city": "Nowhere"}))
    with pytest.raises(PositionUnavailableError, match="no coordinates"):
        IpPositionSource().get_position()


def test_build_position_source_defaults_to_static_home_location():
    source = build_position_source({"home_location": {"lat": 40.44, "lon": -79.99}})
    assert isinstance(source, StaticPositionSource)
    assert source.get_position().latitude == 40.44


def test_build_position_source_ip_and_unknown_kind():
    source = build_position_source({"position_source": {"kind": "ip", "url": "https://ip.example/json"}})
    assert isinstance(source, IpPositionSource)
    with pytest.raises(ValueError, match="Unknown position source kind"):
        build_position_source({"position_source": {"kind": "gps"}})
