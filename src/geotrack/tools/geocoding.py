"""Reverse geocoding and place search through a primary/fallback provider chain."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from src.geotrack.core.config_loader import get_geocoding_config
from src.geotrack.core.errors import GeocodingError
from src.geotrack.core.location_types import SearchResult

_LOGGER = logging.getLogger(__name__)

DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org"
DEFAULT_GEOCODING_FUNCTION_URL = "http://127.0.0.1:8000/api/geocoding"
DEFAULT_USER_AGENT = "geotrack/0.1 (+local-dashboard)"
DEFAULT_SEARCH_LIMIT = 8
MAX_SEARCH_LIMIT = 50

_SETTLEMENT_KEYS = ("city", "town", "village")
_REGION_KEYS = ("state", "region")


def _fetch_json(
    url: str,
    *,
    timeout_sec: float = 10,
    headers: dict[str, str] | None = None,
    body: dict[str, Any] | None = None,
) -> Any:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    request_headers = {"Accept": "application/json", **(headers or {})}
    if data is not None:
        request_headers["Content-Type"] = "application/json"
    req = Request(url, data=data, headers=request_headers, method="POST" if data is not None else "GET")
    with urlopen(req, timeout=timeout_sec) as response:
        status = getattr(response, "status", 200)
        raw = response.read().decode("utf-8")
    if isinstance(status, int) and not 200 <= status < 300:
        raise ValueError(f"Geocoding API error: {status}")
    return json.loads(raw)


def _first_text(address: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = address.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _structured_name(payload: dict[str, Any]) -> str | None:
    address = payload.get("address")
    if not isinstance(address, dict):
        return None
    parts = [
        part
        for part in (
            _first_text(address, _SETTLEMENT_KEYS),
            _first_text(address, _REGION_KEYS),
            _first_text(address, ("country",)),
        )
        if part
    ]
    return ", ".join(parts) if parts else None


def format_place_name(payload: dict[str, Any] | None) -> str | None:
    """Settlement, region and country joined by commas; else the full display name."""
    if not isinstance(payload, dict):
        return None
    structured = _structured_name(payload)
    if structured:
        return structured
    display_name = payload.get("display_name")
    if isinstance(display_name, str) and display_name.strip():
        return display_name.strip()
    return None


def _short_name(item: dict[str, Any], display_name: str) -> str:
    structured = _structured_name(item)
    if structured:
        return structured
    name = item.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    return display_name.split(",")[0].strip()


def _clamp_limit(limit: int) -> int:
    return max(1, min(MAX_SEARCH_LIMIT, int(limit)))


class GeocodingProvider(Protocol):
    name: str

    def reverse(self, latitude: float, longitude: float) -> str | None: ...

    def search(self, query: str, limit: int) -> list[SearchResult]: ...


class NominatimProvider:
    """OpenStreetMap Nominatim over its public JSON API."""

    name = "nominatim"

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_NOMINATIM_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_sec: float = 10,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._timeout_sec = timeout_sec

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}/{path}?{urlencode(params)}"
        return _fetch_json(url, timeout_sec=self._timeout_sec, headers={"User-Agent": self._user_agent})

    def raw_reverse(self, latitude: float, longitude: float) -> dict[str, Any]:
        payload = self._get(
            "reverse",
            {"lat": latitude, "lon": longitude, "format": "json", "addressdetails": 1},
        )
        if not isinstance(payload, dict):
            raise ValueError("Nominatim reverse response must be a JSON object.")
        if payload.get("error"):
            raise ValueError(f"Nominatim reverse error: {payload['error']}")
        return payload

    def raw_search(self, query: str, limit: int) -> list[dict[str, Any]]:
        payload = self._get(
            "search",
            {"q": query, "format": "json", "limit": _clamp_limit(limit), "addressdetails": 1},
        )
        if not isinstance(payload, list):
            raise ValueError("Nominatim search response must be a JSON array.")
        return [item for item in payload if isinstance(item, dict)]

    def reverse(self, latitude: float, longitude: float) -> str | None:
        return format_place_name(self.raw_reverse(latitude, longitude))

    def search(self, query: str, limit: int) -> list[SearchResult]:
        results: list[SearchResult] = []
        for item in self.raw_search(query, limit):
            display_name = str(item.get("display_name") or "").strip()
            results.append(
                SearchResult(
                    latitude=float(item["lat"]),
                    longitude=float(item["lon"]),
                    display_name=display_name,
                    short_name=_short_name(item, display_name),
                    kind=str(item.get("type") or "location"),
                    relevance=float(item.get("importance") or 0.0),
                )
            )
        return results


class GeocodingFunctionProvider:
    """The dashboard's hosted geocoding function (JSON POST, `success` envelope)."""

    name = "geocoding_function"

    def __init__(self, *, url: str, api_key: str | None = None, timeout_sec: float = 10) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout_sec = timeout_sec

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        headers: dict[str, str] = {}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = _fetch_json(self._url, timeout_sec=self._timeout_sec, headers=headers, body=body)
        if not isinstance(payload, dict):
            raise ValueError("Geocoding function response must be a JSON object.")
        if not payload.get("success"):
            raise ValueError(str(payload.get("error") or "Geocoding function reported failure."))
        return payload

    def reverse(self, latitude: float, longitude: float) -> str | None:
        payload = self._post({"type": "reverse", "lat": latitude, "lon": longitude})
        name = payload.get("location_name")
        return name.strip() if isinstance(name, str) and name.strip() else None

    def search(self, query: str, limit: int) -> list[SearchResult]:
        payload = self._post({"type": "forward", "query": query, "limit": _clamp_limit(limit)})
        rows = payload.get("results")
        if not isinstance(rows, list):
            raise ValueError("Geocoding function search response is missing `results`.")
        results: list[SearchResult] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            display_name = str(row.get("display_name") or "").strip()
            short_name = row.get("formatted_name")
            results.append(
                SearchResult(
                    latitude=float(row["lat"]),
                    longitude=float(row["lon"]),
                    display_name=display_name,
                    short_name=short_name if isinstance(short_name, str) and short_name else _short_name(row, display_name),
                    kind=str(row.get("type") or "location"),
                    relevance=float(row.get("importance") or 0.0),
                )
            )
        return results


class PlaceNameResolver:
    """Stateless provider chain: first provider that answers wins."""

    def __init__(self, providers: list[GeocodingProvider]) -> None:
        if not providers:
            raise ValueError("PlaceNameResolver requires at least one provider.")
        self._providers = list(providers)

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    def reverse_resolve(self, latitude: float, longitude: float) -> str | None:
        """Best effort; returns None instead of raising when every provider fails."""
        for provider in self._providers:
            try:
                name = provider.reverse(latitude, longitude)
            except Exception as exc:
                _LOGGER.debug("reverse geocoding via %s failed: %s", provider.name, exc)
                continue
            if name:
                return name
        _LOGGER.debug("reverse geocoding produced no name for %.5f,%.5f", latitude, longitude)
        return None

    def forward_search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[SearchResult]:
        clean_query = query.strip() if isinstance(query, str) else ""
        if not clean_query:
            return []

        errors: list[str] = []
        for provider in self._providers:
            try:
                return provider.search(clean_query, _clamp_limit(limit))
            except Exception as exc:
                _LOGGER.debug("location search via %s failed: %s", provider.name, exc)
                errors.append(f"{provider.name}: {exc}")
        raise GeocodingError("Location search failed: " + "; ".join(errors))


def build_place_resolver(config: dict[str, Any] | None = None) -> PlaceNameResolver:
    """Build the primary -> fallback chain from the `geocoding` config block."""
    settings = get_geocoding_config(config)
    primary = settings["primary"]
    fallback = settings["fallback"]

    providers: list[GeocodingProvider] = []
    primary_url = primary.get("url", DEFAULT_GEOCODING_FUNCTION_URL)
    if isinstance(primary_url, str) and primary_url.strip():
        api_key = primary.get("api_key")
        providers.append(
            GeocodingFunctionProvider(
                url=primary_url.strip(),
                api_key=api_key if isinstance(api_key, str) and api_key else None,
                timeout_sec=float(primary.get("timeout_sec", 10)),
            )
        )
    providers.append(
        NominatimProvider(
            base_url=str(fallback.get("base_url") or DEFAULT_NOMINATIM_URL),
            user_agent=str(fallback.get("user_agent") or DEFAULT_USER_AGENT),
            timeout_sec=float(fallback.get("timeout_sec", 10)),
        )
    )
    return PlaceNameResolver(providers)


def handle_geocoding_request(body: Any, *, provider: NominatimProvider | None = None) -> tuple[int, dict[str, Any]]:
    """Serve the geocoding function contract on top of Nominatim.

    `{"type": "reverse", "lat", "lon"}` answers `{"success", "location_name", "raw_data"}`;
    `{"type": "forward", "query", "limit"}` answers `{"success", "results"}`.
    """
    upstream = provider or NominatimProvider()
    payload = body if isinstance(body, dict) else {}
    request_type = payload.get("type")
    try:
        if request_type == "reverse":
            lat = float(payload["lat"])
            lon = float(payload["lon"])
            _LOGGER.info("reverse geocoding for coordinates: %s, %s", lat, lon)
            data = upstream.raw_reverse(lat, lon)
            return 200, {
                "success": True,
                "location_name": format_place_name(data) or "Unknown Location",
                "raw_data": data,
            }
        if request_type == "forward":
            query = str(payload.get("query") or "")
            limit = int(payload.get("limit") or 5)
            _LOGGER.info("forward geocoding for query: %r", query)
            rows = upstream.raw_search(query, limit)
            results = []
            for item in rows:
                display_name = str(item.get("display_name") or "").strip()
                results.append(
                    {
                        "lat": float(item["lat"]),
                        "lon": float(item["lon"]),
                        "display_name": display_name,
                        "formatted_name": format_place_name(item) or "Unknown Location",
                        "type": item.get("type"),
                        "importance": item.get("importance"),
                    }
                )
            return 200, {"success": True, "results": results}
        raise ValueError('Invalid geocoding type. Use "forward" or "reverse".')
    except Exception as exc:
        _LOGGER.warning("geocoding function error: %s", exc)
        return 500, {"success": False, "error": str(exc)}
