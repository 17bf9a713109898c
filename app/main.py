"""Local HTTP surface for the location tracking service."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.geotrack.runtime.service import get_runtime_service

app = FastAPI(title="geotrack")


class LocationConfigRequest(BaseModel):
    enabled: bool | None = None
    poll_interval_sec: int | None = Field(default=None, gt=0)
    last_known_latitude: float | None = Field(default=None, ge=-90, le=90)
    last_known_longitude: float | None = Field(default=None, ge=-180, le=180)
    last_known_place_name: str | None = None


class GeocodingRequest(BaseModel):
    type: str | None = None
    lat: float | None = None
    lon: float | None = None
    query: str | None = None
    limit: int | None = None


@app.on_event("startup")
def _init_runtime_client() -> None:
    get_runtime_service().start(source="app")


@app.get("/health")
def health() -> dict:
    return get_runtime_service().health()


@app.get("/api/location")
def location_status() -> dict:
    return get_runtime_service().location_status()


@app.post("/api/location/config")
def update_location_config(req: LocationConfigRequest) -> dict:
    partial: dict[str, Any] = req.model_dump(exclude_unset=True)
    if not partial:
        return {"ok": False, "error": "No settings supplied."}
    return get_runtime_service().update_config(partial)


@app.post("/api/location/refresh")
def refresh_location() -> dict:
    return get_runtime_service().refresh()


@app.post("/api/location/current")
def current_position() -> dict:
    return get_runtime_service().current_position()


@app.get("/api/location/search")
def search_locations(q: str = "", limit: int = 8) -> dict:
    safe_limit = max(1, min(50, int(limit)))
    return get_runtime_service().search(query=q, limit=safe_limit)


@app.get("/api/location/events")
def location_events(limit: int = 50) -> dict:
    return get_runtime_service().list_events(limit=limit)


@app.get("/api/location/alerts")
def location_alerts(limit: int = 20) -> dict:
    return get_runtime_service().list_alerts(limit=limit)


@app.post("/api/geocoding")
def geocoding(req: GeocodingRequest) -> JSONResponse:
    status_code, body = get_runtime_service().geocoding(req.model_dump(exclude_none=True))
    return JSONResponse(status_code=status_code, content=body)
