"""Core runtime utilities for geotrack."""

from .alerts import UserAlerts
from .circuit_breaker import CircuitBreaker
from .config_loader import (
    clear_config_cache,
    get_geocoding_config,
    get_home_location,
    get_location_service_config,
    get_position_source_config,
    load_config,
    resolve_config_path,
)
from .errors import (
    GeocodingError,
    LocationServiceError,
    PermissionDeniedError,
    PositionError,
    PositionTimeoutError,
    PositionUnavailableError,
)
from .location_service import (
    LocationServiceSettings,
    LocationTrackingService,
    has_significant_change,
    load_location_service_settings,
)
from .location_status import derive_status
from .location_types import LocationSample, LocationStatus, SearchResult, TrackingConfig
from .polling_scheduler import PollingScheduler
from .settings_store import InMemorySettingsStore, SettingsStore
from .subscribers import SubscriberRegistry

__all__ = [
    "CircuitBreaker",
    "GeocodingError",
    "InMemorySettingsStore",
    "LocationSample",
    "LocationServiceError",
    "LocationServiceSettings",
    "LocationStatus",
    "LocationTrackingService",
    "PermissionDeniedError",
    "PollingScheduler",
    "PositionError",
    "PositionTimeoutError",
    "PositionUnavailableError",
    "SearchResult",
    "SettingsStore",
    "SubscriberRegistry",
    "TrackingConfig",
    "UserAlerts",
    "clear_config_cache",
    "derive_status",
    "get_geocoding_config",
    "get_home_location",
    "get_location_service_config",
    "get_position_source_config",
    "has_significant_change",
    "load_config",
    "load_location_service_settings",
    "resolve_config_path",
]
