"""Provider adapters used by the location service."""

from .geocoding import (
    GeocodingFunctionProvider,
    NominatimProvider,
    PlaceNameResolver,
    build_place_resolver,
    format_place_name,
    handle_geocoding_request,
)
from .position_source import IpPositionSource, StaticPositionSource, build_position_source

__all__ = [
    "GeocodingFunctionProvider",
    "IpPositionSource",
    "NominatimProvider",
    "PlaceNameResolver",
    "StaticPositionSource",
    "build_place_resolver",
    "build_position_source",
    "format_place_name",
    "handle_geocoding_request",
]
