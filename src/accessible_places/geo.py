"""
Geospatial helpers for location records.
Normalizes the legacy coordinate encodings found on stored locations into a
canonical {latitude, longitude} pair, and computes distances and map links.
"""
from __future__ import annotations

import math
import numbers
import re
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

EARTH_RADIUS_KM = 6371.0

# Numeric token, then anything non-numeric, then an optional hemisphere letter
_SIGNED_RX = re.compile(r"([\d.\-]+)[^\d\-]*([NSLOEW])?", re.IGNORECASE)
# Longest float prefix of a token, like JavaScript parseFloat
_FLOAT_PREFIX_RX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)")
_NEGATIVE_HEMISPHERE_RX = re.compile(r"[SOW]", re.IGNORECASE)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(value)


def _pair(latitude: Any, longitude: Any) -> Dict[str, float]:
    return {"latitude": float(latitude), "longitude": float(longitude)}


def parse_signed(value: Any, is_latitude: bool = True) -> float:
    """
    Parse one coordinate written as magnitude plus hemisphere letter.

    The first numeric token is read (e.g. "23.5S" -> 23.5). If the string
    contains S, O or W anywhere (case-insensitive) the result is negative,
    otherwise it is positive. The hemisphere rule overrides any sign in the
    token, so "-10" with no letter parses as 10.0.

    `is_latitude` names the axis for callers; both axes parse the same way.

    Returns NaN when no numeric token is present. Never raises.
    """
    if not isinstance(value, str):
        return math.nan

    match = _SIGNED_RX.search(value)
    if not match:
        return math.nan

    number = _FLOAT_PREFIX_RX.match(match.group(1))
    if not number:
        return math.nan
    magnitude = abs(float(number.group(0)))

    if _NEGATIVE_HEMISPHERE_RX.search(value):
        return -magnitude
    return magnitude


def _parse_element(value: Any, is_latitude: bool) -> float:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        return parse_signed(value, is_latitude)
    return math.nan


def _nested_pair(location: Any) -> Optional[Dict[str, float]]:
    if isinstance(location, Mapping):
        latitude = location.get("latitude")
        longitude = location.get("longitude")
    else:
        # GeoPoint-like objects expose attributes instead of keys
        latitude = getattr(location, "latitude", None)
        longitude = getattr(location, "longitude", None)
    if _is_number(latitude) and _is_number(longitude):
        return _pair(latitude, longitude)
    return None


def extract_coordinates(record: Any) -> Optional[Dict[str, float]]:
    """
    Extract canonical coordinates from a raw location record.

    Shapes are tried in order and the first one present decides:
      1. numeric "latitude"/"longitude" fields on the record
      2. "location" object with numeric latitude/longitude
      3. "location" as a two-element [lat, lng] sequence (numbers or
         hemisphere strings such as "23.5S")
      4. "location" as a string "lat, lng", optionally bracketed
    A shape that is present but does not parse yields None; later shapes are
    not tried.

    Returns:
        {"latitude": float, "longitude": float} or None. Never raises.
    """
    if not isinstance(record, Mapping):
        return None

    latitude = record.get("latitude")
    longitude = record.get("longitude")
    if _is_number(latitude) and _is_number(longitude):
        return _pair(latitude, longitude)

    location = record.get("location")
    if location is None:
        return None

    if isinstance(location, str):
        parts = location.replace("[", "").replace("]", "").strip().split(",")
        if len(parts) != 2:
            return None
        lat = parse_signed(parts[0], True)
        lng = parse_signed(parts[1], False)
        if math.isfinite(lat) and math.isfinite(lng):
            return _pair(lat, lng)
        return None

    if isinstance(location, (list, tuple)):
        if len(location) != 2:
            return None
        lat = _parse_element(location[0], True)
        lng = _parse_element(location[1], False)
        if math.isfinite(lat) and math.isfinite(lng):
            return _pair(lat, lng)
        return None

    return _nested_pair(location)


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres (haversine)"""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2 +
        math.cos(math.radians(lat1)) *
        math.cos(math.radians(lat2)) *
        math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_to(record: Any, latitude: float, longitude: float) -> Optional[float]:
    """Distance in km from a point to a raw location record, None without coordinates"""
    coords = extract_coordinates(record)
    if coords is None:
        return None
    return calculate_distance(latitude, longitude, coords["latitude"], coords["longitude"])


def maps_url(record: Any, platform: str = "android") -> Optional[str]:
    """
    Deep link that opens the record in the device's maps app.

    android: geo:0,0?q=lat,lng(name)
    ios:     maps:0,0?q=name@lat,lng
    """
    coords = extract_coordinates(record)
    if coords is None:
        return None

    name = quote(str(record.get("name") or ""))
    lat_lng = f"{coords['latitude']},{coords['longitude']}"
    if platform == "ios":
        return f"maps:0,0?q={name}@{lat_lng}"
    return f"geo:0,0?q={lat_lng}({name})"
