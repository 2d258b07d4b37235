"""
Haversine Algorithm - Calculate distance between two geographical points
Used to decide whether a donor is close enough to the requesting hospital
"""

import math

# Radius of earth in kilometers
EARTH_RADIUS_KM = 6371


def haversine_distance(lat1, lon1, lat2, lon2):
    """
    Calculate straight-line distance between two points.
    Note: This is "as the crow flies" distance, not road distance.

    Args:
        lat1, lon1: Latitude and longitude of point 1
        lat2, lon2: Latitude and longitude of point 2

    Returns:
        Distance in kilometers
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return c * EARTH_RADIUS_KM


def valid_coordinates(lat, lon):
    """
    True when both values are real numbers inside the lat/lng ranges.
    None, NaN and non-numeric values are all treated as missing.
    """
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def is_within_radius(lat1, lon1, lat2, lon2, radius_km):
    """Radius check, inclusive at exactly radius_km"""
    return haversine_distance(lat1, lon1, lat2, lon2) <= radius_km
