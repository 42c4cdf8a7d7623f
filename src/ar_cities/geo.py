"""
Geodesy and angle helpers.

All angles are in degrees. The distance and bearing functions are written
with numpy ufuncs so they accept scalars or whole coordinate arrays; the
layout engine evaluates the complete catalog in one call.
"""

import numpy as np

EARTH_RADIUS_KM = 6371.0088  # mean Earth radius
KM_TO_MI = 0.621371


def wrap360(deg):
    """Normalize an angle into [0, 360)."""
    d = np.mod(np.asarray(deg, dtype=float), 360.0)
    # np.mod(-1e-20, 360) rounds up to 360.0
    d = np.where(d >= 360.0, 0.0, d)
    return d if np.ndim(d) else float(d)


def wrap180(deg):
    """Normalize an angle difference into (-180, 180]."""
    d = 180.0 - np.mod(180.0 - np.asarray(deg, dtype=float), 360.0)
    # np.mod(-3e-14, 360) rounds up to 360.0
    d = np.where(d <= -180.0, d + 360.0, d)
    return d if np.ndim(d) else float(d)


def haversine_distance_km(lat1, lon1, lat2, lon2):
    """Great-circle distance in kilometres."""
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    d_lat = np.radians(np.subtract(lat2, lat1))
    d_lon = np.radians(np.subtract(lon2, lon1))

    a = np.sin(d_lat / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lon / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    dist = EARTH_RADIUS_KM * c
    return dist if np.ndim(dist) else float(dist)


def initial_bearing_deg(lat1, lon1, lat2, lon2):
    """Initial great-circle bearing from point 1 to point 2, in [0, 360)."""
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    d_lon = np.radians(np.subtract(lon2, lon1))

    y = np.sin(d_lon) * np.cos(phi2)
    x = np.cos(phi1) * np.sin(phi2) - np.sin(phi1) * np.cos(phi2) * np.cos(d_lon)
    return wrap360(np.degrees(np.arctan2(y, x)))
