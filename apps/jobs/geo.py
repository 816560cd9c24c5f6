import math
from collections import namedtuple

from core.constants import EARTH_RADIUS_KM
from core.utils import parse_timestamp

Visibility = namedtuple('Visibility', ['visible', 'distance_km'])

HIDDEN = Visibility(False, math.inf)


def _coordinate(point):
    if not point:
        return None
    latitude, longitude = point.get('latitude'), point.get('longitude')
    if latitude is None or longitude is None:
        return None
    return float(latitude), float(longitude)


def km_between(a, b):
    """Great-circle distance in km between two {latitude, longitude} points; inf if either is missing."""
    first, second = _coordinate(a), _coordinate(b)
    if first is None or second is None:
        return math.inf
    lat1, lon1 = map(math.radians, first)
    lat2, lon2 = map(math.radians, second)
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


def job_coordinates(job):
    """Captured coordinates of a job, or None for free-text addresses."""
    location = job.get('location') or {}
    if location.get('type') != 'current':
        return None
    coords = location.get('coords')
    return coords if _coordinate(coords) else None


def is_live(job, now):
    """Open and not yet expired."""
    if job.get('status') != 'open':
        return False
    expires_at = parse_timestamp(job.get('expiresAt'))
    return expires_at is not None and expires_at > now


def visible(job, viewer_uid, position, now):
    """
    Decide whether `job` shows up in the discovery feed of the viewer
    standing at `position`. Returns Visibility(visible, distance_km).
    """
    if job.get('userUid') == viewer_uid:
        return HIDDEN
    if not is_live(job, now):
        return HIDDEN
    coords = job_coordinates(job)
    if coords is None or _coordinate(position) is None:
        return HIDDEN

    distance = km_between(position, coords)
    radius = job.get('radiusKm')
    if not isinstance(radius, (int, float)) or not math.isfinite(distance):
        return Visibility(False, distance)
    return Visibility(distance <= radius, distance)


def nearby(jobs, viewer_uid, position, now):
    """Visible jobs as (job, distance_km), nearest first. Equal distances keep input order."""
    rows = []
    for job in jobs:
        result = visible(job, viewer_uid, position, now)
        if result.visible:
            rows.append((job, result.distance_km))
    rows.sort(key=lambda row: row[1])
    return rows
