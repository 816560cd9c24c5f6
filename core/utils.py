from datetime import datetime, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import permissions


class IsActor(permissions.BasePermission):
    """Request carries a forwarded actor identity."""
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and getattr(request.user, 'uid', None))


def parse_timestamp(value):
    """Return an aware datetime for an ISO-8601 string or datetime, else None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = parse_datetime(str(value))
        except ValueError:
            return None
        if dt is None:
            return None
    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt, dt_timezone.utc)
    return dt


def to_iso(dt):
    if dt is None:
        return None
    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt, dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc).isoformat().replace('+00:00', 'Z')


def to_millis(dt):
    return int(dt.timestamp() * 1000)


def timestamp_millis(value, default=0):
    """Sortable numeric form of a timestamp field; `default` when absent."""
    dt = parse_timestamp(value)
    return to_millis(dt) if dt else default
