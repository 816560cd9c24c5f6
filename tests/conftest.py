import itertools
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from rest_framework.test import APIClient

from apps.jobs.lifecycle import create_job, submit_bid
from apps.jobs.memory_store import MemoryRecordStore
from apps.jobs.store import get_record_store, reset_record_store

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=dt_timezone.utc)

POSTER = 'poster-uid'
BIDDER_A = 'bidder-a'
BIDDER_B = 'bidder-b'

# Scenario coordinates around Bengaluru
JOB_COORDS = {'latitude': 12.90, 'longitude': 77.50}
NEAR = {'latitude': 12.95, 'longitude': 77.50}
FAR = {'latitude': 13.10, 'longitude': 77.50}


def job_payload(**overrides):
    data = {
        'imageUrl': 'https://images.example.com/job.jpg',
        'description': 'Carry two boxes upstairs',
        'details': 'Third floor, no lift',
        'category': 'delivery',
        'bidRange': {'min': 100, 'max': 500},
        'location': {'type': 'current', 'coords': dict(JOB_COORDS)},
        'radiusKm': 10,
    }
    data.update(overrides)
    return data


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store(settings):
    settings.GEOFEED_TRANSACTION_ATTEMPTS = 5
    return MemoryRecordStore()


@pytest.fixture
def make_job(store, now):
    def make(poster=POSTER, at=None, **overrides):
        return create_job(store, poster, job_payload(**overrides), now=at or now)
    return make


@pytest.fixture
def make_bid(store, now):
    # Later bids get later timestamps so submission order is observable
    seconds = itertools.count(1)

    def make(job, bidder, amount=150, message='', at=None):
        at = at or now + timedelta(seconds=next(seconds))
        return submit_bid(store, bidder, job['id'], {'amount': amount, 'message': message}, now=at)
    return make


@pytest.fixture
def api_store(settings):
    """Route the HTTP views to a fresh in-memory store."""
    settings.GEOFEED_RECORD_STORE = 'memory'
    reset_record_store()
    yield get_record_store()
    reset_record_store()


@pytest.fixture
def client_for():
    def make(uid=None):
        client = APIClient()
        if uid:
            client.credentials(HTTP_X_ACTOR_UID=uid)
        return client
    return make
