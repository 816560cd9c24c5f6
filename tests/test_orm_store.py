import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import OperationalError, connection

from apps.jobs import feeds, lifecycle
from apps.jobs.coordinator import accept_bid
from apps.jobs.models import Bid, Job
from apps.jobs.orm_store import OrmRecordStore
from apps.jobs.store import Query, bid_path, bids_path, job_path
from core.exceptions import ConflictError, NotFound, ValidationError
from conftest import BIDDER_A, BIDDER_B, NEAR, NOW, POSTER, job_payload

pytestmark = pytest.mark.django_db


@pytest.fixture
def orm():
    return OrmRecordStore()


@pytest.fixture
def posted(orm):
    return lifecycle.create_job(orm, POSTER, job_payload(), now=NOW)


def bid_on(orm, job, bidder, seconds=1, amount=150):
    return lifecycle.submit_bid(orm, bidder, job['id'], {'amount': amount}, now=NOW + timedelta(seconds=seconds))


def test_job_round_trips_in_wire_shape(orm, posted):
    row = Job.objects.get(pk=posted['id'])
    assert row.latitude == 12.90
    assert row.bid_min == Decimal('100.00')

    stored = orm.get(job_path(posted['id']))
    assert stored == posted
    assert stored['location'] == {'type': 'current', 'coords': {'latitude': 12.90, 'longitude': 77.50}}
    assert stored['createdAt'] == '2025-03-01T12:00:00Z'
    assert stored['expiresAt'] == '2025-03-01T13:00:00Z'
    assert 'assignedBidderUid' not in stored


def test_custom_address_job(orm):
    job = lifecycle.create_job(orm, POSTER, job_payload(location={'type': 'custom', 'address': 'MG Road'}), now=NOW)
    assert orm.get(job_path(job['id']))['location'] == {'type': 'custom', 'address': 'MG Road'}


def test_missing_records(orm, posted):
    assert orm.get(job_path('999999')) is None
    assert orm.get(job_path('not-a-number')) is None
    assert orm.get(bid_path(posted['id'], '999999')) is None
    with pytest.raises(NotFound):
        orm.create(bids_path('999999'), {'bidderUid': BIDDER_A})
    with pytest.raises(NotFound):
        orm.update(job_path('999999'), {'status': 'assigned'})


def test_duplicate_bid_is_refused_by_the_table(orm, posted):
    bid_on(orm, posted, BIDDER_A)
    fields = {'bidderUid': BIDDER_A, 'amount': 10, 'status': 'pending',
              'createdAt': '2025-03-01T12:00:05Z', 'createdAtMillis': 1}
    with pytest.raises(ValidationError):
        orm.create(bids_path(posted['id']), fields)
    assert Bid.objects.filter(job_id=posted['id']).count() == 1


def test_queries(orm, posted):
    other = lifecycle.create_job(orm, 'someone', job_payload(), now=NOW + timedelta(minutes=1))
    open_jobs = orm.query(Query('jobs').where('status', '==', 'open').order('createdAtMillis', 'desc'))
    assert [j['id'] for j in open_jobs] == [other['id'], posted['id']]
    assert [j['id'] for j in orm.query(Query('jobs').where('userUid', '!=', POSTER))] == [other['id']]
    assert orm.query(Query('jobs').where('assignedBidderUid', '==', None).take(1))[0]['status'] == 'open'
    assert orm.query(Query('jobs').where('status', 'in', ['completed', 'paid'])) == []
    with pytest.raises(ValueError):
        orm.query(Query('jobs').where('description', '==', 'x'))


def test_collection_group_query(orm, posted):
    other = lifecycle.create_job(orm, 'someone', job_payload(), now=NOW)
    bid_on(orm, posted, BIDDER_A, seconds=1)
    bid_on(orm, other, BIDDER_A, seconds=2)
    bid_on(orm, other, BIDDER_B, seconds=3)
    rows = feeds.my_bids(orm, BIDDER_A)
    assert [row['job']['id'] for row in rows] == [other['id'], posted['id']]


def test_accept_bid_commits_everything(orm, posted):
    bid_a = bid_on(orm, posted, BIDDER_A, seconds=1)
    bid_b = bid_on(orm, posted, BIDDER_B, seconds=2)

    assigned = accept_bid(orm, POSTER, posted['id'], bid_a['id'], now=NOW)

    assert assigned['assignedBidderUid'] == BIDDER_A
    row = Job.objects.get(pk=posted['id'])
    assert row.status == 'assigned'
    assert row.selected_bid_id == bid_a['id']
    assert dict(Bid.objects.values_list('bidder_uid', 'status')) == {BIDDER_A: 'accepted', BIDDER_B: 'rejected'}

    with pytest.raises(ConflictError):
        accept_bid(orm, POSTER, posted['id'], bid_b['id'], now=NOW)
    assert Bid.objects.get(pk=bid_b['id']).status == 'rejected'


def test_failed_transaction_rolls_back(orm, posted):
    bid = bid_on(orm, posted, BIDDER_A)

    def fn(tx):
        tx.get(job_path(posted['id']))
        tx.update(bid_path(posted['id'], bid['id']), {'status': 'accepted'})
        raise ConflictError()

    with pytest.raises(ConflictError):
        orm.run_transaction(fn)
    assert Bid.objects.get(pk=bid['id']).status == 'pending'


def test_database_lock_becomes_a_conflict(orm, posted):
    def fn(tx):
        tx.get(job_path(posted['id']))
        raise OperationalError("database is locked")

    with pytest.raises(ConflictError):
        orm.run_transaction(fn)


@pytest.mark.django_db(transaction=True)
def test_concurrent_accepts_through_the_database_pick_one_winner(orm, posted):
    bids = [bid_on(orm, posted, f'bidder-{n}', seconds=n + 1, amount=100 + n) for n in range(6)]
    barrier = threading.Barrier(len(bids))
    winners, conflicts, errors = [], [], []

    def attempt(bid):
        barrier.wait()
        try:
            winners.append(accept_bid(orm, POSTER, posted['id'], bid['id'], now=NOW))
        except ConflictError:
            conflicts.append(bid['id'])
        except Exception as e:
            errors.append(e)
        finally:
            connection.close()

    threads = [threading.Thread(target=attempt, args=(bid,)) for bid in bids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(winners) == 1
    assert len(conflicts) == len(bids) - 1
    row = Job.objects.get(pk=posted['id'])
    assert row.status == 'assigned'
    assert list(Bid.objects.filter(status='accepted').values_list('pk', flat=True)) == [int(row.selected_bid_id)]
    assert Bid.objects.filter(status='rejected').count() == len(bids) - 1


@pytest.mark.django_db(transaction=True)
def test_an_accept_notifies_subscribers_once(orm, posted, monkeypatch):
    bid = bid_on(orm, posted, BIDDER_A, seconds=1)
    bid_on(orm, posted, BIDDER_B, seconds=2)
    bid_on(orm, posted, 'bidder-c', seconds=3)
    notify = orm._notify
    passes = []

    def counting_notify():
        passes.append(1)
        notify()

    monkeypatch.setattr(orm, '_notify', counting_notify)
    accept_bid(orm, POSTER, posted['id'], bid['id'], now=NOW)
    assert passes == [1]


def test_delete_cascades_to_bids(orm, posted):
    bid_on(orm, posted, BIDDER_A)
    lifecycle.delete_job(orm, POSTER, posted['id'])
    assert not Job.objects.exists()
    assert not Bid.objects.exists()


def test_full_flow_and_home_view(orm, posted):
    bid = bid_on(orm, posted, BIDDER_A)
    accept_bid(orm, POSTER, posted['id'], bid['id'], now=NOW)
    lifecycle.submit_completion(orm, BIDDER_A, posted['id'], {'completionImageUrl': 'https://img/done.jpg'}, now=NOW)
    paid = lifecycle.mark_paid(orm, POSTER, posted['id'], now=NOW + timedelta(hours=1))
    assert orm.get(job_path(posted['id'])) == paid
    assert [j['id'] for j in feeds.work_history(orm, BIDDER_A)] == [posted['id']]
    assert feeds.nearby_jobs(orm, BIDDER_B, NEAR, now=NOW) == []


def test_subscribers_see_committed_changes(orm, django_capture_on_commit_callbacks):
    snapshots = []
    orm.subscribe(Query('jobs').where('status', '==', 'open'), lambda snap: snapshots.append(len(snap)))

    with django_capture_on_commit_callbacks(execute=True):
        job = lifecycle.create_job(orm, POSTER, job_payload(), now=NOW)
    assert snapshots == [0, 1]

    with django_capture_on_commit_callbacks(execute=True):
        orm.update(job_path(job['id']), {'status': 'assigned', 'selectedBidId': '1', 'assignedBidderUid': BIDDER_A})
    assert snapshots == [0, 1, 0]


def test_nothing_is_announced_before_commit(orm, django_capture_on_commit_callbacks):
    snapshots = []
    orm.subscribe(Query('jobs'), snapshots.append)
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        lifecycle.create_job(orm, POSTER, job_payload(), now=NOW)
    assert len(snapshots) == 1
    assert len(callbacks) == 1
