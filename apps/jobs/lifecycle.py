"""
Job and bid lifecycles.

    job:  open -> assigned -> completed -> paid      (open jobs may be deleted)
    bid:  pending -> accepted | rejected

open -> assigned and pending -> accepted only happen inside the accept-bid
transaction (see coordinator.py). Every other write goes through here and
checks the actor's role before the current status.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from core.constants import JOBS_COLLECTION
from core.exceptions import Forbidden, NotFound, PreconditionFailed, ValidationError
from core.utils import to_iso, to_millis
from .serializers import JobCreateSerializer, BidCreateSerializer, CompletionSerializer
from .store import Query, bid_path, bids_path, job_path

logger = logging.getLogger(__name__)

JOB_TRANSITIONS = {
    'open': ('assigned',),
    'assigned': ('completed',),
    'completed': ('paid',),
    'paid': (),
}

BID_TRANSITIONS = {
    'pending': ('accepted', 'rejected'),
    'accepted': (),
    'rejected': (),
}


def can_transition(table, current, target):
    return target in table.get(current, ())


def require_job_transition(job, target):
    current = job.get('status')
    if not can_transition(JOB_TRANSITIONS, current, target):
        logger.warning(f"Refused job {job['id']} transition {current} -> {target}")
        raise PreconditionFailed(f"Job is {current}; it cannot become {target}.")


def _validated(serializer):
    if not serializer.is_valid():
        raise ValidationError(serializer.errors)
    return serializer.validated_data


def _forbid(message, job, actor_uid):
    logger.warning(f"Forbidden on job {job['id']} for {actor_uid}: {message}")
    raise Forbidden(message)


def get_job(store, job_id):
    job = store.get(job_path(job_id))
    if job is None:
        raise NotFound("Job not found.")
    return job


def list_bids(store, job_id):
    """Bids on a job in submission order."""
    return store.query(Query(bids_path(job_id)).order('createdAtMillis', 'asc'))


def create_job(store, actor_uid, data, now=None, upload=None):
    """
    Post a job. `upload` sends a pending image to the image host and returns
    its URL; it is only called once the payload has been validated.
    """
    now = now or timezone.now()
    values = _validated(JobCreateSerializer(data=data, context={'now': now, 'image_pending': upload is not None}))
    image_url = values.get('imageUrl') or upload()

    location = values['location']
    if location['type'] == 'current':
        coords = location.get('coords')
        location = {
            'type': 'current',
            'coords': {'latitude': coords['latitude'], 'longitude': coords['longitude']} if coords else None,
        }
    expires_at = values.get('expiresAt') or now + timedelta(minutes=settings.GEOFEED_DEFAULT_EXPIRY_MINUTES)

    job = store.create(JOBS_COLLECTION, {
        'userUid': actor_uid,
        'imageUrl': image_url,
        'description': values['description'].strip(),
        'details': values.get('details', ''),
        'category': values['category'],
        'bidRange': {'min': values['bidRange']['min'], 'max': values['bidRange']['max']},
        'expiresAt': to_iso(expires_at),
        'createdAt': to_iso(now),
        'createdAtMillis': to_millis(now),
        'location': location,
        'radiusKm': values.get('radiusKm', settings.GEOFEED_DEFAULT_RADIUS_KM),
        'status': 'open',
    })
    logger.info(f"Job {job['id']} posted by {actor_uid} ({job['category']}, {job['radiusKm']} km)")
    return job


def delete_job(store, actor_uid, job_id):
    """Delete an open job together with its bids. Poster only."""
    job = get_job(store, job_id)
    if job.get('userUid') != actor_uid:
        _forbid("Only the poster can delete this job.", job, actor_uid)
    bid_ids = [bid['id'] for bid in store.query(Query(bids_path(job_id)))]

    def delete(tx):
        current = tx.get(job_path(job_id))
        if current is None:
            raise NotFound("Job not found.")
        if current.get('status') != 'open':
            logger.warning(f"Refused deleting job {job_id} in status {current.get('status')}")
            raise PreconditionFailed("Only open jobs can be deleted.")
        for bid_id in bid_ids:
            tx.delete(bid_path(job_id, bid_id))
        tx.delete(job_path(job_id))

    store.run_transaction(delete)
    logger.info(f"Job {job_id} deleted by {actor_uid} with {len(bid_ids)} bid(s)")


def submit_bid(store, actor_uid, job_id, data, now=None):
    now = now or timezone.now()
    values = _validated(BidCreateSerializer(data=data))
    job = get_job(store, job_id)
    if job.get('userUid') == actor_uid:
        _forbid("You cannot bid on your own job.", job, actor_uid)
    if job.get('status') != 'open':
        _forbid("This job is no longer accepting bids.", job, actor_uid)

    existing = store.query(Query(bids_path(job_id)).where('bidderUid', '==', actor_uid).take(1))
    if existing:
        raise ValidationError("You have already placed a bid on this job.")

    bid = store.create(bids_path(job_id), {
        'bidderUid': actor_uid,
        'amount': values['amount'],
        'message': (values.get('message') or '').strip(),
        'status': 'pending',
        'createdAt': to_iso(now),
        'createdAtMillis': to_millis(now),
    })
    logger.info(f"Bid {bid['id']} of {bid['amount']} placed by {actor_uid} on job {job_id}")
    return bid


def reject_bid(store, actor_uid, job_id, bid_id):
    """Reject one pending bid. Rejecting an already rejected bid changes nothing."""
    job = get_job(store, job_id)
    if job.get('userUid') != actor_uid:
        _forbid("Only the poster can reject bids.", job, actor_uid)

    def reject(tx):
        bid = tx.get(bid_path(job_id, bid_id))
        if bid is None:
            raise NotFound("Bid not found.")
        if bid['status'] == 'rejected':
            return bid, False
        if not can_transition(BID_TRANSITIONS, bid['status'], 'rejected'):
            raise PreconditionFailed(f"Bid is {bid['status']}; it cannot be rejected.")
        tx.update(bid_path(job_id, bid_id), {'status': 'rejected'})
        return dict(bid, status='rejected'), True

    bid, changed = store.run_transaction(reject)
    if changed:
        logger.info(f"Bid {bid_id} on job {job_id} rejected by {actor_uid}")
    return bid


def _transition(store, job_id, target, authorize, fields):
    def apply(tx):
        job = tx.get(job_path(job_id))
        if job is None:
            raise NotFound("Job not found.")
        authorize(job)
        require_job_transition(job, target)
        changes = dict(fields, status=target)
        tx.update(job_path(job_id), changes)
        return dict(job, **changes)

    return store.run_transaction(apply)


def submit_completion(store, actor_uid, job_id, data, now=None, upload=None):
    """
    The assigned bidder hands in proof of work: assigned -> completed.
    A pending `upload` runs after the role and status checks pass; the same
    checks are repeated inside the transaction.
    """
    now = now or timezone.now()
    values = _validated(CompletionSerializer(data=data, context={'image_pending': upload is not None}))

    def authorize(job):
        if not job.get('assignedBidderUid') or job.get('assignedBidderUid') != actor_uid:
            _forbid("Only the assigned bidder can submit completion.", job, actor_uid)

    image_url = values.get('completionImageUrl')
    if not image_url:
        job = get_job(store, job_id)
        authorize(job)
        require_job_transition(job, 'completed')
        image_url = upload()

    job = _transition(store, job_id, 'completed', authorize, {
        'completionImageUrl': image_url,
        'completedAt': to_iso(now),
        'completedBy': actor_uid,
    })
    logger.info(f"Job {job_id} completed by {actor_uid}")
    return job


def mark_paid(store, actor_uid, job_id, now=None):
    """The poster attests payment: completed -> paid. No money moves here."""
    now = now or timezone.now()

    def authorize(job):
        if job.get('userUid') != actor_uid:
            _forbid("Only the poster can mark this job as paid.", job, actor_uid)

    job = _transition(store, job_id, 'paid', authorize, {'paidAt': to_iso(now)})
    logger.info(f"Job {job_id} marked paid by {actor_uid}")
    return job
