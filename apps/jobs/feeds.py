"""
Read models over the record store: the discovery feed and the per-user
job and bid lists.
"""
import logging

from django.conf import settings
from django.utils import timezone

from core.constants import BIDS_COLLECTION, JOBS_COLLECTION
from core.exceptions import Forbidden
from core.utils import timestamp_millis
from . import geo
from .lifecycle import get_job, list_bids
from .store import Query, bids_path, job_path

logger = logging.getLogger(__name__)

HISTORY_STATUSES = ['completed', 'paid']


def open_jobs_query(viewer_uid):
    """
    Candidate jobs for the discovery feed. Status and owner are filtered by
    the store; expiry and distance are checked per job afterwards, so the
    scan is bounded by GEOFEED_MAX_OPEN_JOBS.
    """
    return (
        Query(JOBS_COLLECTION)
        .where('status', '==', 'open')
        .where('userUid', '!=', viewer_uid)
        .order('createdAtMillis', 'desc')
        .take(settings.GEOFEED_MAX_OPEN_JOBS)
    )


def posted_jobs_query(uid):
    return Query(JOBS_COLLECTION).where('userUid', '==', uid).order('createdAtMillis', 'desc')


def assigned_to_query(uid):
    """Jobs the user won and is still working on."""
    return Query(JOBS_COLLECTION).where('assignedBidderUid', '==', uid).where('status', '==', 'assigned')


def assigned_by_query(uid):
    """Jobs the user posted that have an assigned bidder and are not yet completed."""
    return Query(JOBS_COLLECTION).where('userUid', '==', uid).where('status', '==', 'assigned')


def nearby_jobs(store, viewer_uid, position, now=None):
    """Visible open jobs, nearest first, each with `distanceKm`."""
    now = now or timezone.now()
    candidates = store.query(open_jobs_query(viewer_uid))
    rows = geo.nearby(candidates, viewer_uid, position, now)
    logger.debug(f"{len(rows)} of {len(candidates)} open jobs visible to {viewer_uid}")
    return [dict(job, distanceKm=round(distance, 3)) for job, distance in rows]


def my_jobs(store, uid):
    return store.query(posted_jobs_query(uid))


def has_posted_jobs(store, uid):
    return bool(store.query(Query(JOBS_COLLECTION).where('userUid', '==', uid).take(1)))


def job_detail(store, viewer_uid, job_id):
    """
    The job plus the bids the viewer may see: every bid, oldest first, for
    the poster; only their own bid for anyone else.
    """
    job = get_job(store, job_id)
    if job.get('userUid') == viewer_uid:
        return {'job': job, 'bids': list_bids(store, job_id)}
    mine = store.query(Query(bids_path(job_id)).where('bidderUid', '==', viewer_uid).take(1))
    return {'job': job, 'myBid': mine[0] if mine else None}


def my_bids(store, uid):
    """Every bid the user placed, newest first, joined with its job."""
    bids = store.query(Query.group(BIDS_COLLECTION).where('bidderUid', '==', uid).order('createdAtMillis', 'desc'))
    return [{'bid': bid, 'job': store.get(job_path(bid['jobId']))} for bid in bids]


def _finished_at(job):
    return timestamp_millis(job.get('paidAt') or job.get('completedAt') or job.get('expiresAt'))


def work_history(store, uid):
    """Completed and paid jobs the user worked on, most recently finished first."""
    jobs = store.query(
        Query(JOBS_COLLECTION)
        .where('assignedBidderUid', '==', uid)
        .where('status', 'in', HISTORY_STATUSES)
    )
    return sorted(jobs, key=_finished_at, reverse=True)


def job_bids(store, viewer_uid, job_id):
    """All bids on a job, oldest first. Only the poster may list them."""
    job = get_job(store, job_id)
    if job.get('userUid') != viewer_uid:
        logger.warning(f"Forbidden bid listing on job {job_id} for {viewer_uid}")
        raise Forbidden("Only the poster can see every bid on this job.")
    return list_bids(store, job_id)
