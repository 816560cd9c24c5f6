"""
Accept-bid transaction.

Accepting a bid touches the job and every sibling bid. The siblings are
listed before the transaction starts because the store cannot query inside
one; that listing may already be stale when the transaction commits. What
keeps the operation safe is that the job's `open` status is re-read inside
the transaction: only one accept can ever observe it, every later or
concurrent accept sees `assigned` and fails with ConflictError.
"""
import logging

from django.utils import timezone

from core.exceptions import ConflictError, Forbidden, NotFound, PreconditionFailed
from core.utils import to_iso
from .lifecycle import BID_TRANSITIONS, can_transition, get_job
from .store import Query, bid_path, bids_path, job_path

logger = logging.getLogger(__name__)


def accept_bid(store, actor_uid, job_id, bid_id, now=None):
    """
    Accept `bid_id`, reject every other non-rejected bid on the job and
    assign the job to the bidder, all in one commit. Returns the job.
    """
    now = now or timezone.now()
    job = get_job(store, job_id)
    if job.get('userUid') != actor_uid:
        logger.warning(f"Forbidden accept on job {job_id} by {actor_uid}")
        raise Forbidden("Only the poster can accept bids.")

    sibling_ids = [bid['id'] for bid in store.query(Query(bids_path(job_id))) if bid['id'] != str(bid_id)]

    def accept(tx):
        current = tx.get(job_path(job_id))
        if current is None or current.get('status') != 'open':
            raise ConflictError("This job is no longer available.")
        bid = tx.get(bid_path(job_id, bid_id))
        if bid is None:
            raise ConflictError("This bid is no longer available.")
        if not can_transition(BID_TRANSITIONS, bid['status'], 'accepted'):
            raise PreconditionFailed(f"Bid is {bid['status']}; it cannot be accepted.")

        siblings = [(sibling_id, tx.get(bid_path(job_id, sibling_id))) for sibling_id in sibling_ids]

        tx.update(bid_path(job_id, bid_id), {'status': 'accepted'})
        rejected = 0
        for sibling_id, sibling in siblings:
            if sibling is None or sibling['status'] == 'rejected':
                continue
            tx.update(bid_path(job_id, sibling_id), {'status': 'rejected'})
            rejected += 1

        changes = {
            'status': 'assigned',
            'selectedBidId': str(bid_id),
            'assignedBidderUid': bid['bidderUid'],
            'assignedAt': to_iso(now),
        }
        tx.update(job_path(job_id), changes)
        return dict(current, **changes), rejected

    try:
        assigned, rejected = store.run_transaction(accept)
    except (ConflictError, PreconditionFailed, NotFound) as e:
        logger.warning(f"Accept of bid {bid_id} on job {job_id} refused: {e.detail}")
        raise
    logger.info(f"Bid {bid_id} accepted on job {job_id}; {rejected} competing bid(s) rejected")
    return assigned
