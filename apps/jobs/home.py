"""
Home view selection.

A viewer may be a poster and a bidder at the same time, across many jobs.
The home view surfaces at most one job per role as a banner:

    bidder banner  jobs assigned to the viewer, newest first
    poster banner  the viewer's own assigned jobs, soonest expiry first

and only falls back to the discovery feed when neither exists.
"""
import logging
import threading
from collections import namedtuple

from django.utils import timezone

from core.utils import timestamp_millis

from . import geo
from .feeds import assigned_by_query, assigned_to_query, open_jobs_query
from .store import bid_path

logger = logging.getLogger(__name__)

HomeView = namedtuple('HomeView', ['bidder_banner', 'poster_banner', 'feed', 'assigned_jobs'])


def _created(job):
    return job.get('createdAtMillis') or 0


def _expires(job):
    # Jobs without an expiry sort first
    return timestamp_millis(job.get('expiresAt'))


def select_home_view(viewer_uid, jobs_as_poster, jobs_as_bidder, open_jobs, position, now):
    """
    Pure selection over the viewer's jobs. `jobs_as_poster` and
    `jobs_as_bidder` may contain jobs in any status; only `assigned` ones
    can become banners. Returns a HomeView whose banners are jobs or None.
    """
    assigned_jobs = sorted(
        (j for j in jobs_as_bidder if j.get('assignedBidderUid') == viewer_uid and j.get('status') == 'assigned'),
        key=_created, reverse=True,
    )
    posted = sorted(
        (j for j in jobs_as_poster if j.get('userUid') == viewer_uid and j.get('status') == 'assigned'),
        key=_expires,
    )
    bidder_banner = assigned_jobs[0] if assigned_jobs else None
    poster_banner = posted[0] if posted else None

    feed = []
    if bidder_banner is None and poster_banner is None:
        feed = sorted(
            (j for j in open_jobs if geo.visible(j, viewer_uid, position, now).visible),
            key=_created, reverse=True,
        )
    return HomeView(bidder_banner, poster_banner, feed, assigned_jobs)


def _banner(store, job):
    if job is None:
        return None
    bid = store.get(bid_path(job['id'], job['selectedBidId'])) if job.get('selectedBidId') else None
    return {'job': job, 'bid': bid}


def render_home_view(store, view):
    """Join each banner with its selected bid; the wire shape of the home view."""
    return {
        'bidderBanner': _banner(store, view.bidder_banner),
        'posterBanner': _banner(store, view.poster_banner),
        'feed': view.feed,
        'assignedJobs': view.assigned_jobs,
        'showFeed': view.bidder_banner is None and view.poster_banner is None,
    }


def build_home_view(store, viewer_uid, position, now=None):
    """One-shot home view for `viewer_uid` standing at `position`."""
    now = now or timezone.now()
    view = select_home_view(
        viewer_uid,
        jobs_as_poster=store.query(assigned_by_query(viewer_uid)),
        jobs_as_bidder=store.query(assigned_to_query(viewer_uid)),
        open_jobs=store.query(open_jobs_query(viewer_uid)),
        position=position,
        now=now,
    )
    return render_home_view(store, view)


class HomeFeed:
    """
    Live home view. Subscribes to the viewer's assigned jobs (both roles)
    and the open jobs, and calls `on_change(HomeView)` whenever any of them
    changes, once all three have delivered. close() cancels only this
    feed's subscriptions.
    """

    SOURCES = ('poster', 'bidder', 'open')

    def __init__(self, store, viewer_uid, position=None, on_change=None, clock=None):
        self.store = store
        self.viewer_uid = viewer_uid
        self.position = position
        self.on_change = on_change
        self.clock = clock or timezone.now
        self.view = None
        self._latest = {}
        self._subscriptions = []
        self._lock = threading.RLock()
        self._closed = False

    def start(self):
        queries = {
            'poster': assigned_by_query(self.viewer_uid),
            'bidder': assigned_to_query(self.viewer_uid),
            'open': open_jobs_query(self.viewer_uid),
        }
        for source in self.SOURCES:
            subscription = self.store.subscribe(queries[source], self._receiver(source))
            with self._lock:
                if self._closed:
                    subscription.cancel()
                    return self
                self._subscriptions.append(subscription)
        logger.debug(f"Home feed started for {self.viewer_uid}")
        return self

    def _receiver(self, source):
        def receive(snapshot):
            with self._lock:
                if self._closed:
                    return
                self._latest[source] = list(snapshot)
                self._recompute()
        return receive

    def _recompute(self):
        if any(source not in self._latest for source in self.SOURCES):
            return
        self.view = select_home_view(
            self.viewer_uid,
            jobs_as_poster=self._latest['poster'],
            jobs_as_bidder=self._latest['bidder'],
            open_jobs=self._latest['open'],
            position=self.position,
            now=self.clock(),
        )
        if self.on_change is not None:
            self.on_change(self.view)

    def update_position(self, position):
        """The viewer moved; re-run the selection over the last snapshots."""
        with self._lock:
            self.position = position
            if not self._closed:
                self._recompute()

    def close(self):
        with self._lock:
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.cancel()
        logger.debug(f"Home feed closed for {self.viewer_uid}")

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc_info):
        self.close()
