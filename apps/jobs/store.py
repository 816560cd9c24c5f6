"""
Record store port.

The marketplace engine only talks to a RecordStore. Records are plain
dicts in the wire shape (camelCase field names) with their identity
under 'id'. Paths mirror the document layout:

    jobs                       collection of jobs
    jobs/<jobId>               one job
    jobs/<jobId>/bids          bids placed on one job
    jobs/<jobId>/bids/<bidId>  one bid

A Query over the `bids` collection group spans every job's bids.
"""
import logging
import operator
import threading

from django.conf import settings
from django.utils.module_loading import import_string

from core.constants import BIDS_COLLECTION, JOBS_COLLECTION

logger = logging.getLogger(__name__)

OPERATORS = {
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    'in': lambda value, options: value in options,
}


def job_path(job_id):
    return f"{JOBS_COLLECTION}/{job_id}"


def bids_path(job_id):
    return f"{JOBS_COLLECTION}/{job_id}/{BIDS_COLLECTION}"


def bid_path(job_id, bid_id):
    return f"{bids_path(job_id)}/{bid_id}"


def split_path(path):
    """Split a document or collection path into its segments."""
    parts = [p for p in str(path).strip('/').split('/') if p]
    if not parts or parts[0] != JOBS_COLLECTION or len(parts) > 4:
        raise ValueError(f"Unsupported path: {path}")
    if len(parts) >= 3 and parts[2] != BIDS_COLLECTION:
        raise ValueError(f"Unsupported path: {path}")
    return parts


class Query:
    """Immutable description of a collection read: filters, ordering and a limit."""

    def __init__(self, collection, filters=(), order_by=(), limit=None, collection_group=False):
        if not collection_group:
            split_path(collection)
        self.collection = collection.strip('/')
        self.filters = tuple(filters)
        self.order_by = tuple(order_by)
        self.limit = limit
        self.collection_group = collection_group

    @classmethod
    def group(cls, collection_id):
        return cls(collection_id, collection_group=True)

    def _copy(self, **changes):
        params = {
            'collection': self.collection,
            'filters': self.filters,
            'order_by': self.order_by,
            'limit': self.limit,
            'collection_group': self.collection_group,
        }
        params.update(changes)
        return Query(**params)

    def where(self, field, op, value):
        if op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        return self._copy(filters=self.filters + ((field, op, value),))

    def order(self, field, direction='asc'):
        if direction not in ('asc', 'desc'):
            raise ValueError(f"Unsupported direction: {direction}")
        return self._copy(order_by=self.order_by + ((field, direction),))

    def take(self, limit):
        return self._copy(limit=limit)

    def matches(self, record):
        for field, op, value in self.filters:
            current = record.get(field)
            if current is None and op != '==' and op != '!=':
                return False
            try:
                if not OPERATORS[op](current, value):
                    return False
            except TypeError:
                return False
        return True

    def apply(self, records):
        """Filter, order and limit an iterable of records in memory."""
        rows = [r for r in records if self.matches(r)]
        for field, direction in reversed(self.order_by):
            present = [r for r in rows if r.get(field) is not None]
            missing = [r for r in rows if r.get(field) is None]
            present.sort(key=lambda r: r[field], reverse=direction == 'desc')
            rows = present + missing
        if self.limit is not None:
            rows = rows[:self.limit]
        return rows

    def __repr__(self):
        scope = 'group' if self.collection_group else 'collection'
        return f"Query({scope}={self.collection!r}, filters={self.filters!r}, order_by={self.order_by!r}, limit={self.limit!r})"


class Snapshot:
    """Result of a query at one point in the store's commit order."""

    def __init__(self, query, records):
        self.query = query
        self.records = records

    def __iter__(self):
        return iter(self.records)

    def __len__(self):
        return len(self.records)

    @property
    def empty(self):
        return not self.records


class Subscription:
    """Handle returned by RecordStore.subscribe; cancel() stops delivery to this listener only."""

    def __init__(self, store, query, callback):
        self.store = store
        self.query = query
        self.callback = callback
        self.active = True
        self.last_records = None
        self._lock = threading.Lock()

    def deliver(self, records):
        with self._lock:
            if not self.active or records == self.last_records:
                return
            self.last_records = records
            snapshot = Snapshot(self.query, records)
        self.callback(snapshot)

    def cancel(self):
        with self._lock:
            if not self.active:
                return
            self.active = False
        self.store._remove_subscription(self)


class Transaction:
    """
    Handle passed to the function given to RecordStore.run_transaction.
    Reads go through get(); writes are only applied if the whole function
    returns and the store commits.
    """

    def get(self, path):
        raise NotImplementedError

    def update(self, path, fields):
        raise NotImplementedError

    def delete(self, path):
        raise NotImplementedError


class RecordStore:
    """Document store capability consumed by the marketplace engine."""

    def __init__(self):
        self._subscriptions = []
        self._subscriptions_lock = threading.Lock()
        # Held while a change is fanned out so each listener sees commits in order
        self._notify_lock = threading.RLock()

    def get(self, path):
        """Return the record at `path` or None."""
        raise NotImplementedError

    def create(self, collection_path, fields):
        """Create a record with a store-assigned id and return it."""
        raise NotImplementedError

    def update(self, path, fields):
        """Merge `fields` into an existing record and return it."""
        raise NotImplementedError

    def delete(self, path):
        raise NotImplementedError

    def query(self, query):
        """One-shot read of a query's current result."""
        raise NotImplementedError

    def run_transaction(self, fn):
        """
        Run fn(transaction) so that its reads and writes commit as one unit.
        Whatever fn raises propagates and nothing it wrote is applied.
        """
        raise NotImplementedError

    def subscribe(self, query, callback):
        """
        Deliver the query's current result to `callback` now and again after
        every commit that changes it. Returns a Subscription.
        """
        subscription = Subscription(self, query, callback)
        with self._notify_lock:
            with self._subscriptions_lock:
                self._subscriptions.append(subscription)
            subscription.deliver(self.query(query))
        return subscription

    def _remove_subscription(self, subscription):
        with self._subscriptions_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _notify(self):
        with self._notify_lock:
            with self._subscriptions_lock:
                subscriptions = list(self._subscriptions)
            for subscription in subscriptions:
                try:
                    records = self.query(subscription.query)
                except Exception as e:
                    logger.error(f"Failed to refresh {subscription.query}: {str(e)}")
                    continue
                subscription.deliver(records)


_store = None
_store_lock = threading.Lock()

STORE_BACKENDS = {
    'orm': 'apps.jobs.orm_store.OrmRecordStore',
    'memory': 'apps.jobs.memory_store.MemoryRecordStore',
}


def get_record_store():
    """Process-wide store selected by settings.GEOFEED_RECORD_STORE."""
    global _store
    with _store_lock:
        if _store is None:
            backend = settings.GEOFEED_RECORD_STORE
            store_class = import_string(STORE_BACKENDS.get(backend, backend))
            _store = store_class()
            logger.info(f"Using record store {store_class.__name__}")
        return _store


def reset_record_store():
    global _store
    with _store_lock:
        _store = None
