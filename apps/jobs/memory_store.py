import copy
import logging
import threading
import uuid

from django.conf import settings

from core.constants import BIDS_COLLECTION, JOBS_COLLECTION
from core.exceptions import ConflictError, NotFound
from .store import RecordStore, Transaction, split_path

logger = logging.getLogger(__name__)


class MemoryTransaction(Transaction):
    """Collects read versions and buffered writes for one attempt."""

    def __init__(self, store):
        self.store = store
        self.reads = {}
        self.writes = []

    def get(self, path):
        if self.writes:
            raise ValueError("Transaction reads must happen before writes")
        record, version = self.store._read(path)
        self.reads[path] = version
        return record

    def update(self, path, fields):
        self.writes.append(('update', path, copy.deepcopy(dict(fields))))

    def delete(self, path):
        self.writes.append(('delete', path, None))


class MemoryRecordStore(RecordStore):
    """
    Process-local record store. Every document carries a version that
    changes on each write; a transaction commits only if none of the
    documents it read changed since it read them, otherwise the function
    is run again against fresh state.
    """

    def __init__(self, max_attempts=None):
        super().__init__()
        self.max_attempts = max_attempts or settings.GEOFEED_TRANSACTION_ATTEMPTS
        self._docs = {}
        self._versions = {}
        self._clock = 0
        self._lock = threading.RLock()

    def _normalize(self, path):
        return '/'.join(split_path(path))

    def _with_identity(self, path, record):
        parts = path.split('/')
        record = copy.deepcopy(record)
        record['id'] = parts[-1]
        if len(parts) == 4:
            record['jobId'] = parts[1]
        return record

    def _read(self, path):
        path = self._normalize(path)
        with self._lock:
            record = self._docs.get(path)
            version = self._versions.get(path, 0)
            if record is None:
                return None, version
            return self._with_identity(path, record), version

    def _bump(self, path):
        self._clock += 1
        self._versions[path] = self._clock

    def _strip_identity(self, fields):
        fields = copy.deepcopy(dict(fields))
        fields.pop('id', None)
        fields.pop('jobId', None)
        return fields

    def get(self, path):
        record, _ = self._read(path)
        return record

    def create(self, collection_path, fields):
        parts = split_path(collection_path)
        if len(parts) not in (1, 3):
            raise ValueError(f"Not a collection path: {collection_path}")
        with self._lock:
            if len(parts) == 3 and f"{JOBS_COLLECTION}/{parts[1]}" not in self._docs:
                raise NotFound("Job not found.")
            doc_id = uuid.uuid4().hex[:20]
            path = '/'.join(parts + [doc_id])
            self._docs[path] = self._strip_identity(fields)
            self._bump(path)
            record = self._with_identity(path, self._docs[path])
        self._notify()
        return record

    def update(self, path, fields):
        path = self._normalize(path)
        with self._lock:
            if path not in self._docs:
                raise NotFound(f"No record at {path}.")
            self._docs[path].update(self._strip_identity(fields))
            self._bump(path)
            record = self._with_identity(path, self._docs[path])
        self._notify()
        return record

    def delete(self, path):
        path = self._normalize(path)
        with self._lock:
            existed = self._docs.pop(path, None) is not None
            if existed:
                self._bump(path)
        if existed:
            self._notify()

    def _collection_items(self, query):
        if query.collection_group:
            if query.collection != BIDS_COLLECTION:
                raise ValueError(f"Unsupported collection group: {query.collection}")
            return [
                (path, record) for path, record in self._docs.items()
                if len(path.split('/')) == 4
            ]
        prefix = query.collection + '/'
        depth = len(query.collection.split('/')) + 1
        return [
            (path, record) for path, record in self._docs.items()
            if path.startswith(prefix) and len(path.split('/')) == depth
        ]

    def query(self, query):
        with self._lock:
            # Insertion order stands in for store-provided order
            records = [self._with_identity(path, record) for path, record in self._collection_items(query)]
        return query.apply(records)

    def run_transaction(self, fn):
        for attempt in range(1, self.max_attempts + 1):
            tx = MemoryTransaction(self)
            result = fn(tx)
            with self._lock:
                stale = [
                    path for path, version in tx.reads.items()
                    if self._versions.get(path, 0) != version
                ]
                if not stale:
                    self._commit(tx.writes)
                    break
            logger.info(f"Transaction attempt {attempt} lost a race on {', '.join(stale)}, retrying")
        else:
            raise ConflictError("The transaction could not be committed because of concurrent changes.")
        if tx.writes:
            self._notify()
        return result

    def _commit(self, writes):
        normalized = [(op, self._normalize(path), fields) for op, path, fields in writes]
        for op, path, _ in normalized:
            if op == 'update' and path not in self._docs:
                raise NotFound(f"No record at {path}.")
        for op, path, fields in normalized:
            if op == 'update':
                self._docs[path].update(self._strip_identity(fields))
            else:
                self._docs.pop(path, None)
            self._bump(path)
