import logging
import threading

from django.db import IntegrityError, OperationalError, transaction
from django.db.models import F
from core.constants import BIDS_COLLECTION
from core.exceptions import ConflictError, NotFound, ValidationError
from .models import Job, Bid
from .serializers import JobRecordSerializer, BidRecordSerializer
from .signals import record_changed
from .store import RecordStore, Transaction, split_path

logger = logging.getLogger(__name__)

# Wire field -> column, for fields a query may filter or order on
JOB_COLUMNS = {
    'userUid': 'user_uid',
    'status': 'status',
    'category': 'category',
    'assignedBidderUid': 'assigned_bidder_uid',
    'selectedBidId': 'selected_bid_id',
    'createdAt': 'created_at',
    'createdAtMillis': 'created_at_millis',
    'expiresAt': 'expires_at',
    'completedAt': 'completed_at',
    'paidAt': 'paid_at',
    'radiusKm': 'radius_km',
}

BID_COLUMNS = {
    'bidderUid': 'bidder_uid',
    'status': 'status',
    'amount': 'amount',
    'createdAt': 'created_at',
    'createdAtMillis': 'created_at_millis',
}

LOOKUPS = {'<': 'lt', '<=': 'lte', '>': 'gt', '>=': 'gte', 'in': 'in'}


def _pk(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _plain(data):
    if isinstance(data, dict):
        return {key: _plain(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_plain(value) for value in data]
    return data


def _save(serializer, **kwargs):
    if not serializer.is_valid():
        raise ValidationError(serializer.errors)
    return serializer.save(**kwargs)


class OrmTransaction(Transaction):
    """Runs inside transaction.atomic(); reads lock the rows they return."""

    def __init__(self, store):
        self.store = store

    def get(self, path):
        instance = self.store._instance(path, for_update=True)
        return self.store._record(instance) if instance else None

    def update(self, path, fields):
        self.store.update(path, fields)

    def delete(self, path):
        self.store.delete(path)


class OrmRecordStore(RecordStore):
    """Record store backed by the Job and Bid tables."""

    def __init__(self):
        super().__init__()
        self._batch = threading.local()
        record_changed.connect(self._on_record_changed)

    def _on_record_changed(self, sender, path, **kwargs):
        # Rows committed by run_transaction are announced once, after it returns
        if getattr(self._batch, 'active', False):
            self._batch.changed = True
            return
        self._notify()

    def _instance(self, path, for_update=False):
        parts = split_path(path)
        if len(parts) == 2:
            queryset = Job.objects.filter(pk=_pk(parts[1]))
        elif len(parts) == 4:
            queryset = Bid.objects.filter(pk=_pk(parts[3]), job_id=_pk(parts[1]))
        else:
            raise ValueError(f"Not a document path: {path}")
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.first()

    def _record(self, instance):
        if isinstance(instance, Job):
            return _plain(JobRecordSerializer(instance).data)
        return _plain(BidRecordSerializer(instance).data)

    def get(self, path):
        instance = self._instance(path)
        return self._record(instance) if instance else None

    def create(self, collection_path, fields):
        parts = split_path(collection_path)
        if len(parts) == 1:
            instance = _save(JobRecordSerializer(data=fields))
        elif len(parts) == 3:
            job = Job.objects.filter(pk=_pk(parts[1])).first()
            if job is None:
                raise NotFound("Job not found.")
            try:
                with transaction.atomic():
                    instance = _save(BidRecordSerializer(data=fields), job=job)
            except IntegrityError:
                logger.warning(f"Duplicate bid by {fields.get('bidderUid')} on job {job.pk}")
                raise ValidationError("You have already placed a bid on this job.")
        else:
            raise ValueError(f"Not a collection path: {collection_path}")
        return self._record(instance)

    def update(self, path, fields):
        instance = self._instance(path)
        if instance is None:
            raise NotFound(f"No record at {path}.")
        serializer_class = JobRecordSerializer if isinstance(instance, Job) else BidRecordSerializer
        instance = _save(serializer_class(instance, data=fields, partial=True))
        return self._record(instance)

    def delete(self, path):
        instance = self._instance(path)
        if instance is not None:
            instance.delete()

    def _queryset(self, query):
        if query.collection_group:
            if query.collection != BIDS_COLLECTION:
                raise ValueError(f"Unsupported collection group: {query.collection}")
            return Bid.objects.all(), BID_COLUMNS
        parts = split_path(query.collection)
        if len(parts) == 1:
            return Job.objects.all(), JOB_COLUMNS
        if len(parts) == 3:
            return Bid.objects.filter(job_id=_pk(parts[1])), BID_COLUMNS
        raise ValueError(f"Not a collection path: {query.collection}")

    def query(self, query):
        queryset, columns = self._queryset(query)
        for field, op, value in query.filters:
            if field not in columns:
                raise ValueError(f"Cannot filter on {field}")
            column = columns[field]
            if op == '==':
                queryset = queryset.filter(**{f"{column}__isnull": True} if value is None else {column: value})
            elif op == '!=':
                queryset = queryset.exclude(**{f"{column}__isnull": True} if value is None else {column: value})
            else:
                queryset = queryset.filter(**{f"{column}__{LOOKUPS[op]}": value})
        ordering = []
        for field, direction in query.order_by:
            if field not in columns:
                raise ValueError(f"Cannot order on {field}")
            expression = F(columns[field])
            ordering.append(expression.desc(nulls_last=True) if direction == 'desc' else expression.asc(nulls_last=True))
        queryset = queryset.order_by(*ordering, 'pk')
        if query.limit is not None:
            queryset = queryset[:query.limit]
        return [self._record(instance) for instance in queryset]

    def run_transaction(self, fn):
        """
        Run `fn` in one database transaction. Lock timeouts and deadlocks
        surface as ConflictError, like a lost race on the memory store.
        """
        self._batch.active, self._batch.changed = True, False
        try:
            with transaction.atomic():
                result = fn(OrmTransaction(self))
        except OperationalError as e:
            logger.warning(f"Transaction aborted by the database: {e}")
            raise ConflictError() from e
        finally:
            self._batch.active = False
        if self._batch.changed:
            self._batch.changed = False
            self._notify()
        return result

