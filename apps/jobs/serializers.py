from decimal import Decimal
from rest_framework import serializers
from django.utils import timezone
from .models import Job, Bid
from core.constants import (
    JOB_STATUS_CHOICES, BID_STATUS_CHOICES, CATEGORY_CHOICES, LOCATION_TYPE_CHOICES,
    MIN_RADIUS_KM, MAX_RADIUS_KM
)
import logging

logger = logging.getLogger(__name__)


class CoordinatesSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class LocationSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=LOCATION_TYPE_CHOICES)
    coords = CoordinatesSerializer(required=False, allow_null=True)
    address = serializers.CharField(required=False, allow_blank=True, max_length=500)

    def validate(self, data):
        if data['type'] == 'custom':
            address = (data.get('address') or '').strip()
            if not address:
                raise serializers.ValidationError("Enter the job address.")
            return {'type': 'custom', 'address': address}
        return {'type': 'current', 'coords': data.get('coords')}


class BidRangeSerializer(serializers.Serializer):
    min = serializers.DecimalField(max_digits=12, decimal_places=2, coerce_to_string=False)
    max = serializers.DecimalField(max_digits=12, decimal_places=2, coerce_to_string=False)

    def validate(self, data):
        if data['min'] <= 0 or data['max'] <= 0:
            raise serializers.ValidationError("Bid range values must be greater than zero.")
        if data['min'] > data['max']:
            raise serializers.ValidationError("Min cannot be greater than Max.")
        return data


# ---------------------------------------------------------------------------
# Input validation, applied before anything is written
# ---------------------------------------------------------------------------

class JobCreateSerializer(serializers.Serializer):
    # Optional only while an uploaded image is waiting to be sent to the image host
    imageUrl = serializers.CharField(max_length=1000, required=False)
    description = serializers.CharField(max_length=2000)
    details = serializers.CharField(required=False, allow_blank=True, default='')
    category = serializers.ChoiceField(choices=CATEGORY_CHOICES, default='other')
    bidRange = BidRangeSerializer()
    expiresAt = serializers.DateTimeField(required=False)
    location = LocationSerializer()
    radiusKm = serializers.IntegerField(min_value=MIN_RADIUS_KM, max_value=MAX_RADIUS_KM, required=False)

    def validate_description(self, value):
        if not value.strip():
            raise serializers.ValidationError("Add a short job description.")
        return value

    def validate_expiresAt(self, value):
        now = self.context.get('now') or timezone.now()
        if value <= now:
            raise serializers.ValidationError("Expiry must be in the future.")
        return value

    def validate(self, data):
        if not data.get('imageUrl') and not self.context.get('image_pending'):
            raise serializers.ValidationError({'imageUrl': ["Add a photo of the job."]})
        return data


class BidCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, coerce_to_string=False)
    message = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')

    def validate_amount(self, value):
        if value <= Decimal('0'):
            raise serializers.ValidationError("Amount must be a positive number.")
        return value


class CompletionSerializer(serializers.Serializer):
    completionImageUrl = serializers.CharField(max_length=1000, required=False)

    def validate(self, data):
        if not data.get('completionImageUrl') and not self.context.get('image_pending'):
            raise serializers.ValidationError({'completionImageUrl': ["Add a photo of the finished work."]})
        return data


class PositionSerializer(serializers.Serializer):
    """Viewer position from the lat/lng query parameters; both or neither."""
    lat = serializers.FloatField(min_value=-90, max_value=90, required=False)
    lng = serializers.FloatField(min_value=-180, max_value=180, required=False)

    def validate(self, data):
        if ('lat' in data) != ('lng' in data):
            raise serializers.ValidationError("Provide both lat and lng, or neither.")
        if 'lat' not in data:
            return {'position': None}
        return {'position': {'latitude': data['lat'], 'longitude': data['lng']}}


# ---------------------------------------------------------------------------
# Wire records: model rows <-> the camelCase documents other services rely on
# ---------------------------------------------------------------------------

class LocationField(serializers.Field):
    """Maps the nested wire `location` onto the flat location columns."""

    def __init__(self, **kwargs):
        kwargs['source'] = '*'
        super().__init__(**kwargs)

    def to_representation(self, job):
        if job.location_type == 'custom':
            return {'type': 'custom', 'address': job.address}
        coords = None
        if job.latitude is not None and job.longitude is not None:
            coords = {'latitude': job.latitude, 'longitude': job.longitude}
        return {'type': 'current', 'coords': coords}

    def to_internal_value(self, data):
        location = LocationSerializer(data=data)
        if not location.is_valid():
            raise serializers.ValidationError(location.errors)
        value = location.validated_data
        if value['type'] == 'custom':
            return {'location_type': 'custom', 'address': value['address'], 'latitude': None, 'longitude': None}
        coords = value.get('coords') or {}
        return {
            'location_type': 'current',
            'address': '',
            'latitude': coords.get('latitude'),
            'longitude': coords.get('longitude'),
        }


class BidRangeRecordSerializer(serializers.Serializer):
    min = serializers.DecimalField(source='bid_min', max_digits=12, decimal_places=2, coerce_to_string=False)
    max = serializers.DecimalField(source='bid_max', max_digits=12, decimal_places=2, coerce_to_string=False)


class JobRecordSerializer(serializers.ModelSerializer):
    # Only present on the record once the matching transition happened
    OPTIONAL_FIELDS = (
        'expiresAt', 'selectedBidId', 'assignedBidderUid', 'assignedAt',
        'completionImageUrl', 'completedAt', 'completedBy', 'paidAt',
    )

    id = serializers.CharField(source='pk', read_only=True)
    userUid = serializers.CharField(source='user_uid')
    imageUrl = serializers.CharField(source='image_url')
    details = serializers.CharField(required=False, allow_blank=True)
    bidRange = BidRangeRecordSerializer(source='*')
    location = LocationField()
    radiusKm = serializers.IntegerField(source='radius_km')
    status = serializers.ChoiceField(choices=JOB_STATUS_CHOICES)
    createdAt = serializers.DateTimeField(source='created_at')
    createdAtMillis = serializers.IntegerField(source='created_at_millis')
    expiresAt = serializers.DateTimeField(source='expires_at', required=False, allow_null=True)
    selectedBidId = serializers.CharField(source='selected_bid_id', required=False, allow_null=True)
    assignedBidderUid = serializers.CharField(source='assigned_bidder_uid', required=False, allow_null=True)
    assignedAt = serializers.DateTimeField(source='assigned_at', required=False, allow_null=True)
    completionImageUrl = serializers.CharField(source='completion_image_url', required=False, allow_null=True)
    completedAt = serializers.DateTimeField(source='completed_at', required=False, allow_null=True)
    completedBy = serializers.CharField(source='completed_by', required=False, allow_null=True)
    paidAt = serializers.DateTimeField(source='paid_at', required=False, allow_null=True)

    class Meta:
        model = Job
        fields = [
            'id', 'userUid', 'imageUrl', 'description', 'details', 'category', 'bidRange',
            'location', 'radiusKm', 'status', 'createdAt', 'createdAtMillis', 'expiresAt',
            'selectedBidId', 'assignedBidderUid', 'assignedAt',
            'completionImageUrl', 'completedAt', 'completedBy', 'paidAt',
        ]

    def to_representation(self, instance):
        data = super().to_representation(instance)
        for field in self.OPTIONAL_FIELDS:
            if data.get(field) is None:
                data.pop(field, None)
        return data


class BidRecordSerializer(serializers.ModelSerializer):
    id = serializers.CharField(source='pk', read_only=True)
    jobId = serializers.CharField(source='job_id', read_only=True)
    bidderUid = serializers.CharField(source='bidder_uid')
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, coerce_to_string=False)
    message = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=BID_STATUS_CHOICES)
    createdAt = serializers.DateTimeField(source='created_at')
    createdAtMillis = serializers.IntegerField(source='created_at_millis')

    class Meta:
        model = Bid
        fields = ['id', 'jobId', 'bidderUid', 'amount', 'message', 'status', 'createdAt', 'createdAtMillis']
        # The (job, bidder) constraint is enforced by the store, not re-validated here
        validators = []
