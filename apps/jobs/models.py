from django.db import models
from core.constants import (
    JOB_STATUS_CHOICES, BID_STATUS_CHOICES, CATEGORY_CHOICES, LOCATION_TYPE_CHOICES
)


class Job(models.Model):
    user_uid = models.CharField(max_length=128, db_index=True)
    image_url = models.CharField(max_length=1000)
    description = models.TextField()
    details = models.TextField(blank=True, default='')
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='other')
    bid_min = models.DecimalField(max_digits=12, decimal_places=2)
    bid_max = models.DecimalField(max_digits=12, decimal_places=2)
    location_type = models.CharField(max_length=10, choices=LOCATION_TYPE_CHOICES, default='current')
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    address = models.CharField(max_length=500, blank=True, default='')
    radius_km = models.PositiveSmallIntegerField(default=10)
    status = models.CharField(max_length=20, choices=JOB_STATUS_CHOICES, default='open', db_index=True)
    created_at = models.DateTimeField()
    created_at_millis = models.BigIntegerField(db_index=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    # Set by the accept-bid transaction
    selected_bid_id = models.CharField(max_length=64, null=True, blank=True)
    assigned_bidder_uid = models.CharField(max_length=128, null=True, blank=True, db_index=True)
    assigned_at = models.DateTimeField(null=True, blank=True)

    # Set when the assigned bidder submits proof of completion
    completion_image_url = models.CharField(max_length=1000, null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.CharField(max_length=128, null=True, blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at_millis']

    def __str__(self):
        return f"{self.category} job {self.pk} by {self.user_uid} ({self.status})"


class Bid(models.Model):
    job = models.ForeignKey(Job, on_delete=models.CASCADE, related_name='bids')
    bidder_uid = models.CharField(max_length=128, db_index=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    message = models.TextField(blank=True, default='')
    status = models.CharField(max_length=20, choices=BID_STATUS_CHOICES, default='pending')
    created_at = models.DateTimeField()
    created_at_millis = models.BigIntegerField(db_index=True)

    class Meta:
        unique_together = ('job', 'bidder_uid')
        ordering = ['created_at_millis']

    def __str__(self):
        return f"Bid {self.pk} by {self.bidder_uid} on job {self.job_id} ({self.status})"
