from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import Signal, receiver

from .store import job_path, bid_path

# Sent once the write that changed `path` has committed
record_changed = Signal()


def _announce(sender, path):
    transaction.on_commit(lambda: record_changed.send(sender=sender, path=path))


@receiver(post_save, sender='jobs.Job')
@receiver(post_delete, sender='jobs.Job')
def job_changed(sender, instance, **kwargs):
    _announce(sender, job_path(instance.pk))


@receiver(post_save, sender='jobs.Bid')
@receiver(post_delete, sender='jobs.Bid')
def bid_changed(sender, instance, **kwargs):
    _announce(sender, bid_path(instance.job_id, instance.pk))
