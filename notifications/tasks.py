"""
Celery tasks for donor notifications
"""
import logging

from celery import shared_task

from bloodrequests.models import BloodRequest
from donors.models import DonorProfile
from notifications.dispatcher import build_dispatcher

logger = logging.getLogger(__name__)


@shared_task
def dispatch_blood_request_notifications(request_id, donor_ids):
    """
    Fan out alerts for a blood request to already-discovered donors.
    Queued on commit when NOTIFICATIONS_ASYNC is on.
    """
    try:
        blood_request = BloodRequest.objects.get(id=request_id)
    except BloodRequest.DoesNotExist:
        logger.warning(f"Blood request {request_id} vanished before notifications were sent")
        return f"Blood request {request_id} not found"

    donors = DonorProfile.objects.filter(id__in=donor_ids).select_related('user').order_by('id')
    with build_dispatcher() as dispatcher:
        outcomes = dispatcher.notify(blood_request, donors)

    delivered = sum(1 for outcome in outcomes if outcome.delivered)
    return f"Request {request_id}: {delivered}/{len(outcomes)} donors reached"
