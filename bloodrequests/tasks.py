"""
Periodic blood request housekeeping (scheduled by Celery beat)
"""
from celery import shared_task

from bloodrequests.services import expire_overdue_requests as expire_requests


@shared_task
def expire_overdue_requests():
    """Move active requests whose deadline has passed to expired"""
    count = expire_requests()
    return f"Expired {count} blood requests"
