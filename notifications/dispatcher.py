"""
Notification fan-out for new blood requests.

Donors are processed in fixed-size batches. Inside a batch the SMS and push
sends run in parallel on a thread pool and the batch is awaited in full
before the next one starts. Database writes (in-app notifications) stay on
the calling thread.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import transaction

from algorithms.blood_compatibility import (
    URGENCY_CRITICAL, URGENCY_URGENT, is_sms_priority,
)
from notifications.backends import get_push_backend, get_sms_backend
from notifications.models import Notification

logger = logging.getLogger(__name__)

URGENCY_ICONS = {
    URGENCY_CRITICAL: '🚨',
    URGENCY_URGENT: '⚠️',
}


@dataclass
class DeliveryOutcome:
    """
    Per-donor result. A channel is None when it was not attempted,
    False when the attempt failed.
    """
    donor_id: int
    user_id: int
    sms: Optional[bool] = None
    push: Optional[bool] = None
    in_app: Optional[bool] = None

    @property
    def delivered(self):
        return bool(self.sms or self.push or self.in_app)


def should_notify_user(donor, blood_request):
    """
    Per-channel intent from the donor's preferences:
    SMS and push need the channel opt-in plus a subscribed urgency level,
    in-app only needs the urgency level.
    """
    subscribed = blood_request.urgency_level in donor.subscribed_urgency_levels
    return {
        'sms': subscribed and donor.notify_sms,
        'push': subscribed and donor.notify_push,
        'in_app': subscribed,
    }


def blood_request_sms(blood_request):
    icon = URGENCY_ICONS.get(blood_request.urgency_level, '🩸')
    body = (
        f"{icon} {blood_request.urgency_level.upper()}: {blood_request.patient_blood_type} blood needed "
        f"at {blood_request.hospital_name} for {blood_request.patient_name}. "
        f"Requested by {blood_request.requester_name}. Open BloodConnect to help."
    )
    if blood_request.requester_phone:
        body += f" Direct contact: {blood_request.requester_phone}"
    return body


def blood_request_title(blood_request):
    icon = URGENCY_ICONS.get(blood_request.urgency_level, '🩸')
    return f"{icon} {blood_request.patient_blood_type} blood needed ({blood_request.urgency_level})"


def blood_request_message(blood_request):
    return (
        f"{blood_request.requester_name} needs {blood_request.patient_blood_type} blood for "
        f"{blood_request.patient_name} at {blood_request.hospital_name}. "
        f"Needed before {blood_request.deadline:%Y-%m-%d %H:%M}."
    )


def blood_request_payload(blood_request):
    return {
        'request_id': blood_request.id,
        'blood_type': blood_request.patient_blood_type,
        'hospital': blood_request.hospital_name,
        'urgency': blood_request.urgency_level,
        'deadline': blood_request.deadline.isoformat(),
    }


def notify_user(user, title, message, type=Notification.TYPE_GENERAL, data=None, urgent=False):
    """
    Best-effort in-app notification. Returns the Notification, or None if
    it could not be stored.
    """
    try:
        with transaction.atomic():
            return Notification.objects.create(
                user=user,
                type=type,
                title=title,
                message=message,
                data=data or {},
                urgent=urgent,
            )
    except Exception:
        logger.exception(f"Could not store in-app notification for user {user.pk}")
        return None


class NotificationDispatcher:
    """
    Sends blood request alerts to a list of donors.

    The dispatcher owns its transports and thread pool; use it as a context
    manager (or call open()/close()) around one or more notify() calls.
    """

    def __init__(self, sms_backend, push_backend, batch_size=None, max_workers=None):
        self.sms_backend = sms_backend
        self.push_backend = push_backend
        self.batch_size = batch_size or settings.NOTIFICATION_BATCH_SIZE
        # two channels per donor
        self.max_workers = max_workers or self.batch_size * 2
        self._executor = None

    def open(self):
        if self._executor is None:
            self.sms_backend.open()
            self.push_backend.open()
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix='notify',
            )
        return self

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            self.sms_backend.close()
            self.push_backend.close()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def notify(self, blood_request, donors):
        """
        Notify every donor. Transport and storage failures are logged and
        recorded on the donor's DeliveryOutcome; nothing is raised.

        Returns:
            list of DeliveryOutcome, in donor order
        """
        self.open()
        donors = list(donors)
        outcomes = []

        sms_body = blood_request_sms(blood_request)
        title = blood_request_title(blood_request)
        message = blood_request_message(blood_request)
        payload = blood_request_payload(blood_request)
        priority = is_sms_priority(blood_request.urgency_level)
        # in-app urgent flag and push priority are for critical requests only
        urgent = blood_request.urgency_level == URGENCY_CRITICAL

        for start in range(0, len(donors), self.batch_size):
            batch = donors[start:start + self.batch_size]
            batch_outcomes = self._notify_batch(
                blood_request, batch, sms_body, title, message, payload, priority, urgent
            )
            outcomes.extend(batch_outcomes)
            logger.debug(
                f"Batch {start // self.batch_size + 1} done for request {blood_request.id} "
                f"({len(batch)} donors)"
            )

        sent = sum(1 for o in outcomes if o.sms)
        failed = sum(1 for o in outcomes if o.sms is False)
        in_app = sum(1 for o in outcomes if o.in_app)
        logger.info(
            f"Request {blood_request.id}: {len(outcomes)} donors processed, "
            f"{sent} SMS sent, {failed} SMS failed, {in_app} in-app notifications"
        )
        return outcomes

    def _notify_batch(self, blood_request, batch, sms_body, title, message, payload, priority, urgent):
        outcomes = []
        futures = {}

        for donor in batch:
            intent = should_notify_user(donor, blood_request)
            outcome = DeliveryOutcome(donor_id=donor.id, user_id=donor.user_id)
            outcomes.append(outcome)

            if intent['sms']:
                phone = donor.contact_phone
                if phone:
                    future = self._executor.submit(
                        self._send_sms, donor.id, phone, sms_body, priority
                    )
                    futures[future] = (outcome, 'sms')
                else:
                    logger.warning(f"Donor {donor.id} opted into SMS but has no phone number")
                    outcome.sms = False

            if intent['push']:
                future = self._executor.submit(
                    self._send_push, donor.user_id, title, message, payload, urgent
                )
                futures[future] = (outcome, 'push')

            if intent['in_app']:
                outcome.in_app = self._store_in_app(donor, title, message, payload, urgent)

        wait(futures)
        for future, (outcome, channel) in futures.items():
            setattr(outcome, channel, future.result())
        return outcomes

    def _send_sms(self, donor_id, phone, body, priority):
        try:
            return bool(self.sms_backend.send_message(phone, body, priority=priority))
        except Exception:
            logger.exception(f"SMS to donor {donor_id} failed")
            return False

    def _send_push(self, user_id, title, body, data, urgent):
        try:
            return bool(self.push_backend.send_push(user_id, title, body, data=data, urgent=urgent))
        except Exception:
            logger.exception(f"Push to user {user_id} failed")
            return False

    def _store_in_app(self, donor, title, message, payload, urgent):
        notification = notify_user(
            donor.user,
            title,
            message,
            type=Notification.TYPE_BLOOD_REQUEST,
            data=payload,
            urgent=urgent,
        )
        return notification is not None


def build_dispatcher(**kwargs):
    """Dispatcher wired to the transports named in settings"""
    return NotificationDispatcher(get_sms_backend(), get_push_backend(), **kwargs)
