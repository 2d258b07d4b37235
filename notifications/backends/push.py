import logging
import threading

import requests
from django.conf import settings

from . import BaseBackend

logger = logging.getLogger(__name__)

# Pushes "sent" through LocmemPushBackend land here
outbox = []
_outbox_lock = threading.Lock()


class BasePushBackend(BaseBackend):

    def send_push(self, user_id, title, body, data=None, urgent=False):
        """Deliver one push notification; transport errors are raised"""
        raise NotImplementedError('subclasses of BasePushBackend must override send_push()')


class ConsolePushBackend(BasePushBackend):

    def send_push(self, user_id, title, body, data=None, urgent=False):
        logger.info(f"Push to user {user_id}: {title} - {body}")
        return True


class LocmemPushBackend(BasePushBackend):

    def send_push(self, user_id, title, body, data=None, urgent=False):
        with _outbox_lock:
            outbox.append({
                'user_id': user_id,
                'title': title,
                'body': body,
                'data': data or {},
                'urgent': urgent,
            })
        return True


class WebhookPushBackend(BasePushBackend):
    """
    Hands the push to a gateway (FCM relay, OneSignal bridge, ...) by POSTing
    JSON to PUSH_WEBHOOK_URL.
    """

    def __init__(self, url=None, timeout=None):
        self.url = url or settings.PUSH_WEBHOOK_URL
        self.timeout = timeout or settings.TRANSPORT_TIMEOUT_SECONDS
        self.session = None

    def open(self):
        if self.session is None:
            self.session = requests.Session()

    def close(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    def send_push(self, user_id, title, body, data=None, urgent=False):
        if not self.url:
            logger.warning('PUSH_WEBHOOK_URL is not configured; push not sent')
            return False

        self.open()
        response = self.session.post(
            self.url,
            json={
                'user_id': user_id,
                'title': title,
                'body': body,
                'data': data or {},
                'priority': 'high' if urgent else 'normal',
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return True
