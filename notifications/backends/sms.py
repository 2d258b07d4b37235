import logging
import threading

import requests
from django.conf import settings

from . import BaseBackend

logger = logging.getLogger(__name__)

# Messages "sent" through LocmemSMSBackend land here
outbox = []
_outbox_lock = threading.Lock()


class BaseSMSBackend(BaseBackend):

    def send_message(self, phone, body, priority=False):
        """
        Send one text message. Returns True when the transport accepted it;
        transport errors are raised to the caller.
        """
        raise NotImplementedError('subclasses of BaseSMSBackend must override send_message()')


class ConsoleSMSBackend(BaseSMSBackend):
    """Writes messages to the log instead of sending them"""

    def send_message(self, phone, body, priority=False):
        logger.info(f"SMS to {phone}{' [priority]' if priority else ''}: {body}")
        return True


class LocmemSMSBackend(BaseSMSBackend):

    def send_message(self, phone, body, priority=False):
        with _outbox_lock:
            outbox.append({'to': phone, 'body': body, 'priority': priority})
        return True


class TwilioSMSBackend(BaseSMSBackend):
    """Twilio Programmable Messaging over its REST API"""
    api_url = 'https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json'

    def __init__(self, account_sid=None, auth_token=None, from_number=None, timeout=None):
        self.account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_FROM_NUMBER
        self.timeout = timeout or settings.TRANSPORT_TIMEOUT_SECONDS
        self.session = None

    def open(self):
        if self.session is None:
            self.session = requests.Session()
            self.session.auth = (self.account_sid, self.auth_token)

    def close(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    def send_message(self, phone, body, priority=False):
        if not (self.account_sid and self.auth_token and self.from_number):
            logger.warning('Twilio credentials are not configured; SMS not sent')
            return False

        self.open()
        response = self.session.post(
            self.api_url.format(sid=self.account_sid),
            data={'To': phone, 'From': self.from_number, 'Body': body},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info(f"SMS queued at Twilio for {phone}: {response.json().get('sid')}")
        return True
