"""
Outbound transports for SMS and push notifications.

Backends are picked by dotted path (``SMS_BACKEND`` / ``PUSH_BACKEND``) the
same way Django picks ``EMAIL_BACKEND``, so tests can swap in the in-memory
versions.
"""
from django.conf import settings
from django.utils.module_loading import import_string


class BaseBackend:
    """open()/close() bracket a batch of sends; both are optional"""

    def open(self):
        pass

    def close(self):
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


def get_sms_backend(backend=None, **kwargs):
    return import_string(backend or settings.SMS_BACKEND)(**kwargs)


def get_push_backend(backend=None, **kwargs):
    return import_string(backend or settings.PUSH_BACKEND)(**kwargs)
