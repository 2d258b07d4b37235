from django.contrib.auth.models import AbstractUser
from django.db import models


class CustomUser(AbstractUser):
    """
    A platform user. The same account can post blood requests (requester /
    recipient) and, with a donor profile, respond to other people's requests.
    """
    email = models.EmailField(blank=True)
    phone_number = models.CharField(max_length=20, blank=True, db_index=True)

    @property
    def display_name(self):
        return self.get_full_name() or self.username

    def __str__(self):
        return f"{self.display_name} ({self.phone_number or 'no phone'})"
