from datetime import date

from django.conf import settings
from django.db import models

from algorithms.blood_compatibility import BLOOD_TYPE_CHOICES, URGENCY_LEVELS


def default_urgency_levels():
    return list(URGENCY_LEVELS)


# ---------------------------
# Donor Profile
# ---------------------------
class DonorProfile(models.Model):
    """
    Matching snapshot of a user who may donate blood.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='donor_profile'
    )

    full_name = models.CharField(max_length=200)
    phone = models.CharField(max_length=20, blank=True, db_index=True)
    blood_type = models.CharField(max_length=3, choices=BLOOD_TYPE_CHOICES)
    address = models.TextField(blank=True)

    # Geolocation (optional)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)

    # Medical info
    is_donor = models.BooleanField(default=True)
    available_for_donation = models.BooleanField(default=True)
    last_donation_date = models.DateField(null=True, blank=True)
    total_donations = models.PositiveIntegerField(default=0)

    # Notification preferences
    notify_sms = models.BooleanField(default=True)
    notify_push = models.BooleanField(default=True)
    notify_email = models.BooleanField(default=False)
    urgency_levels = models.JSONField(default=default_urgency_levels, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def subscribed_urgency_levels(self):
        # Never-configured preferences mean "everything"
        if self.urgency_levels is None:
            return list(URGENCY_LEVELS)
        return self.urgency_levels

    @property
    def contact_phone(self):
        return self.phone or self.user.phone_number

    @property
    def can_donate(self) -> bool:
        """Available and past the donation cooldown"""
        return self.available_for_donation and self.days_until_eligible == 0

    @property
    def days_until_eligible(self) -> int:
        if not self.last_donation_date:
            return 0
        days_since = (date.today() - self.last_donation_date).days
        return max(0, settings.DONATION_COOLDOWN_DAYS - days_since)

    def __str__(self):
        return f"{self.full_name} ({self.blood_type})"

    class Meta:
        verbose_name = "Donor Profile"
        verbose_name_plural = "Donor Profiles"
        ordering = ['id']
        indexes = [
            models.Index(fields=['is_donor', 'available_for_donation', 'blood_type']),
        ]
