from django.conf import settings
from django.db import models


class Notification(models.Model):
    """In-app notification shown in a user's inbox"""
    TYPE_BLOOD_REQUEST = 'blood_request'
    TYPE_DONATION_UPDATE = 'donation_update'
    TYPE_GENERAL = 'general'

    TYPE_CHOICES = [
        (TYPE_BLOOD_REQUEST, 'Blood Request'),
        (TYPE_DONATION_UPDATE, 'Donation Update'),
        (TYPE_GENERAL, 'General'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_GENERAL)
    title = models.CharField(max_length=200)
    message = models.TextField()
    data = models.JSONField(default=dict, blank=True)
    urgent = models.BooleanField(default=False)
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user} - {self.title}"

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'read', 'created_at']),
        ]
