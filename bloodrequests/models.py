# bloodrequests/models.py
from django.conf import settings
from django.db import models
from django.utils import timezone

from algorithms.blood_compatibility import BLOOD_TYPE_CHOICES, URGENCY_CHOICES, URGENCY_STANDARD
from bloodconnect.exceptions import BusinessLogicError


class BloodRequest(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_FULFILLED = 'fulfilled'
    STATUS_EXPIRED = 'expired'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_FULFILLED, 'Fulfilled'),
        (STATUS_EXPIRED, 'Expired'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    # Legal forward moves; everything else is terminal
    TRANSITIONS = {
        STATUS_ACTIVE: {STATUS_FULFILLED, STATUS_EXPIRED, STATUS_CANCELLED},
    }

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='blood_requests'
    )

    # Patient
    patient_name = models.CharField(max_length=200)
    patient_age = models.PositiveIntegerField()
    patient_blood_type = models.CharField(max_length=3, choices=BLOOD_TYPE_CHOICES)
    patient_condition = models.TextField()

    # Hospital snapshot
    hospital_name = models.CharField(max_length=200)
    hospital_address = models.TextField(blank=True)
    hospital_latitude = models.FloatField(null=True, blank=True)
    hospital_longitude = models.FloatField(null=True, blank=True)
    hospital_contact = models.CharField(max_length=20, blank=True)
    hospital_department = models.CharField(max_length=100, blank=True)

    # Requester contact
    requester_name = models.CharField(max_length=200)
    requester_phone = models.CharField(max_length=20)
    alternate_contact = models.CharField(max_length=50, blank=True)

    urgency_level = models.CharField(max_length=10, choices=URGENCY_CHOICES, default=URGENCY_STANDARD)
    required_units = models.PositiveIntegerField(default=1)
    fulfilled_units = models.PositiveIntegerField(default=0)
    deadline = models.DateTimeField()
    description = models.TextField(blank=True)

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.hospital_name} - {self.patient_blood_type} ({self.urgency_level})"

    @property
    def is_active(self):
        return self.status == self.STATUS_ACTIVE

    @property
    def deadline_passed(self):
        return self.deadline <= timezone.now()

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status):
        """Move forward (active -> fulfilled/expired/cancelled), never back"""
        if not self.can_transition_to(new_status):
            raise BusinessLogicError(
                f"Blood request cannot move from {self.status} to {new_status}"
            )
        self.status = new_status

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Blood Request'
        verbose_name_plural = 'Blood Requests'
        indexes = [
            models.Index(fields=['patient_blood_type', 'urgency_level', 'status', 'deadline']),
            models.Index(fields=['requester', 'status']),
            models.Index(fields=['deadline', 'status']),
        ]


class MatchedDonorResponse(models.Model):
    """A donor's accept/decline record against one blood request"""
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_DECLINED = 'declined'
    STATUS_COMPLETED = 'completed'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_DECLINED, 'Declined'),
        (STATUS_COMPLETED, 'Donation Completed'),
    ]

    blood_request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name='responses')
    donor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='blood_request_responses'
    )
    donor_name = models.CharField(max_length=200)
    donor_blood_type = models.CharField(max_length=3, choices=BLOOD_TYPE_CHOICES)

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    notes = models.TextField(blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.donor_name} -> {self.status}"

    class Meta:
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(fields=['blood_request', 'donor'], name='unique_response_per_donor'),
        ]
