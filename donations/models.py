# donations/models.py
from datetime import datetime

from django.conf import settings
from django.db import models
from django.utils import timezone

from algorithms.blood_compatibility import BLOOD_TYPE_CHOICES, URGENCY_CHOICES, URGENCY_STANDARD
from bloodrequests.models import BloodRequest

ROLE_DONOR = 'donor'
ROLE_RECIPIENT = 'recipient'
ROLE_SYSTEM = 'system'

ROLE_CHOICES = [
    (ROLE_DONOR, 'Donor'),
    (ROLE_RECIPIENT, 'Recipient'),
    (ROLE_SYSTEM, 'System'),
]


def appointment_datetime(day, at):
    """Aware datetime for an appointment date and time in the current time zone"""
    return timezone.make_aware(datetime.combine(day, at))


class Donation(models.Model):
    """
    One accepted match tracked from initiation to the recipient's
    confirmation. At most one donation exists per blood request.
    """
    STATUS_INITIATED = 'initiated'
    STATUS_SCHEDULED = 'scheduled'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_DONOR_COMPLETED = 'donor_completed'
    STATUS_COMPLETED = 'completed'

    STATUS_CHOICES = [
        (STATUS_INITIATED, 'Initiated'),
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_DONOR_COMPLETED, 'Donor Completed'),
        (STATUS_COMPLETED, 'Completed'),
    ]

    APPOINTMENT_NONE = 'none'
    APPOINTMENT_CONFIRMED = 'confirmed'

    APPOINTMENT_CHOICES = [
        (APPOINTMENT_NONE, 'Not Scheduled'),
        (APPOINTMENT_CONFIRMED, 'Confirmed'),
    ]

    VERIFICATION_BASIC = 'basic'
    VERIFICATION_VERIFIED = 'verified'

    VERIFICATION_CHOICES = [
        (VERIFICATION_BASIC, 'Basic'),
        (VERIFICATION_VERIFIED, 'Verified'),
    ]

    blood_request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name='donations')
    donor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='donations_given'
    )
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='donations_received'
    )
    blood_type = models.CharField(max_length=3, choices=BLOOD_TYPE_CHOICES, blank=True)
    emergency_level = models.CharField(max_length=10, choices=URGENCY_CHOICES, default=URGENCY_STANDARD)

    # Hospital snapshot
    hospital_name = models.CharField(max_length=200)
    hospital_address = models.TextField(blank=True)
    hospital_contact = models.CharField(max_length=20, blank=True)
    hospital_department = models.CharField(max_length=100, blank=True)

    # Appointment
    appointment_date = models.DateField(null=True, blank=True)
    appointment_time = models.TimeField(null=True, blank=True)
    appointment_place = models.CharField(max_length=255, blank=True)
    estimated_duration = models.PositiveIntegerField(default=60, help_text='Minutes')
    appointment_status = models.CharField(max_length=10, choices=APPOINTMENT_CHOICES, default=APPOINTMENT_NONE)

    # Confirmations
    donor_arrived = models.BooleanField(default=False)
    donor_arrived_at = models.DateTimeField(null=True, blank=True)
    arrival_latitude = models.FloatField(null=True, blank=True)
    arrival_longitude = models.FloatField(null=True, blank=True)

    donor_completed = models.BooleanField(default=False)
    donor_completed_at = models.DateTimeField(null=True, blank=True)
    donor_notes = models.TextField(blank=True)

    recipient_received = models.BooleanField(default=False)
    recipient_received_at = models.DateTimeField(null=True, blank=True)
    recipient_notes = models.TextField(blank=True)

    overall_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_INITIATED)
    verification_level = models.CharField(max_length=10, choices=VERIFICATION_CHOICES, default=VERIFICATION_BASIC)
    trust_score = models.PositiveSmallIntegerField(default=50)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Donation #{self.id} for request #{self.blood_request_id} ({self.overall_status})"

    @property
    def is_completed(self):
        return self.overall_status == self.STATUS_COMPLETED

    @property
    def appointment_at(self):
        if not (self.appointment_date and self.appointment_time):
            return None
        return appointment_datetime(self.appointment_date, self.appointment_time)

    def role_of(self, user):
        """donor, recipient, or None for anyone else"""
        if user.pk == self.donor_id:
            return ROLE_DONOR
        if user.pk == self.recipient_id:
            return ROLE_RECIPIENT
        return None

    def counterpart_of(self, role):
        return self.recipient if role == ROLE_DONOR else self.donor

    def add_timeline_entry(self, stage, status, actor, notes='', location=None, proof=''):
        """Append the next entry; call inside the transaction that locked the donation"""
        last = self.timeline.order_by('-sequence').values_list('sequence', flat=True).first()
        location = location or {}
        return TimelineEntry.objects.create(
            donation=self,
            sequence=(last or 0) + 1,
            stage=stage,
            status=status,
            actor=actor,
            notes=notes or '',
            latitude=location.get('lat'),
            longitude=location.get('lng'),
            proof=proof or '',
        )

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['blood_request'], name='unique_donation_per_request'),
            models.UniqueConstraint(fields=['blood_request', 'donor'], name='unique_donation_per_request_donor'),
        ]
        indexes = [
            models.Index(fields=['donor', 'overall_status']),
            models.Index(fields=['recipient', 'overall_status']),
        ]


class TimelineEntry(models.Model):
    """Append-only audit log of a donation; never edited"""
    donation = models.ForeignKey(Donation, on_delete=models.CASCADE, related_name='timeline')
    sequence = models.PositiveIntegerField()
    stage = models.CharField(max_length=30)
    status = models.CharField(max_length=50)
    actor = models.CharField(max_length=10, choices=ROLE_CHOICES)
    notes = models.TextField(blank=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    proof = models.CharField(max_length=255, blank=True, help_text='Photo or file reference')
    timestamp = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"#{self.sequence} {self.stage}/{self.status} by {self.actor}"

    @property
    def location(self):
        if self.latitude is None or self.longitude is None:
            return None
        return {'lat': self.latitude, 'lng': self.longitude}

    class Meta:
        ordering = ['donation', 'sequence']
        verbose_name_plural = 'Timeline entries'
        constraints = [
            models.UniqueConstraint(fields=['donation', 'sequence'], name='unique_timeline_sequence'),
        ]


class Dispute(models.Model):
    STATUS_OPEN = 'open'
    STATUS_INVESTIGATING = 'investigating'
    STATUS_RESOLVED = 'resolved'
    STATUS_CLOSED = 'closed'

    STATUS_CHOICES = [
        (STATUS_OPEN, 'Open'),
        (STATUS_INVESTIGATING, 'Investigating'),
        (STATUS_RESOLVED, 'Resolved'),
        (STATUS_CLOSED, 'Closed'),
    ]

    donation = models.ForeignKey(Donation, on_delete=models.CASCADE, related_name='disputes')
    reported_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='disputes_reported'
    )
    reporter_role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    reason = models.TextField()
    status = models.CharField(max_length=15, choices=STATUS_CHOICES, default=STATUS_OPEN)
    resolution = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Dispute on donation #{self.donation_id} ({self.status})"

    class Meta:
        ordering = ['created_at', 'id']
