# api/serializers.py
from django.utils import timezone
from rest_framework import serializers

from bloodrequests.models import BloodRequest, MatchedDonorResponse
from bloodrequests.services import RESPONSE_ACCEPT, RESPONSE_DECLINE
from donations.models import Dispute, Donation, TimelineEntry
from notifications.models import Notification


class MatchedDonorResponseSerializer(serializers.ModelSerializer):
    class Meta:
        model = MatchedDonorResponse
        fields = [
            'id',
            'blood_request',
            'donor',
            'donor_name',
            'donor_blood_type',
            'status',
            'notes',
            'responded_at',
            'completed_at',
        ]
        read_only_fields = fields


class BloodRequestSerializer(serializers.ModelSerializer):
    """
    Blood request with its donor responses. Used for input on create and
    for every blood request response body.
    """
    requester_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    requester_phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    patient_age = serializers.IntegerField(min_value=0, max_value=150)
    required_units = serializers.IntegerField(min_value=1, max_value=20, required=False)
    hospital_latitude = serializers.FloatField(min_value=-90, max_value=90, required=False, allow_null=True)
    hospital_longitude = serializers.FloatField(min_value=-180, max_value=180, required=False, allow_null=True)

    responses = MatchedDonorResponseSerializer(many=True, read_only=True)
    # Set by geo queries only
    distance = serializers.SerializerMethodField()

    class Meta:
        model = BloodRequest
        fields = [
            'id',
            'requester',
            'patient_name',
            'patient_age',
            'patient_blood_type',
            'patient_condition',
            'hospital_name',
            'hospital_address',
            'hospital_latitude',
            'hospital_longitude',
            'hospital_contact',
            'hospital_department',
            'requester_name',
            'requester_phone',
            'alternate_contact',
            'urgency_level',
            'required_units',
            'fulfilled_units',
            'deadline',
            'description',
            'status',
            'responses',
            'distance',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['id', 'requester', 'fulfilled_units', 'status', 'created_at', 'updated_at']

    def get_distance(self, obj):
        return getattr(obj, 'distance', None)

    def validate_deadline(self, value):
        if value <= timezone.now():
            raise serializers.ValidationError('Deadline must be in the future.')
        return value


class RespondSerializer(serializers.Serializer):
    response = serializers.ChoiceField(choices=[RESPONSE_ACCEPT, RESPONSE_DECLINE], default=RESPONSE_ACCEPT)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class NotifyDonorsSerializer(serializers.Serializer):
    max_distance = serializers.FloatField(required=False, allow_null=True, min_value=0.1, max_value=20000)
    urgent_only = serializers.BooleanField(required=False, default=False)


class TimelineEntrySerializer(serializers.ModelSerializer):
    location = serializers.ReadOnlyField()

    class Meta:
        model = TimelineEntry
        fields = ['sequence', 'stage', 'status', 'actor', 'notes', 'location', 'proof', 'timestamp']


class DisputeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dispute
        fields = ['id', 'reported_by', 'reporter_role', 'reason', 'status', 'resolution', 'created_at']


class DonationSerializer(serializers.ModelSerializer):
    """Donation with its appointment and confirmations grouped the way clients read them"""
    request_id = serializers.IntegerField(source='blood_request_id', read_only=True)
    hospital = serializers.SerializerMethodField()
    appointment = serializers.SerializerMethodField()
    confirmations = serializers.SerializerMethodField()
    timeline = TimelineEntrySerializer(many=True, read_only=True)
    disputes = DisputeSerializer(many=True, read_only=True)

    class Meta:
        model = Donation
        fields = [
            'id',
            'request_id',
            'donor',
            'recipient',
            'blood_type',
            'emergency_level',
            'hospital',
            'appointment',
            'confirmations',
            'overall_status',
            'verification_level',
            'trust_score',
            'timeline',
            'disputes',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_hospital(self, obj):
        return {
            'name': obj.hospital_name,
            'address': obj.hospital_address,
            'contact_number': obj.hospital_contact,
            'department': obj.hospital_department,
        }

    def get_appointment(self, obj):
        return {
            'date': obj.appointment_date,
            'time': obj.appointment_time.strftime('%H:%M') if obj.appointment_time else None,
            'place': obj.appointment_place,
            'estimated_duration': obj.estimated_duration,
            'starts_at': obj.appointment_at,
            'status': obj.appointment_status,
        }

    def get_confirmations(self, obj):
        arrival_location = None
        if obj.arrival_latitude is not None and obj.arrival_longitude is not None:
            arrival_location = {'lat': obj.arrival_latitude, 'lng': obj.arrival_longitude}
        return {
            'donor_arrived': obj.donor_arrived,
            'donor_arrived_at': obj.donor_arrived_at,
            'arrival_location': arrival_location,
            'donor_completed': obj.donor_completed,
            'donor_completed_at': obj.donor_completed_at,
            'donor_notes': obj.donor_notes,
            'recipient_received': obj.recipient_received,
            'recipient_received_at': obj.recipient_received_at,
            'recipient_notes': obj.recipient_notes,
        }


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'type', 'title', 'message', 'data', 'urgent', 'read', 'created_at']
        read_only_fields = fields
