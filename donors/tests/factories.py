"""Model builders shared by the test suites"""
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.utils import timezone

from bloodrequests.models import BloodRequest, MatchedDonorResponse
from donors.models import DonorProfile

User = get_user_model()

# Kathmandu; Pokhara is roughly 140 km away
HOSPITAL_LAT, HOSPITAL_LNG = 27.7172, 85.3240
FAR_LAT, FAR_LNG = 28.2096, 83.9856


def make_user(username, phone='9800000000', **kwargs):
    return User.objects.create_user(
        username=username,
        password='pass12345',
        phone_number=phone,
        **kwargs
    )


def make_donor(username, blood_type='O-', latitude=HOSPITAL_LAT, longitude=HOSPITAL_LNG, **kwargs):
    phone = kwargs.pop('phone', '9811111111')
    user = make_user(username, phone=phone)
    return DonorProfile.objects.create(
        user=user,
        full_name=username.title(),
        phone=phone,
        blood_type=blood_type,
        latitude=latitude,
        longitude=longitude,
        **kwargs
    )


def make_request(requester, **overrides):
    fields = {
        'patient_name': 'Sita Sharma',
        'patient_age': 34,
        'patient_blood_type': 'A+',
        'patient_condition': 'Surgery',
        'hospital_name': 'Bir Hospital',
        'hospital_address': 'Mahaboudha, Kathmandu',
        'hospital_latitude': HOSPITAL_LAT,
        'hospital_longitude': HOSPITAL_LNG,
        'hospital_contact': '014221119',
        'requester_name': requester.display_name,
        'requester_phone': requester.phone_number or '9800000000',
        'urgency_level': 'urgent',
        'deadline': timezone.now() + timedelta(hours=12),
    }
    fields.update(overrides)
    return BloodRequest.objects.create(requester=requester, **fields)


def accept(blood_request, donor_profile):
    return MatchedDonorResponse.objects.create(
        blood_request=blood_request,
        donor=donor_profile.user,
        donor_name=donor_profile.full_name,
        donor_blood_type=donor_profile.blood_type,
        status=MatchedDonorResponse.STATUS_ACCEPTED,
        responded_at=timezone.now(),
    )
