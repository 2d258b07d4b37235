from datetime import date, timedelta
from types import SimpleNamespace

from django.test import SimpleTestCase

from algorithms import eligibility
from algorithms.eligibility import check_eligibility, is_donor_eligible

HOSPITAL = (27.7172, 85.3240)


def donor(**overrides):
    fields = {
        'user_id': 10,
        'blood_type': 'O-',
        'latitude': HOSPITAL[0],
        'longitude': HOSPITAL[1],
        'available_for_donation': True,
        'last_donation_date': None,
        'subscribed_urgency_levels': ['critical', 'urgent', 'standard'],
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def blood_request(**overrides):
    fields = {
        'requester_id': 1,
        'patient_blood_type': 'A+',
        'hospital_latitude': HOSPITAL[0],
        'hospital_longitude': HOSPITAL[1],
        'urgency_level': 'urgent',
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def check(d, r, radius=10, responded=None, **kwargs):
    return check_eligibility(d, r, radius, responded_donor_ids=responded or set(), **kwargs)


class EligibilityTests(SimpleTestCase):

    def test_compatible_nearby_donor_is_eligible(self):
        result = check(donor(), blood_request())
        self.assertTrue(result.is_eligible)
        self.assertEqual(result.reasons, [])
        self.assertEqual(result.distance_km, 0)

    def test_incompatible_blood_type(self):
        result = check(donor(blood_type='B+'), blood_request())
        self.assertFalse(result.is_eligible)
        self.assertFalse(result.blood_type_match)
        self.assertEqual(result.codes, [eligibility.BLOOD_TYPE_MISMATCH])

    def test_distance_exceeded(self):
        result = check(donor(latitude=28.2096, longitude=83.9856), blood_request())
        self.assertFalse(result.distance_match)
        self.assertEqual(result.codes, [eligibility.DISTANCE_EXCEEDED])

    def test_missing_coordinates_pass_the_distance_check(self):
        self.assertTrue(check(donor(latitude=None, longitude=None), blood_request()).is_eligible)
        self.assertTrue(check(donor(), blood_request(hospital_latitude=None)).is_eligible)
        self.assertTrue(check(donor(latitude=200, longitude=0), blood_request()).is_eligible)

    def test_unavailable_donor_is_never_eligible(self):
        result = check(donor(available_for_donation=False), blood_request())
        self.assertFalse(result.is_eligible)
        self.assertIn(eligibility.UNAVAILABLE, result.codes)

    def test_recent_donation_is_within_cooldown(self):
        today = date(2024, 6, 1)
        recent = donor(last_donation_date=today - timedelta(days=55))
        rested = donor(last_donation_date=today - timedelta(days=56))
        self.assertEqual(check(recent, blood_request(), today=today).codes, [eligibility.COOLDOWN])
        self.assertTrue(check(rested, blood_request(), today=today).is_eligible)

    def test_urgency_not_subscribed(self):
        result = check(donor(subscribed_urgency_levels=['critical']), blood_request(urgency_level='standard'))
        self.assertEqual(result.codes, [eligibility.URGENCY_NOT_SUBSCRIBED])

    def test_donor_who_already_responded_is_excluded(self):
        result = check(donor(user_id=10), blood_request(), responded={10})
        self.assertEqual(result.codes, [eligibility.ALREADY_RESPONDED])

    def test_requester_is_never_eligible_for_own_request(self):
        result = check(donor(user_id=1), blood_request(requester_id=1))
        self.assertFalse(result.is_eligible)
        self.assertEqual(result.codes, [eligibility.OWN_REQUEST])

    def test_every_failing_reason_is_reported(self):
        result = check(
            donor(
                user_id=1,
                blood_type='AB+',
                latitude=28.2096,
                longitude=83.9856,
                available_for_donation=False,
            ),
            blood_request(requester_id=1),
            responded={1},
        )
        self.assertEqual(result.codes, [
            eligibility.BLOOD_TYPE_MISMATCH,
            eligibility.DISTANCE_EXCEEDED,
            eligibility.UNAVAILABLE,
            eligibility.ALREADY_RESPONDED,
            eligibility.OWN_REQUEST,
        ])
        self.assertEqual(len(result.reasons), 5)

    def test_is_donor_eligible_shortcut(self):
        self.assertTrue(is_donor_eligible(donor(), blood_request(), 10, responded_donor_ids=set()))
        self.assertFalse(is_donor_eligible(donor(blood_type='A+'), blood_request(patient_blood_type='O+'), 10,
                                           responded_donor_ids=set()))
