import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from algorithms.blood_compatibility import can_donate
from algorithms.haversine import haversine_distance, valid_coordinates

# Constants
DONATION_COOLDOWN_DAYS = 56

# Reason codes
BLOOD_TYPE_MISMATCH = 'blood_type_mismatch'
DISTANCE_EXCEEDED = 'distance_exceeded'
UNAVAILABLE = 'unavailable'
COOLDOWN = 'cooldown'
URGENCY_NOT_SUBSCRIBED = 'urgency_not_subscribed'
ALREADY_RESPONDED = 'already_responded'
OWN_REQUEST = 'own_request'

logger = logging.getLogger(__name__)


@dataclass
class EligibilityResult:
    """Outcome of one donor/request check, with every failing reason listed"""
    is_eligible: bool = True
    reasons: list = field(default_factory=list)
    codes: list = field(default_factory=list)
    blood_type_match: bool = True
    distance_match: bool = True
    availability_match: bool = True
    distance_km: Optional[float] = None

    def reject(self, code, reason):
        self.is_eligible = False
        self.codes.append(code)
        self.reasons.append(reason)


def days_since(last_donation_date, today=None):
    if last_donation_date is None:
        return None
    today = today or date.today()
    return (today - last_donation_date).days


def check_eligibility(donor, blood_request, max_distance_km, responded_donor_ids=None,
                      cooldown_days=DONATION_COOLDOWN_DAYS, today=None) -> EligibilityResult:
    """
    Decide whether a donor may be matched/notified for a blood request.

    Criteria (all checked, none short-circuits):
    - Donor blood type compatible with the patient
    - Donor within max_distance_km of the hospital (only when both sides
      have valid coordinates; missing location is a pass)
    - Donor marked available for donation
    - Donor hasn't donated in the last cooldown_days
    - Donor subscribed to the request's urgency level
    - Donor hasn't already responded to this request
    - Donor isn't the requester

    Args:
        donor (DonorProfile): Donor object
        blood_request (BloodRequest): Request being matched
        max_distance_km (float): Maximum distance in km
        responded_donor_ids (set): user ids with a response on the request;
            looked up from the request when not given

    Returns:
        EligibilityResult
    """
    result = EligibilityResult()
    patient_type = blood_request.patient_blood_type

    # Blood compatibility
    if not donor.blood_type or not can_donate(donor.blood_type, patient_type):
        result.blood_type_match = False
        result.reject(
            BLOOD_TYPE_MISMATCH,
            f"Blood type {donor.blood_type or 'unknown'} is not compatible with {patient_type}",
        )

    # Distance check
    if (valid_coordinates(donor.latitude, donor.longitude) and
            valid_coordinates(blood_request.hospital_latitude, blood_request.hospital_longitude)):
        distance = haversine_distance(
            donor.latitude,
            donor.longitude,
            blood_request.hospital_latitude,
            blood_request.hospital_longitude,
        )
        result.distance_km = round(distance, 2)
        if distance > max_distance_km:
            result.distance_match = False
            result.reject(
                DISTANCE_EXCEEDED,
                f"Hospital is {result.distance_km}km away (limit {max_distance_km}km)",
            )

    if not donor.available_for_donation:
        result.availability_match = False
        result.reject(UNAVAILABLE, 'Donor has marked themselves as unavailable for donation')

    # Donation cooldown
    elapsed = days_since(donor.last_donation_date, today)
    if elapsed is not None and elapsed < cooldown_days:
        result.availability_match = False
        result.reject(
            COOLDOWN,
            f"Last donation was {elapsed} days ago; {cooldown_days} days are required",
        )

    if blood_request.urgency_level not in donor.subscribed_urgency_levels:
        result.reject(
            URGENCY_NOT_SUBSCRIBED,
            f"Donor is not subscribed to {blood_request.urgency_level} requests",
        )

    if responded_donor_ids is None:
        responded_donor_ids = set(blood_request.responses.values_list('donor_id', flat=True))
    if donor.user_id in responded_donor_ids:
        result.reject(ALREADY_RESPONDED, 'Donor has already responded to this request')

    if donor.user_id == blood_request.requester_id:
        result.reject(OWN_REQUEST, 'This is the donor\'s own blood request')

    return result


def is_donor_eligible(donor, blood_request, max_distance_km, **kwargs) -> bool:
    return check_eligibility(donor, blood_request, max_distance_km, **kwargs).is_eligible
