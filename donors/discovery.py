import logging

from django.conf import settings

from algorithms.blood_compatibility import compatible_donor_types, urgency_radius
from algorithms.eligibility import check_eligibility
from donors.models import DonorProfile

# Logger setup
logger = logging.getLogger(__name__)


def candidate_pool(blood_request):
    """
    Active donors whose blood type can be given to the patient.
    """
    return DonorProfile.objects.filter(
        is_donor=True,
        available_for_donation=True,
        blood_type__in=compatible_donor_types(blood_request.patient_blood_type),
    ).select_related('user').order_by('id')


def discover_donors(blood_request, donor_pool=None, limit=None, max_distance_km=None,
                    sort_by_distance=False):
    """
    Find the donors to notify for a blood request.

    Steps:
    1. Take up to 2 x limit candidates from the pool (over-fetch so the
       eligibility pass still leaves enough donors)
    2. Apply the eligibility check to each candidate
    3. Truncate to limit

    Each returned donor carries a ``distance`` attribute (km, or None when
    either side has no location).

    Args:
        blood_request: BloodRequest being matched
        donor_pool: QuerySet or list of DonorProfile; defaults to candidate_pool()
        limit (int): Maximum donors returned (caps notification fan-out)
        max_distance_km: Search radius; defaults to the urgency radius
        sort_by_distance (bool): Nearest first, donors without location last

    Returns:
        List of DonorProfile
    """
    if limit is None:
        limit = settings.DONOR_DISCOVERY_LIMIT
    if max_distance_km is None:
        max_distance_km = urgency_radius(blood_request.urgency_level)
    if donor_pool is None:
        donor_pool = candidate_pool(blood_request)

    candidates = list(donor_pool[:limit * 2])
    if not candidates:
        logger.info(f"No candidate donors for blood request {blood_request.id}")
        return []

    responded = set(blood_request.responses.values_list('donor_id', flat=True))

    eligible = []
    for donor in candidates:
        result = check_eligibility(
            donor,
            blood_request,
            max_distance_km,
            responded_donor_ids=responded,
            cooldown_days=settings.DONATION_COOLDOWN_DAYS,
        )
        if not result.is_eligible:
            logger.debug(f"Donor {donor.id} skipped for request {blood_request.id}: {result.codes}")
            continue
        donor.distance = result.distance_km  # attach distance for ranking/display
        eligible.append(donor)

    if sort_by_distance:
        eligible.sort(key=lambda d: (d.distance is None, d.distance or 0))

    eligible = eligible[:limit]
    logger.info(
        f"{len(eligible)} of {len(candidates)} candidate donors eligible for "
        f"blood request {blood_request.id} (radius {max_distance_km}km)"
    )
    return eligible
