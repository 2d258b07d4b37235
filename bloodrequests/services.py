"""
Blood request operations: create (with donor discovery and notification
fan-out), owner-triggered re-notify, query, owner-only update/cancel, donor
response and expiry.
"""
import logging
import math
from datetime import timedelta
from functools import partial

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Case, IntegerField, Value, When
from django.utils import timezone

from algorithms.blood_compatibility import (
    BLOOD_TYPES, URGENCY_CRITICAL, URGENCY_LEVELS, URGENCY_RANK, can_donate,
)
from algorithms.haversine import haversine_distance, valid_coordinates
from bloodconnect.exceptions import (
    AuthorizationError,
    BusinessLogicError,
    ConflictError,
    NotFoundError,
    RequestValidationError,
)
from bloodrequests.models import BloodRequest, MatchedDonorResponse
from donors.discovery import candidate_pool, discover_donors
from donors.models import DonorProfile
from notifications.dispatcher import build_dispatcher, notify_user
from notifications.models import Notification

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

REQUIRED_FIELDS = [
    'patient_name',
    'patient_age',
    'patient_blood_type',
    'patient_condition',
    'hospital_name',
    'deadline',
]

# Fields the owner may change after creation
UPDATABLE_FIELDS = {
    'patient_condition',
    'hospital_name',
    'hospital_address',
    'hospital_latitude',
    'hospital_longitude',
    'hospital_contact',
    'hospital_department',
    'requester_phone',
    'alternate_contact',
    'urgency_level',
    'required_units',
    'deadline',
    'description',
}

RESPONSE_ACCEPT = 'accept'
RESPONSE_DECLINE = 'decline'


def parse_id(value, label='ID'):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise RequestValidationError(f"Invalid {label} format")
    if parsed < 1:
        raise RequestValidationError(f"Invalid {label} format")
    return parsed


def get_blood_request(request_id, lock=False):
    request_id = parse_id(request_id, 'request ID')
    queryset = BloodRequest.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(id=request_id)
    except BloodRequest.DoesNotExist:
        raise NotFoundError('Blood request not found')


def get_visible_blood_request(user, request_id):
    """
    Blood request as seen by ``user``. Active requests are open to every
    donor; otherwise only the requester and donors who responded may look.
    """
    blood_request = get_blood_request(request_id)
    if (
        blood_request.is_active
        or blood_request.requester_id == user.pk
        or blood_request.responses.filter(donor=user).exists()
    ):
        return blood_request
    raise AuthorizationError('Access denied to this blood request')


# ---------------------------
# Create
# ---------------------------
def create_blood_request(requester, data, dispatcher=None):
    """
    Store a new active blood request, discover eligible donors and notify them.

    Notification failures never fail the creation; the returned donor list
    is the discovery result (eligibility), not delivery success.

    Returns:
        (BloodRequest, list of notified DonorProfile)
    """
    missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, '')]
    if missing:
        raise RequestValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={name: ['This field is required.'] for name in missing},
        )

    if data['deadline'] <= timezone.now():
        raise RequestValidationError('Deadline must be in the future')

    requester_phone = data.get('requester_phone') or requester.phone_number
    if not requester_phone:
        raise RequestValidationError('A contact phone number is required')

    fields = dict(data)
    fields['requester_phone'] = requester_phone
    fields['requester_name'] = data.get('requester_name') or requester.display_name

    with transaction.atomic():
        blood_request = BloodRequest.objects.create(
            requester=requester,
            status=BloodRequest.STATUS_ACTIVE,
            **fields
        )
    logger.info(
        f"Blood request {blood_request.id} created by user {requester.pk}: "
        f"{blood_request.patient_blood_type} ({blood_request.urgency_level})"
    )

    donors = discover_donors(blood_request)
    if donors:
        dispatch_notifications(blood_request, donors, dispatcher=dispatcher)
    return blood_request, donors


def dispatch_notifications(blood_request, donors, dispatcher=None):
    if settings.NOTIFICATIONS_ASYNC and dispatcher is None:
        from notifications.tasks import dispatch_blood_request_notifications

        donor_ids = [donor.id for donor in donors]
        transaction.on_commit(
            partial(dispatch_blood_request_notifications.delay, blood_request.id, donor_ids)
        )
        logger.info(f"Queued notifications for {len(donor_ids)} donors (request {blood_request.id})")
        return None

    try:
        if dispatcher is not None:
            return dispatcher.notify(blood_request, donors)
        with build_dispatcher() as owned:
            return owned.notify(blood_request, donors)
    except Exception:
        logger.exception(f"Notification dispatch failed for request {blood_request.id}")
        return None


def _max_distance(value):
    if value in (None, ''):
        return None
    try:
        distance = float(value)
    except (TypeError, ValueError):
        raise RequestValidationError(f"Invalid max distance: {value}")
    if not math.isfinite(distance) or distance <= 0:
        raise RequestValidationError('Max distance must be a positive number of kilometres')
    return distance


def notify_eligible_donors(user, request_id, max_distance_km=None, urgent_only=False, dispatcher=None):
    """
    Re-run discovery for one of the caller's active requests and notify the
    eligible donors, so donors who joined after the request was posted are
    reached too. Donors who already responded are skipped by discovery.

    With ``urgent_only`` nothing is sent unless the request is critical.

    Returns:
        dict with total_potential_donors, eligible_donors, notifications_sent
        and queued (True when the fan-out went to a Celery worker)
    """
    max_distance_km = _max_distance(max_distance_km)
    blood_request = get_blood_request(request_id)
    if blood_request.requester_id != user.pk:
        raise AuthorizationError('Only the requester can send notifications')
    if not blood_request.is_active:
        raise BusinessLogicError(f"Blood request is {blood_request.status}; donors cannot be notified")
    if blood_request.deadline_passed:
        raise BusinessLogicError('Blood request deadline has passed')

    stats = {
        'total_potential_donors': candidate_pool(blood_request).exclude(user_id=user.pk).count(),
        'eligible_donors': 0,
        'notifications_sent': 0,
        'queued': False,
    }
    if urgent_only and blood_request.urgency_level != URGENCY_CRITICAL:
        logger.info(f"Request {blood_request.id} is not critical; urgent-only notify skipped")
        return stats

    donors = discover_donors(blood_request, max_distance_km=max_distance_km)
    stats['eligible_donors'] = len(donors)
    if donors:
        outcomes = dispatch_notifications(blood_request, donors, dispatcher=dispatcher)
        if outcomes is None:
            stats['queued'] = settings.NOTIFICATIONS_ASYNC and dispatcher is None
        else:
            stats['notifications_sent'] = sum(1 for outcome in outcomes if outcome.delivered)

    logger.info(
        f"Requester {user.pk} re-notified donors for request {blood_request.id}: "
        f"{stats['eligible_donors']} eligible, {stats['notifications_sent']} reached"
    )
    return stats


# ---------------------------
# Query
# ---------------------------
def _choice(value, allowed, label):
    if value in (None, ''):
        return None
    if value not in allowed:
        raise RequestValidationError(f"Invalid {label}: {value}")
    return value


def _positive_int(value, default, label):
    if value in (None, ''):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise RequestValidationError(f"Invalid {label}: {value}")
    if parsed < 1:
        raise RequestValidationError(f"{label} must be at least 1")
    return parsed


def _float_or_none(value):
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def ordered_requests(queryset=None):
    """Critical first, then soonest deadline, then newest"""
    if queryset is None:
        queryset = BloodRequest.objects.all()
    rank = Case(
        *[When(urgency_level=level, then=Value(position)) for level, position in URGENCY_RANK.items()],
        default=Value(len(URGENCY_RANK)),
        output_field=IntegerField(),
    )
    return queryset.annotate(urgency_rank=rank).order_by('urgency_rank', 'deadline', '-created_at')


def query_blood_requests(params):
    """
    Filter, order and paginate blood requests.

    Supported params: status (default active), urgency, blood_type,
    requester_id, lat/lng/radius (km), page, limit.

    The geographic filter applies only when lat, lng and radius are all
    present and valid; requests without hospital coordinates are then left
    out.

    Returns:
        dict with ``requests`` (list of BloodRequest) and ``pagination``
    """
    status = _choice(
        params.get('status') or BloodRequest.STATUS_ACTIVE,
        [choice for choice, _ in BloodRequest.STATUS_CHOICES] + ['all'],
        'status',
    )
    urgency = _choice(params.get('urgency'), URGENCY_LEVELS, 'urgency')
    # an unencoded '+' in a query string arrives as a space
    blood_type = (params.get('blood_type') or '').replace(' ', '+').upper()
    blood_type = _choice(blood_type, BLOOD_TYPES, 'blood type')
    limit = min(_positive_int(params.get('limit'), DEFAULT_PAGE_SIZE, 'limit'), MAX_PAGE_SIZE)
    page = _positive_int(params.get('page'), 1, 'page')

    queryset = BloodRequest.objects.all()
    if status != 'all':
        queryset = queryset.filter(status=status)
    if status == BloodRequest.STATUS_ACTIVE:
        # Hide active requests that are well past their deadline but not yet expired
        cutoff = timezone.now() - timedelta(hours=settings.BLOOD_REQUEST_GRACE_HOURS)
        queryset = queryset.filter(deadline__gte=cutoff)
    if urgency:
        queryset = queryset.filter(urgency_level=urgency)
    if blood_type:
        queryset = queryset.filter(patient_blood_type=blood_type)
    if params.get('requester_id') not in (None, ''):
        queryset = queryset.filter(requester_id=parse_id(params['requester_id'], 'requester ID'))

    queryset = ordered_requests(queryset)

    lat = _float_or_none(params.get('lat'))
    lng = _float_or_none(params.get('lng'))
    radius = _float_or_none(params.get('radius'))
    geo = valid_coordinates(lat, lng) and radius is not None and radius > 0

    offset = (page - 1) * limit
    if geo:
        matches = []
        for blood_request in queryset:
            if not valid_coordinates(blood_request.hospital_latitude, blood_request.hospital_longitude):
                continue
            distance = haversine_distance(
                lat, lng, blood_request.hospital_latitude, blood_request.hospital_longitude
            )
            if distance <= radius:
                blood_request.distance = round(distance, 2)
                matches.append(blood_request)
        total = len(matches)
        results = matches[offset:offset + limit]
    else:
        total = queryset.count()
        results = list(queryset[offset:offset + limit])

    return {
        'requests': results,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': math.ceil(total / limit) if total else 0,
        },
    }


# ---------------------------
# Owner-only changes
# ---------------------------
def _check_owner(blood_request, user):
    if blood_request.requester_id != user.pk:
        raise AuthorizationError('Only the requester can change this blood request')


def update_blood_request(user, request_id, changes):
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise RequestValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    with transaction.atomic():
        blood_request = get_blood_request(request_id, lock=True)
        _check_owner(blood_request, user)
        if not blood_request.is_active:
            raise BusinessLogicError(f"Blood request is {blood_request.status} and can no longer be edited")
        if 'deadline' in changes and changes['deadline'] <= timezone.now():
            raise RequestValidationError('Deadline must be in the future')

        for name, value in changes.items():
            setattr(blood_request, name, value)
        blood_request.save()

    logger.info(f"Blood request {blood_request.id} updated by owner: {sorted(changes)}")
    return blood_request


def cancel_blood_request(user, request_id):
    with transaction.atomic():
        blood_request = get_blood_request(request_id, lock=True)
        _check_owner(blood_request, user)
        blood_request.transition_to(BloodRequest.STATUS_CANCELLED)
        blood_request.save(update_fields=['status', 'updated_at'])

    logger.info(f"Blood request {blood_request.id} cancelled by owner")
    return blood_request


# ---------------------------
# Donor response
# ---------------------------
def respond_to_request(user, request_id, response=RESPONSE_ACCEPT, notes=''):
    """
    Record a donor's accept/decline on an active request. Accepting
    notifies the requester in-app.
    """
    if response not in (RESPONSE_ACCEPT, RESPONSE_DECLINE):
        raise RequestValidationError("Response must be 'accept' or 'decline'")

    blood_request = get_blood_request(request_id)

    if not blood_request.is_active:
        raise BusinessLogicError('Blood request is no longer active')
    if blood_request.deadline_passed:
        raise BusinessLogicError('Blood request deadline has passed')
    if blood_request.requester_id == user.pk:
        raise BusinessLogicError('You cannot respond to your own request')

    try:
        donor = user.donor_profile
    except DonorProfile.DoesNotExist:
        raise BusinessLogicError('Please complete your donor profile before helping')
    if not donor.blood_type:
        raise BusinessLogicError('Please update your blood type in your profile before helping')

    if response == RESPONSE_ACCEPT and not can_donate(donor.blood_type, blood_request.patient_blood_type):
        raise BusinessLogicError(
            f"Your blood type {donor.blood_type} is not compatible with {blood_request.patient_blood_type}"
        )

    if blood_request.responses.filter(donor=user).exists():
        raise ConflictError('You have already responded to this request')

    status = (
        MatchedDonorResponse.STATUS_ACCEPTED if response == RESPONSE_ACCEPT
        else MatchedDonorResponse.STATUS_DECLINED
    )
    try:
        with transaction.atomic():
            donor_response = MatchedDonorResponse.objects.create(
                blood_request=blood_request,
                donor=user,
                donor_name=donor.full_name or user.display_name,
                donor_blood_type=donor.blood_type,
                status=status,
                notes=notes or '',
                responded_at=timezone.now(),
            )
    except IntegrityError:
        raise ConflictError('You have already responded to this request')

    logger.info(f"Donor {user.pk} {status} blood request {blood_request.id}")

    if status == MatchedDonorResponse.STATUS_ACCEPTED:
        transaction.on_commit(partial(
            notify_user,
            blood_request.requester,
            f"{donor_response.donor_name} can help",
            f"{donor_response.donor_name} ({donor.blood_type}) accepted your request for "
            f"{blood_request.patient_name} at {blood_request.hospital_name}.",
            type=Notification.TYPE_BLOOD_REQUEST,
            data={
                'request_id': blood_request.id,
                'donor_id': user.pk,
                'donor_phone': donor.contact_phone,
            },
        ))
    return donor_response


# ---------------------------
# Expiry
# ---------------------------
def expire_overdue_requests(now=None):
    """Mark active requests past their deadline as expired; returns the count"""
    now = now or timezone.now()
    expired = 0
    overdue = BloodRequest.objects.filter(status=BloodRequest.STATUS_ACTIVE, deadline__lt=now)
    for request_id in overdue.values_list('id', flat=True):
        with transaction.atomic():
            blood_request = BloodRequest.objects.select_for_update().get(id=request_id)
            if not blood_request.can_transition_to(BloodRequest.STATUS_EXPIRED):
                continue
            blood_request.transition_to(BloodRequest.STATUS_EXPIRED)
            blood_request.save(update_fields=['status', 'updated_at'])
            expired += 1

    if expired:
        logger.info(f"Expired {expired} overdue blood requests")
    return expired
