"""
Donation lifecycle: initiated -> scheduled -> in_progress -> donor_completed
-> completed, driven by role-scoped actions.

Every action runs in one transaction with the donation row locked, so a
failed guard leaves nothing half-written and timeline entries for one
donation never interleave. Disputes are annotations and do not move the
state.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from functools import partial

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from bloodconnect.exceptions import (
    AuthorizationError,
    BusinessLogicError,
    ConflictError,
    NotFoundError,
    RequestValidationError,
)
from bloodrequests.models import BloodRequest, MatchedDonorResponse
from bloodrequests.services import get_blood_request
from donations.actions import (
    ConfirmArrivalAction,
    ConfirmCompletionAction,
    ConfirmReceiptAction,
    DisputeAction,
    InitiateAction,
    ScheduleAction,
    action_name,
)
from donations.models import ROLE_DONOR, ROLE_RECIPIENT, Dispute, Donation, appointment_datetime
from donors.models import DonorProfile
from notifications.dispatcher import notify_user
from notifications.models import Notification

logger = logging.getLogger(__name__)

TRUST_SCORE_MAX = 100
TRUST_SCORE_COMPLETION_BONUS = 20


@dataclass
class ActionResult:
    donation: Donation
    message: str
    next_steps: list = field(default_factory=list)
    created: bool = False
    extra: dict = field(default_factory=dict)


def next_steps(donation, role):
    """Human-readable hints for what the caller should do next"""
    status = donation.overall_status
    if status == Donation.STATUS_INITIATED:
        return ['Schedule appointment with recipient', 'Coordinate hospital visit time']
    if status == Donation.STATUS_SCHEDULED:
        if role == ROLE_DONOR:
            return ['Confirm attendance closer to appointment date', 'Arrive at hospital on time']
        return ['Wait for the donor to arrive at the hospital']
    if status == Donation.STATUS_IN_PROGRESS:
        if role == ROLE_DONOR:
            return ['Complete the donation process', 'Upload donation receipt when done']
        return ['The donor has arrived at the hospital']
    if status == Donation.STATUS_DONOR_COMPLETED:
        if role == ROLE_RECIPIENT:
            return ['Confirm receipt once the blood has been received']
        return [
            'Recipient will confirm when blood is received',
            'Process will be complete after recipient confirmation',
        ]
    return []


def _notify_counterpart(donation, role, title, message, action):
    """Tell the other party after the transition commits"""
    counterpart = donation.counterpart_of(role)
    transaction.on_commit(partial(
        notify_user,
        counterpart,
        title,
        message,
        type=Notification.TYPE_DONATION_UPDATE,
        data={
            'donation_id': donation.id,
            'request_id': donation.blood_request_id,
            'action': action,
            'status': donation.overall_status,
        },
    ))


def _require_role(donation, user, allowed, message):
    role = donation.role_of(user)
    if role not in allowed:
        raise AuthorizationError(message)
    return role


def _require_open(donation):
    if donation.is_completed:
        raise ConflictError('This donation has already been completed')


# ---------------------------
# Initiate
# ---------------------------
def initiate(user, action):
    blood_request = get_blood_request(action.request_id, lock=True)

    donor_response = blood_request.responses.filter(donor=user).first()
    if donor_response is None or donor_response.status != MatchedDonorResponse.STATUS_ACCEPTED:
        raise BusinessLogicError('You must accept to help before initiating donation')

    if Donation.objects.filter(blood_request=blood_request).exists():
        raise ConflictError('Donation already initiated for this request')
    if Donation.objects.filter(blood_request=blood_request, donor=user).exists():
        raise ConflictError('You have already initiated a donation for this request')

    if not blood_request.is_active:
        raise BusinessLogicError('Blood request is no longer active')

    try:
        with transaction.atomic():
            donation = Donation.objects.create(
                blood_request=blood_request,
                donor=user,
                recipient_id=blood_request.requester_id,
                blood_type=donor_response.donor_blood_type,
                emergency_level=blood_request.urgency_level,
                hospital_name=action.hospital_name or blood_request.hospital_name or 'Hospital not specified',
                hospital_address=action.hospital_address or blood_request.hospital_address,
                hospital_contact=action.hospital_contact or blood_request.hospital_contact,
                hospital_department=action.hospital_department or blood_request.hospital_department,
            )
    except IntegrityError:
        # lost a race with a concurrent initiate
        raise ConflictError('Donation already initiated for this request')

    donation.add_timeline_entry(
        'initiation',
        'donation_initiated',
        ROLE_DONOR,
        f"Donation initiated by {donor_response.donor_name or user.display_name}",
        action.location,
    )
    logger.info(f"Donation {donation.id} initiated by donor {user.pk} for request {blood_request.id}")

    _notify_counterpart(
        donation,
        ROLE_DONOR,
        'Donation initiated',
        f"{donor_response.donor_name or user.display_name} started the donation for "
        f"{blood_request.patient_name}. Agree on an appointment time.",
        'initiate',
    )
    return ActionResult(
        donation=donation,
        message='Donation initiated successfully',
        next_steps=next_steps(donation, ROLE_DONOR),
        created=True,
    )


# ---------------------------
# Transitions on an existing donation
# ---------------------------
def schedule(donation, user, action):
    role = _require_role(
        donation, user, (ROLE_DONOR, ROLE_RECIPIENT),
        'Only the donor or recipient can schedule this donation',
    )
    _require_open(donation)
    if donation.donor_arrived:
        raise BusinessLogicError('The appointment cannot be changed after the donor has arrived')

    appointment_at = appointment_datetime(action.appointment_date, action.appointment_time)
    now = timezone.now()
    if appointment_at <= now:
        raise RequestValidationError('Appointment must be in the future')
    if appointment_at > now + timedelta(days=settings.APPOINTMENT_MAX_DAYS_AHEAD):
        raise RequestValidationError(
            f"Appointment cannot be more than {settings.APPOINTMENT_MAX_DAYS_AHEAD} days ahead"
        )

    donation.appointment_date = action.appointment_date
    donation.appointment_time = action.appointment_time
    donation.appointment_place = action.place
    if action.estimated_duration:
        donation.estimated_duration = action.estimated_duration
    donation.appointment_status = Donation.APPOINTMENT_CONFIRMED
    donation.overall_status = Donation.STATUS_SCHEDULED
    donation.save()

    donation.add_timeline_entry(
        'scheduling',
        'appointment_scheduled',
        role,
        action.notes or f"Appointment scheduled for {action.appointment_date} {action.appointment_time:%H:%M} at {action.place}",
        action.location,
    )
    _notify_counterpart(
        donation,
        role,
        'Appointment scheduled',
        f"Donation appointment set for {action.appointment_date} {action.appointment_time:%H:%M} at {action.place}.",
        'schedule',
    )
    return ActionResult(
        donation=donation,
        message='Appointment scheduled successfully',
        next_steps=next_steps(donation, role),
    )


def confirm_arrival(donation, user, action):
    _require_role(donation, user, (ROLE_DONOR,), 'Only the donor can confirm arrival')
    _require_open(donation)
    if donation.appointment_status != Donation.APPOINTMENT_CONFIRMED:
        raise BusinessLogicError('Appointment must be scheduled before confirming arrival')
    if donation.donor_arrived:
        raise ConflictError('Arrival has already been confirmed')

    donation.donor_arrived = True
    donation.donor_arrived_at = timezone.now()
    if action.location:
        donation.arrival_latitude = action.location['lat']
        donation.arrival_longitude = action.location['lng']
    donation.overall_status = Donation.STATUS_IN_PROGRESS
    donation.save()

    donation.add_timeline_entry(
        'arrival',
        'donor_arrived',
        ROLE_DONOR,
        action.notes or 'Donor arrived at hospital',
        action.location,
    )
    _notify_counterpart(
        donation, ROLE_DONOR, 'Donor arrived',
        f"The donor has arrived at {donation.hospital_name}.", 'confirm_arrival',
    )
    return ActionResult(
        donation=donation,
        message='Arrival confirmed',
        next_steps=next_steps(donation, ROLE_DONOR),
    )


def confirm_completion(donation, user, action):
    _require_role(donation, user, (ROLE_DONOR,), 'Only the donor can confirm completion')
    _require_open(donation)
    if not donation.donor_arrived:
        raise BusinessLogicError('Donor must confirm arrival first')
    if donation.donor_completed:
        raise ConflictError('Donation completion has already been confirmed')

    donation.donor_completed = True
    donation.donor_completed_at = timezone.now()
    donation.donor_notes = action.notes
    donation.overall_status = Donation.STATUS_DONOR_COMPLETED
    donation.save()

    donation.add_timeline_entry(
        'completion',
        'donor_completed',
        ROLE_DONOR,
        action.notes or 'Donation completed by donor',
        action.location,
        action.proof,
    )
    _notify_counterpart(
        donation, ROLE_DONOR, 'Donation completed',
        'The donor has completed the donation. Please confirm once the blood is received.',
        'confirm_completion',
    )
    return ActionResult(
        donation=donation,
        message='Donation completion confirmed',
        next_steps=next_steps(donation, ROLE_DONOR),
    )


def confirm_receipt(donation, user, action):
    _require_role(donation, user, (ROLE_RECIPIENT,), 'Only the recipient can confirm receipt')
    _require_open(donation)
    if not donation.donor_completed:
        raise BusinessLogicError('Donor must complete donation first')

    now = timezone.now()
    donation.recipient_received = True
    donation.recipient_received_at = now
    donation.recipient_notes = action.notes
    donation.overall_status = Donation.STATUS_COMPLETED
    donation.trust_score = min(TRUST_SCORE_MAX, donation.trust_score + TRUST_SCORE_COMPLETION_BONUS)
    donation.verification_level = Donation.VERIFICATION_VERIFIED
    donation.save()

    donation.add_timeline_entry(
        'receipt',
        'recipient_confirmed',
        ROLE_RECIPIENT,
        action.notes or 'Blood received successfully',
        action.location,
    )

    # Donor statistics
    donated_on = timezone.localdate(donation.donor_completed_at or now)
    DonorProfile.objects.filter(user_id=donation.donor_id).update(
        total_donations=F('total_donations') + 1,
        last_donation_date=donated_on,
    )

    MatchedDonorResponse.objects.filter(
        blood_request_id=donation.blood_request_id,
        donor_id=donation.donor_id,
    ).update(status=MatchedDonorResponse.STATUS_COMPLETED, completed_at=now)

    blood_request = BloodRequest.objects.select_for_update().get(id=donation.blood_request_id)
    blood_request.fulfilled_units += 1
    if blood_request.can_transition_to(BloodRequest.STATUS_FULFILLED):
        blood_request.transition_to(BloodRequest.STATUS_FULFILLED)
    else:
        logger.warning(
            f"Donation {donation.id} completed but request {blood_request.id} is {blood_request.status}"
        )
    blood_request.save(update_fields=['status', 'fulfilled_units', 'updated_at'])

    logger.info(f"Donation {donation.id} completed; request {blood_request.id} fulfilled")
    _notify_counterpart(
        donation, ROLE_RECIPIENT, 'Thank you for saving a life',
        'The recipient confirmed receiving your blood donation.', 'confirm_receipt',
    )
    return ActionResult(
        donation=donation,
        message='Donation process completed successfully! Thank you for saving a life.',
        extra={'completed': True},
    )


def dispute(donation, user, action):
    role = _require_role(
        donation, user, (ROLE_DONOR, ROLE_RECIPIENT),
        'You are not authorized to dispute this donation',
    )
    record = Dispute.objects.create(
        donation=donation,
        reported_by=user,
        reporter_role=role,
        reason=action.reason,
    )
    donation.add_timeline_entry(
        'dispute',
        'dispute_opened',
        role,
        f"Dispute opened: {action.reason}",
        action.location,
    )
    logger.warning(f"Dispute {record.id} opened on donation {donation.id} by {role}")
    _notify_counterpart(
        donation, role, 'Dispute opened',
        f"A dispute was opened on your donation: {action.reason}", 'dispute',
    )
    return ActionResult(
        donation=donation,
        message='Dispute created successfully. Admin team will investigate.',
        next_steps=next_steps(donation, role),
        extra={'dispute': record, 'support_contact': settings.SUPPORT_CONTACT},
    )


HANDLERS = {
    ScheduleAction: schedule,
    ConfirmArrivalAction: confirm_arrival,
    ConfirmCompletionAction: confirm_completion,
    ConfirmReceiptAction: confirm_receipt,
    DisputeAction: dispute,
}


def locate_donation(donation_id=None, request_id=None, lock=False):
    queryset = Donation.objects.select_related('donor', 'recipient')
    if lock:
        queryset = queryset.select_for_update(of=('self',))
    if donation_id is not None:
        donation = queryset.filter(id=donation_id).first()
    else:
        donation = queryset.filter(blood_request_id=request_id).first()
    if donation is None:
        raise NotFoundError('Donation not found')
    return donation


def perform_action(user, action):
    """
    Run one donation action for the calling user.

    Raises a BloodConnectError subclass on any guard failure; in that case
    nothing has been written.
    """
    with transaction.atomic():
        if isinstance(action, InitiateAction):
            return initiate(user, action)

        handler = HANDLERS[type(action)]
        donation = locate_donation(action.donation_id, action.request_id, lock=True)
        result = handler(donation, user, action)

    logger.info(f"Donation {result.donation.id}: {action_name(action)} by user {user.pk}")
    return result


# ---------------------------
# Status
# ---------------------------
def permissions_for(donation, role):
    permissions = {
        'can_schedule': False,
        'can_confirm_arrival': False,
        'can_confirm_completion': False,
        'can_confirm_receipt': False,
        'can_dispute': role is not None,
    }
    if donation.is_completed or role is None:
        return permissions

    if role == ROLE_DONOR:
        permissions['can_schedule'] = not donation.donor_arrived
        permissions['can_confirm_arrival'] = (
            donation.appointment_status == Donation.APPOINTMENT_CONFIRMED and not donation.donor_arrived
        )
        permissions['can_confirm_completion'] = donation.donor_arrived and not donation.donor_completed
    else:
        permissions['can_schedule'] = not donation.donor_arrived
        permissions['can_confirm_receipt'] = donation.donor_completed
    return permissions


def get_donation_status(user, request_id=None, donation_id=None):
    """
    Donation state as seen by the caller. Before a donation exists (lookup
    by request), returns ``donation=None`` with the caller's role and
    whether they may initiate.
    """
    if donation_id is None and request_id is None:
        raise RequestValidationError('donation_id or request_id is required')

    if donation_id is None:
        blood_request = get_blood_request(request_id)
        donation = blood_request.donations.select_related('donor', 'recipient').first()
        if donation is None:
            accepted = blood_request.responses.filter(
                donor=user, status=MatchedDonorResponse.STATUS_ACCEPTED
            ).exists()
            if blood_request.requester_id == user.pk:
                role = ROLE_RECIPIENT
            elif accepted:
                role = ROLE_DONOR
            else:
                role = None
            return {
                'donation': None,
                'user_role': role,
                'can_initiate': accepted and blood_request.is_active,
            }
    else:
        donation = locate_donation(donation_id=donation_id)

    role = donation.role_of(user)
    if role is None:
        raise AuthorizationError('You are not part of this donation')

    return {
        'donation': donation,
        'user_role': role,
        'can_initiate': False,
        'permissions': permissions_for(donation, role),
        'timeline': list(donation.timeline.all()),
        'disputes': list(donation.disputes.all()),
        'trust_score': donation.trust_score,
        'next_steps': next_steps(donation, role),
    }
