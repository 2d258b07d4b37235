"""
Donation actions, one dataclass per action with its own payload.

``parse_action`` turns a request body such as
``{"action": "schedule", "donation_id": 4, "appointment_date": ...}``
into the matching variant; payload problems raise RequestValidationError.
"""
from dataclasses import dataclass
from datetime import date, time
from typing import Optional

from django.utils.dateparse import parse_date, parse_time

from algorithms.haversine import valid_coordinates
from bloodconnect.exceptions import RequestValidationError


@dataclass
class DonationAction:
    donation_id: Optional[int] = None
    request_id: Optional[int] = None
    notes: str = ''
    location: Optional[dict] = None

    @classmethod
    def parse_fields(cls, payload):
        """Action-specific fields; override in variants that have any"""
        return {}


@dataclass
class InitiateAction(DonationAction):
    hospital_name: str = ''
    hospital_address: str = ''
    hospital_contact: str = ''
    hospital_department: str = ''

    @classmethod
    def parse_fields(cls, payload):
        return {
            'hospital_name': _text(payload, 'hospital_name'),
            'hospital_address': _text(payload, 'hospital_address'),
            'hospital_contact': _text(payload, 'hospital_contact'),
            'hospital_department': _text(payload, 'hospital_department'),
        }


@dataclass
class ScheduleAction(DonationAction):
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    place: str = ''
    estimated_duration: Optional[int] = None

    @classmethod
    def parse_fields(cls, payload):
        raw_date = payload.get('appointment_date')
        raw_time = payload.get('appointment_time')
        place = _text(payload, 'place')
        if not raw_date or not raw_time or not place:
            raise RequestValidationError('Appointment date, time, and place are required')

        try:
            appointment_date = parse_date(str(raw_date))
            appointment_time = parse_time(str(raw_time))
        except ValueError:
            appointment_date = appointment_time = None
        if appointment_date is None or appointment_time is None:
            raise RequestValidationError('Invalid appointment date or time (use YYYY-MM-DD and HH:MM)')

        duration = payload.get('estimated_duration')
        if duration not in (None, ''):
            try:
                duration = int(duration)
            except (TypeError, ValueError):
                raise RequestValidationError('Estimated duration must be a number of minutes')
            if duration < 1:
                raise RequestValidationError('Estimated duration must be a number of minutes')
        else:
            duration = None

        return {
            'appointment_date': appointment_date,
            'appointment_time': appointment_time,
            'place': place,
            'estimated_duration': duration,
        }


@dataclass
class ConfirmArrivalAction(DonationAction):
    pass


@dataclass
class ConfirmCompletionAction(DonationAction):
    proof: str = ''

    @classmethod
    def parse_fields(cls, payload):
        return {'proof': _text(payload, 'proof')}


@dataclass
class ConfirmReceiptAction(DonationAction):
    pass


@dataclass
class DisputeAction(DonationAction):
    reason: str = ''

    @classmethod
    def parse_fields(cls, payload):
        reason = _text(payload, 'reason')
        if not reason:
            raise RequestValidationError('A reason is required to open a dispute')
        return {'reason': reason}


ACTIONS = {
    'initiate': InitiateAction,
    'schedule': ScheduleAction,
    'confirm_arrival': ConfirmArrivalAction,
    'confirm_completion': ConfirmCompletionAction,
    'confirm_receipt': ConfirmReceiptAction,
    'dispute': DisputeAction,
}

ACTION_NAMES = {action_class: name for name, action_class in ACTIONS.items()}


def _text(payload, key):
    value = payload.get(key)
    if value is None:
        return ''
    return str(value).strip()


def _optional_id(payload, key, label):
    value = payload.get(key)
    if value in (None, ''):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise RequestValidationError(f"Invalid {label} format")
    if parsed < 1:
        raise RequestValidationError(f"Invalid {label} format")
    return parsed


def _location(payload):
    location = payload.get('location')
    if not location:
        return None
    if not isinstance(location, dict):
        raise RequestValidationError('Location must be an object with lat and lng')
    lat, lng = location.get('lat'), location.get('lng')
    if not valid_coordinates(lat, lng):
        raise RequestValidationError('Location must have a valid lat and lng')
    return {'lat': float(lat), 'lng': float(lng)}


def parse_action(payload):
    """Build the action variant named by payload['action']"""
    name = payload.get('action')
    action_class = ACTIONS.get(name)
    if action_class is None:
        raise RequestValidationError(
            f"Invalid action. Expected one of: {', '.join(ACTIONS)}"
        )

    donation_id = _optional_id(payload, 'donation_id', 'donation ID')
    request_id = _optional_id(payload, 'request_id', 'request ID')
    if action_class is InitiateAction:
        if request_id is None:
            raise RequestValidationError('request_id is required to initiate a donation')
    elif donation_id is None and request_id is None:
        raise RequestValidationError('donation_id or request_id is required')

    return action_class(
        donation_id=donation_id,
        request_id=request_id,
        notes=_text(payload, 'notes'),
        location=_location(payload),
        **action_class.parse_fields(payload)
    )


def action_name(action):
    return ACTION_NAMES[type(action)]
