from datetime import date, datetime, timedelta
from unittest import mock

from django.test import TestCase, override_settings
from django.utils import timezone

from bloodconnect.exceptions import (
    AuthorizationError,
    BusinessLogicError,
    ConflictError,
    NotFoundError,
    RequestValidationError,
)
from bloodrequests.models import BloodRequest, MatchedDonorResponse
from donations.actions import (
    ConfirmArrivalAction,
    ConfirmCompletionAction,
    ConfirmReceiptAction,
    DisputeAction,
    InitiateAction,
    ScheduleAction,
    parse_action,
)
from donations.models import Dispute, Donation, TimelineEntry, appointment_datetime
from donations.workflow import get_donation_status, perform_action
from donors.models import DonorProfile
from donors.tests.factories import accept, make_donor, make_request, make_user
from notifications.models import Notification


def tomorrow_at(hour=10):
    moment = timezone.localtime() + timedelta(days=1)
    return moment.date(), moment.replace(hour=hour, minute=30, second=0, microsecond=0).time()


class DonationTestCase(TestCase):

    def setUp(self):
        self.recipient = make_user('recipient')
        self.blood_request = make_request(self.recipient, patient_blood_type='A+')
        self.donor = make_donor('donor', blood_type='O+')
        self.response = accept(self.blood_request, self.donor)
        self.stranger = make_user('stranger')

    def initiate(self, user=None):
        return perform_action(user or self.donor.user, InitiateAction(request_id=self.blood_request.id))

    def schedule(self, user=None, **kwargs):
        day, at = tomorrow_at()
        fields = {'appointment_date': day, 'appointment_time': at, 'place': 'Blood bank, 2nd floor'}
        fields.update(kwargs)
        return perform_action(
            user or self.donor.user,
            ScheduleAction(request_id=self.blood_request.id, **fields),
        )

    def arrive(self, user=None):
        return perform_action(
            user or self.donor.user,
            ConfirmArrivalAction(request_id=self.blood_request.id, location={'lat': 27.7, 'lng': 85.3}),
        )

    def complete(self, user=None):
        return perform_action(
            user or self.donor.user,
            ConfirmCompletionAction(request_id=self.blood_request.id, notes='450 ml'),
        )

    def receive(self, user=None):
        return perform_action(
            user or self.recipient,
            ConfirmReceiptAction(request_id=self.blood_request.id, notes='Received, thank you'),
        )

    def donation(self):
        return Donation.objects.get(blood_request=self.blood_request)


class InitiateTests(DonationTestCase):

    def test_initiate_creates_donation_with_timeline(self):
        result = self.initiate()
        donation = result.donation

        self.assertTrue(result.created)
        self.assertEqual(donation.overall_status, Donation.STATUS_INITIATED)
        self.assertEqual(donation.donor, self.donor.user)
        self.assertEqual(donation.recipient, self.recipient)
        self.assertEqual(donation.hospital_name, 'Bir Hospital')
        self.assertEqual(donation.blood_type, 'O+')
        self.assertEqual(result.next_steps[0], 'Schedule appointment with recipient')

        entry = donation.timeline.get()
        self.assertEqual((entry.sequence, entry.stage, entry.status, entry.actor),
                         (1, 'initiation', 'donation_initiated', 'donor'))

    def test_must_accept_before_initiating(self):
        self.response.status = MatchedDonorResponse.STATUS_DECLINED
        self.response.save()
        with self.assertRaises(BusinessLogicError) as ctx:
            self.initiate()
        self.assertEqual(str(ctx.exception.detail), 'You must accept to help before initiating donation')

        with self.assertRaises(BusinessLogicError):
            self.initiate(self.stranger)

    def test_duplicate_initiation_is_a_conflict(self):
        self.initiate()
        with self.assertRaises(ConflictError):
            self.initiate()

        second = make_donor('second', blood_type='O-')
        accept(self.blood_request, second)
        with self.assertRaises(ConflictError):
            self.initiate(second.user)

        self.assertEqual(Donation.objects.filter(blood_request=self.blood_request).count(), 1)

    def test_unique_index_rejects_a_race_past_the_duplicate_check(self):
        self.initiate()
        second = make_donor('second', blood_type='O-')
        accept(self.blood_request, second)

        # both read-side checks miss the existing donation, as in a concurrent initiate
        no_match = mock.Mock()
        no_match.exists.return_value = False
        with mock.patch.object(Donation.objects, 'filter', return_value=no_match):
            with self.assertRaises(ConflictError):
                self.initiate(second.user)

        self.assertEqual(Donation.objects.filter(blood_request=self.blood_request).count(), 1)
        self.assertEqual(Donation.objects.get(blood_request=self.blood_request).donor, self.donor.user)

    def test_request_must_be_active(self):
        self.blood_request.status = BloodRequest.STATUS_CANCELLED
        self.blood_request.save()
        with self.assertRaises(BusinessLogicError):
            self.initiate()
        self.assertFalse(Donation.objects.exists())

    def test_unknown_request(self):
        with self.assertRaises(NotFoundError):
            perform_action(self.donor.user, InitiateAction(request_id=987654))

    def test_recipient_is_notified_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.initiate()
        notification = Notification.objects.get(user=self.recipient)
        self.assertEqual(notification.type, Notification.TYPE_DONATION_UPDATE)
        self.assertEqual(notification.data['action'], 'initiate')


class ScheduleTests(DonationTestCase):

    def setUp(self):
        super().setUp()
        self.initiate()

    def test_donor_or_recipient_can_schedule(self):
        result = self.schedule(estimated_duration=45)
        donation = result.donation
        self.assertEqual(donation.overall_status, Donation.STATUS_SCHEDULED)
        self.assertEqual(donation.appointment_status, Donation.APPOINTMENT_CONFIRMED)
        self.assertEqual(donation.appointment_place, 'Blood bank, 2nd floor')
        self.assertEqual(donation.estimated_duration, 45)
        day, at = tomorrow_at()
        self.assertEqual(donation.appointment_at, appointment_datetime(day, at))
        self.assertGreater(donation.appointment_at, timezone.now())

        self.schedule(self.recipient, place='Ward 3')
        self.assertEqual(self.donation().appointment_place, 'Ward 3')

    def test_stranger_cannot_schedule(self):
        with self.assertRaises(AuthorizationError):
            self.schedule(self.stranger)

    def test_appointment_must_be_future_and_within_window(self):
        past = timezone.localtime() - timedelta(hours=1)
        with self.assertRaises(RequestValidationError):
            self.schedule(appointment_date=past.date(), appointment_time=past.time())

        far = timezone.localtime() + timedelta(days=31)
        with self.assertRaises(RequestValidationError):
            self.schedule(appointment_date=far.date(), appointment_time=far.time())

        self.assertEqual(self.donation().overall_status, Donation.STATUS_INITIATED)
        self.assertEqual(self.donation().timeline.count(), 1)

    @override_settings(APPOINTMENT_MAX_DAYS_AHEAD=3)
    def test_window_comes_from_settings(self):
        later = timezone.localtime() + timedelta(days=5)
        with self.assertRaises(RequestValidationError):
            self.schedule(appointment_date=later.date(), appointment_time=later.time())


class LifecycleTests(DonationTestCase):

    def setUp(self):
        super().setUp()
        self.initiate()

    def test_full_lifecycle(self):
        self.schedule()
        result = self.arrive()
        self.assertEqual(result.donation.overall_status, Donation.STATUS_IN_PROGRESS)
        self.assertTrue(result.donation.donor_arrived)
        self.assertEqual(result.donation.arrival_latitude, 27.7)

        result = self.complete()
        self.assertEqual(result.donation.overall_status, Donation.STATUS_DONOR_COMPLETED)
        self.assertTrue(result.donation.donor_completed)
        self.assertEqual(result.donation.donor_notes, '450 ml')

        result = self.receive()
        donation = result.donation
        self.assertEqual(donation.overall_status, Donation.STATUS_COMPLETED)
        self.assertTrue(donation.recipient_received)
        self.assertEqual(donation.trust_score, 70)
        self.assertEqual(donation.verification_level, Donation.VERIFICATION_VERIFIED)
        self.assertTrue(result.extra['completed'])

        self.blood_request.refresh_from_db()
        self.assertEqual(self.blood_request.status, BloodRequest.STATUS_FULFILLED)
        self.assertEqual(self.blood_request.fulfilled_units, 1)

        self.response.refresh_from_db()
        self.assertEqual(self.response.status, MatchedDonorResponse.STATUS_COMPLETED)

        profile = DonorProfile.objects.get(id=self.donor.id)
        self.assertEqual(profile.total_donations, 1)
        self.assertEqual(profile.last_donation_date, timezone.localdate(donation.donor_completed_at))

        stages = list(donation.timeline.values_list('sequence', 'stage'))
        self.assertEqual(stages, [
            (1, 'initiation'),
            (2, 'scheduling'),
            (3, 'arrival'),
            (4, 'completion'),
            (5, 'receipt'),
        ])

    def test_receipt_before_completion_is_rejected(self):
        self.schedule()
        self.arrive()
        with self.assertRaises(BusinessLogicError):
            self.receive()

        donation = self.donation()
        self.assertFalse(donation.recipient_received)
        self.assertIsNone(donation.recipient_received_at)
        self.assertEqual(donation.overall_status, Donation.STATUS_IN_PROGRESS)

    def test_only_donor_confirms_arrival(self):
        self.schedule()
        with self.assertRaises(AuthorizationError):
            self.arrive(self.recipient)
        self.assertFalse(self.donation().donor_arrived)

    def test_arrival_needs_confirmed_appointment(self):
        with self.assertRaises(BusinessLogicError):
            self.arrive()

    def test_completion_needs_arrival_and_donor(self):
        self.schedule()
        with self.assertRaises(BusinessLogicError):
            self.complete()
        self.arrive()
        with self.assertRaises(AuthorizationError):
            self.complete(self.recipient)

    def test_only_recipient_confirms_receipt(self):
        self.schedule()
        self.arrive()
        self.complete()
        with self.assertRaises(AuthorizationError):
            self.receive(self.donor.user)

    def test_completed_donation_cannot_change(self):
        self.schedule()
        self.arrive()
        self.complete()
        self.receive()
        with self.assertRaises(ConflictError):
            self.receive()
        with self.assertRaises(ConflictError):
            self.schedule(self.recipient)

    def test_repeat_confirmations_are_conflicts(self):
        self.schedule()
        self.arrive()
        with self.assertRaises(ConflictError):
            self.arrive()
        self.complete()
        with self.assertRaises(ConflictError):
            self.complete()

    def test_no_rescheduling_after_arrival(self):
        self.schedule()
        self.arrive()
        with self.assertRaises(BusinessLogicError):
            self.schedule()

    def test_lookup_by_donation_id(self):
        donation = self.donation()
        result = perform_action(
            self.donor.user,
            DisputeAction(donation_id=donation.id, reason='Recipient unreachable'),
        )
        self.assertEqual(result.donation.id, donation.id)

    def test_unknown_donation(self):
        with self.assertRaises(NotFoundError):
            perform_action(self.donor.user, ConfirmArrivalAction(donation_id=55555))


class DisputeTests(DonationTestCase):

    def setUp(self):
        super().setUp()
        self.initiate()

    def test_dispute_is_an_annotation(self):
        result = perform_action(
            self.recipient,
            DisputeAction(request_id=self.blood_request.id, reason='Donor did not show up'),
        )
        dispute = result.extra['dispute']
        self.assertEqual(dispute.status, Dispute.STATUS_OPEN)
        self.assertEqual(dispute.reporter_role, 'recipient')
        self.assertIn('support_contact', result.extra)

        donation = self.donation()
        self.assertEqual(donation.overall_status, Donation.STATUS_INITIATED)
        last = donation.timeline.last()
        self.assertEqual((last.stage, last.status), ('dispute', 'dispute_opened'))

    def test_outsider_cannot_dispute(self):
        with self.assertRaises(AuthorizationError):
            perform_action(self.stranger, DisputeAction(request_id=self.blood_request.id, reason='x'))
        self.assertFalse(Dispute.objects.exists())


class ParseActionTests(TestCase):

    def test_parses_schedule_payload(self):
        action = parse_action({
            'action': 'schedule',
            'donation_id': '7',
            'appointment_date': '2030-01-05',
            'appointment_time': '14:30',
            'place': 'Ward 3',
            'location': {'lat': 27.7, 'lng': 85.3},
        })
        self.assertIsInstance(action, ScheduleAction)
        self.assertEqual(action.donation_id, 7)
        self.assertEqual(action.appointment_date, date(2030, 1, 5))
        self.assertEqual(action.appointment_time, datetime(2030, 1, 5, 14, 30).time())
        self.assertEqual(action.location, {'lat': 27.7, 'lng': 85.3})

    def test_rejects_bad_payloads(self):
        bad = [
            {'action': 'teleport', 'request_id': 1},
            {'action': 'initiate'},
            {'action': 'initiate', 'request_id': 'abc'},
            {'action': 'confirm_arrival'},
            {'action': 'schedule', 'donation_id': 1, 'appointment_date': '2030-01-05'},
            {'action': 'schedule', 'donation_id': 1, 'appointment_date': 'soon',
             'appointment_time': '10:00', 'place': 'x'},
            {'action': 'dispute', 'donation_id': 1},
            {'action': 'confirm_arrival', 'donation_id': 1, 'location': {'lat': 200, 'lng': 0}},
        ]
        for payload in bad:
            with self.assertRaises(RequestValidationError, msg=str(payload)):
                parse_action(payload)


class DonationStatusTests(DonationTestCase):

    def test_before_initiation(self):
        state = get_donation_status(self.donor.user, request_id=self.blood_request.id)
        self.assertIsNone(state['donation'])
        self.assertEqual(state['user_role'], 'donor')
        self.assertTrue(state['can_initiate'])

        state = get_donation_status(self.recipient, request_id=self.blood_request.id)
        self.assertEqual(state['user_role'], 'recipient')
        self.assertFalse(state['can_initiate'])

        state = get_donation_status(self.stranger, request_id=self.blood_request.id)
        self.assertIsNone(state['user_role'])
        self.assertFalse(state['can_initiate'])

    def test_permissions_follow_the_lifecycle(self):
        self.initiate()
        self.schedule()

        donor_state = get_donation_status(self.donor.user, request_id=self.blood_request.id)
        self.assertEqual(donor_state['user_role'], 'donor')
        self.assertTrue(donor_state['permissions']['can_confirm_arrival'])
        self.assertFalse(donor_state['permissions']['can_confirm_completion'])
        self.assertFalse(donor_state['permissions']['can_confirm_receipt'])
        self.assertEqual(len(donor_state['timeline']), 2)
        self.assertEqual(donor_state['trust_score'], 50)

        self.arrive()
        self.complete()
        recipient_state = get_donation_status(self.recipient, donation_id=self.donation().id)
        self.assertTrue(recipient_state['permissions']['can_confirm_receipt'])
        self.assertTrue(recipient_state['permissions']['can_dispute'])
        self.assertFalse(recipient_state['permissions']['can_confirm_arrival'])

    def test_outsider_cannot_view(self):
        self.initiate()
        with self.assertRaises(AuthorizationError):
            get_donation_status(self.stranger, request_id=self.blood_request.id)

    def test_needs_an_id(self):
        with self.assertRaises(RequestValidationError):
            get_donation_status(self.donor.user)


class TimelineTests(DonationTestCase):

    def test_sequence_is_strictly_increasing(self):
        donation = self.initiate().donation
        for i in range(3):
            donation.add_timeline_entry('note', f'n{i}', 'system')
        self.assertEqual(
            list(TimelineEntry.objects.filter(donation=donation).values_list('sequence', flat=True)),
            [1, 2, 3, 4],
        )
