from unittest import mock

from django.test import TestCase

from donors.tests.factories import make_donor, make_request, make_user
from notifications.backends import push, sms
from notifications.backends.push import LocmemPushBackend
from notifications.backends.sms import LocmemSMSBackend
from notifications.dispatcher import (
    NotificationDispatcher,
    blood_request_sms,
    notify_user,
    should_notify_user,
)
from notifications.models import Notification
from notifications.tests.backends import FlakySMSBackend, SlowSMSBackend


class DispatcherTestCase(TestCase):

    def setUp(self):
        sms.outbox.clear()
        push.outbox.clear()
        self.requester = make_user('requester', first_name='Ram', last_name='Thapa')
        self.blood_request = make_request(
            self.requester,
            patient_blood_type='B+',
            urgency_level='critical',
            requester_name='Ram Thapa',
        )

    def make_donors(self, count, **kwargs):
        return [
            make_donor(f'donor{i}', blood_type='O+', phone=f'980000000{i}', **kwargs)
            for i in range(1, count + 1)
        ]


class ChannelIntentTests(DispatcherTestCase):

    def test_opted_in_donor_gets_every_channel(self):
        donor = self.make_donors(1)[0]
        self.assertEqual(
            should_notify_user(donor, self.blood_request),
            {'sms': True, 'push': True, 'in_app': True},
        )

    def test_sms_opt_out_still_gets_in_app(self):
        donor = self.make_donors(1, notify_sms=False, notify_push=False)[0]
        self.assertEqual(
            should_notify_user(donor, self.blood_request),
            {'sms': False, 'push': False, 'in_app': True},
        )

    def test_unsubscribed_urgency_gets_nothing(self):
        donor = self.make_donors(1, urgency_levels=['standard'])[0]
        self.assertEqual(
            should_notify_user(donor, self.blood_request),
            {'sms': False, 'push': False, 'in_app': False},
        )

    def test_sms_text_names_the_request(self):
        body = blood_request_sms(self.blood_request)
        self.assertIn('CRITICAL', body)
        self.assertIn('B+', body)
        self.assertIn('Bir Hospital', body)
        self.assertIn('Ram Thapa', body)
        self.assertIn('Sita Sharma', body)
        self.assertIn('Direct contact: 9800000000', body)

    def test_sms_text_without_requester_phone(self):
        self.blood_request.requester_phone = ''
        self.assertNotIn('Direct contact', blood_request_sms(self.blood_request))


class NotificationDispatcherTests(DispatcherTestCase):

    def test_every_donor_gets_sms_push_and_in_app(self):
        donors = self.make_donors(3)
        with NotificationDispatcher(LocmemSMSBackend(), LocmemPushBackend()) as dispatcher:
            outcomes = dispatcher.notify(self.blood_request, donors)

        self.assertEqual([o.donor_id for o in outcomes], [d.id for d in donors])
        self.assertTrue(all(o.sms and o.push and o.in_app for o in outcomes))
        self.assertEqual(sorted(m['to'] for m in sms.outbox), ['9800000001', '9800000002', '9800000003'])
        self.assertTrue(all(m['priority'] for m in sms.outbox))
        self.assertEqual(len(push.outbox), 3)

        notification = Notification.objects.get(user=donors[0].user)
        self.assertEqual(notification.type, Notification.TYPE_BLOOD_REQUEST)
        self.assertTrue(notification.urgent)
        self.assertFalse(notification.read)
        self.assertEqual(notification.data['request_id'], self.blood_request.id)
        self.assertEqual(notification.data['blood_type'], 'B+')
        self.assertEqual(notification.data['urgency'], 'critical')

    def test_only_critical_requests_are_flagged_urgent(self):
        self.blood_request.urgency_level = 'urgent'
        self.blood_request.save()
        donors = self.make_donors(1)
        with NotificationDispatcher(LocmemSMSBackend(), LocmemPushBackend()) as dispatcher:
            dispatcher.notify(self.blood_request, donors)

        self.assertFalse(Notification.objects.get(user=donors[0].user).urgent)
        self.assertFalse(push.outbox[0]['urgent'])
        self.assertFalse(sms.outbox[0]['priority'])

    def test_one_failing_sms_does_not_block_the_others(self):
        donors = self.make_donors(5)
        with NotificationDispatcher(FlakySMSBackend(), LocmemPushBackend(), batch_size=10) as dispatcher:
            outcomes = dispatcher.notify(self.blood_request, donors)

        self.assertEqual([o.sms for o in outcomes], [True, True, False, True, True])
        self.assertTrue(all(o.in_app for o in outcomes))
        self.assertTrue(all(o.push for o in outcomes))
        self.assertEqual(len(sms.outbox), 4)
        self.assertEqual(Notification.objects.count(), 5)

    def test_batches_cap_concurrent_sends(self):
        donors = self.make_donors(7, notify_push=False)
        backend = SlowSMSBackend()
        with NotificationDispatcher(backend, LocmemPushBackend(), batch_size=3) as dispatcher:
            outcomes = dispatcher.notify(self.blood_request, donors)

        self.assertEqual(len(outcomes), 7)
        self.assertEqual(len(backend.calls), 7)
        self.assertLessEqual(backend.peak, 3)
        self.assertIsNone(outcomes[0].push)

    def test_donor_without_phone_records_failed_sms(self):
        donor = make_donor('nophone', blood_type='O+', phone='')
        donor.user.phone_number = ''
        donor.user.save()
        with NotificationDispatcher(LocmemSMSBackend(), LocmemPushBackend()) as dispatcher:
            outcome = dispatcher.notify(self.blood_request, [donor])[0]
        self.assertIs(outcome.sms, False)
        self.assertTrue(outcome.in_app)
        self.assertEqual(sms.outbox, [])

    def test_in_app_storage_failure_is_recorded_not_raised(self):
        donors = self.make_donors(2)
        with mock.patch.object(Notification.objects, 'create', side_effect=RuntimeError('disk full')):
            with NotificationDispatcher(LocmemSMSBackend(), LocmemPushBackend()) as dispatcher:
                outcomes = dispatcher.notify(self.blood_request, donors)

        self.assertEqual([o.in_app for o in outcomes], [False, False])
        self.assertEqual([o.sms for o in outcomes], [True, True])

    def test_close_is_idempotent(self):
        dispatcher = NotificationDispatcher(LocmemSMSBackend(), LocmemPushBackend())
        dispatcher.open()
        dispatcher.close()
        dispatcher.close()


class NotifyUserTests(TestCase):

    def test_creates_notification(self):
        user = make_user('someone')
        notification = notify_user(user, 'Hello', 'A message', data={'x': 1})
        self.assertEqual(notification.user, user)
        self.assertEqual(notification.type, Notification.TYPE_GENERAL)
        self.assertEqual(notification.data, {'x': 1})
