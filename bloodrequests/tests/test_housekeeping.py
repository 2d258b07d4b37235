from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from bloodrequests.models import BloodRequest
from bloodrequests.tasks import expire_overdue_requests
from donors.tests.factories import make_request, make_user


class ExpireCommandTests(TestCase):

    def setUp(self):
        requester = make_user('requester')
        self.overdue = make_request(requester, deadline=timezone.now() - timedelta(hours=2))
        self.current = make_request(requester)

    def test_dry_run_changes_nothing(self):
        out = StringIO()
        call_command('expire_blood_requests', '--dry-run', stdout=out)
        self.assertIn('1 blood requests are overdue', out.getvalue())
        self.overdue.refresh_from_db()
        self.assertEqual(self.overdue.status, BloodRequest.STATUS_ACTIVE)

    def test_command_expires_overdue(self):
        out = StringIO()
        call_command('expire_blood_requests', stdout=out)
        self.assertIn('Expired 1 blood requests', out.getvalue())
        self.overdue.refresh_from_db()
        self.current.refresh_from_db()
        self.assertEqual(self.overdue.status, BloodRequest.STATUS_EXPIRED)
        self.assertEqual(self.current.status, BloodRequest.STATUS_ACTIVE)

    def test_beat_task(self):
        self.assertEqual(expire_overdue_requests(), 'Expired 1 blood requests')
