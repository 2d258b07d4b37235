# bloodrequests/management/commands/expire_blood_requests.py
"""
Mark active blood requests whose deadline has passed as expired.

USAGE:
    python manage.py expire_blood_requests
    python manage.py expire_blood_requests --dry-run
"""
from django.core.management.base import BaseCommand
from django.utils import timezone

from bloodrequests.models import BloodRequest
from bloodrequests.services import expire_overdue_requests


class Command(BaseCommand):
    help = 'Expire active blood requests that are past their deadline'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Only report how many requests would be expired'
        )

    def handle(self, *args, **options):
        if options['dry_run']:
            overdue = BloodRequest.objects.filter(
                status=BloodRequest.STATUS_ACTIVE,
                deadline__lt=timezone.now(),
            ).count()
            self.stdout.write(f'{overdue} blood requests are overdue')
            return

        count = expire_overdue_requests()
        self.stdout.write(self.style.SUCCESS(f'Expired {count} blood requests'))
