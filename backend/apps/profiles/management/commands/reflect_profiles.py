"""
Django management command to run profile reflection outside Celery
"""
from django.core.management.base import BaseCommand, CommandError

from apps.profiles.models import UserProfile
from apps.profiles.reflection import check_eligibility, run_batch_reflection, run_reflection


class Command(BaseCommand):
    help = 'Run reflection for eligible profiles, or for one profile by id'

    def add_arguments(self, parser):
        parser.add_argument('--profile', type=str, help='Reflect a single profile by id')
        parser.add_argument('--limit', type=int, default=None, help='Maximum profiles in a sweep')
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Only report which profiles are eligible',
        )

    def handle(self, *args, **options):
        if options['profile']:
            return self._reflect_one(options['profile'], options['dry_run'])

        if options['dry_run']:
            eligible = 0
            for profile in UserProfile.objects.exclude(privacy_tier='A').iterator():
                eligibility = check_eligibility(profile)
                if eligibility.should_run:
                    eligible += 1
                    self.stdout.write(f'  {profile.id}: {eligibility.reason}')
            self.stdout.write(self.style.SUCCESS(f'{eligible} profile(s) eligible'))
            return

        stats = run_batch_reflection(limit=options['limit'])
        self.stdout.write(self.style.SUCCESS(
            f"Processed {stats['processed']}: {stats['succeeded']} succeeded, "
            f"{stats['failed']} failed, {stats['skipped']} skipped"
        ))

    def _reflect_one(self, profile_id, dry_run):
        profile = UserProfile.objects.filter(pk=profile_id).first()
        if profile is None:
            raise CommandError(f'Profile {profile_id} not found')

        eligibility = check_eligibility(profile)
        self.stdout.write(f'Eligibility: {eligibility.state.value} ({eligibility.reason})')
        if dry_run:
            return

        result = run_reflection(profile.pk)
        if not result.success:
            raise CommandError('; '.join(result.errors) or 'Reflection failed')
        self.stdout.write(self.style.SUCCESS(
            f'Processed {result.signals_processed} signals, updated {result.dimensions_updated} dimensions'
        ))
