"""
Management command to generate the next instance of concluded recurring runs.

This command should be run periodically (e.g., hourly via cron) so every
recurring run always has its upcoming occurrence materialized.
"""

from django.core.management.base import BaseCommand
from runs import services


class Command(BaseCommand):
    help = 'Generate the next instance of every concluded recurring run'

    def handle(self, *args, **options):
        self.stdout.write('Processing concluded recurring runs...')

        summary = services.project_recurring_runs()

        self.stdout.write(
            f'Processed {summary.templates_processed} recurring run(s): '
            f'{summary.duplicates} already had their next instance, '
            f'{summary.concluded} series concluded'
        )
        if summary.failed:
            self.stderr.write(
                self.style.WARNING(
                    f'{len(summary.failed)} recurring run(s) failed: '
                    f'{", ".join(str(pk) for pk in summary.failed)}'
                )
            )

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully generated {summary.created} new instance(s)'
            )
        )
