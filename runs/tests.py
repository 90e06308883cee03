"""
Tests for the run scheduling system.

Tests cover:
- Occurrence date arithmetic
- CityRun model validation and duplicate-detection keys
- CityRun manager (due template selection)
- Duplicate-avoidance check
- Recurring-run generator (idempotence, boundaries, failure isolation)
- Template, approval and ingestion services
- API endpoints
- Management commands
- Admin actions
"""

from datetime import date, datetime, timedelta, timezone as dt_timezone
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, OperationalError, transaction
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from . import services
from .models import CityRun, RunClub
from .types import (
    DAYS_OF_WEEK,
    RUN_TYPE_INSTANCE,
    RUN_TYPE_RECURRING,
    RUN_TYPE_SINGLE_EVENT,
    WORKFLOW_APPROVED,
    WORKFLOW_PENDING,
    WORKFLOW_SUBMITTED,
)


def utc(*args):
    return datetime(*args, tzinfo=dt_timezone.utc)


def make_template(**kwargs):
    """Create a Tuesday 6:00 PM recurring run unless told otherwise."""
    fields = {
        'title': 'Tuesday Track Night',
        'run_type': RUN_TYPE_RECURRING,
        'day_of_week': 'Tuesday',
        'start_time_hour': 6,
        'start_time_minute': 0,
        'start_time_period': 'PM',
        'timezone': 'America/New_York',
        'meet_up_point': 'Boathouse',
        'meet_up_city': 'Arlington',
        'meet_up_state': 'VA',
    }
    fields.update(kwargs)
    return CityRun.objects.create(**fields)


class OccurrenceDateTests(SimpleTestCase):
    """Test next occurrence date computation."""

    def test_same_weekday_floor_advances_a_full_week(self):
        """A Tuesday floor never re-emits the same Tuesday."""
        self.assertEqual(
            services.next_occurrence_date('Tuesday', date(2024, 1, 2)),
            date(2024, 1, 9)
        )

    def test_first_projection_accepts_floor(self):
        """On the first projection the floor itself may be the occurrence."""
        self.assertEqual(
            services.next_occurrence_date('Tuesday', date(2024, 1, 2), first_projection=True),
            date(2024, 1, 2)
        )

    def test_advances_to_next_matching_weekday(self):
        """A Wednesday floor moves to the following Tuesday."""
        self.assertEqual(
            services.next_occurrence_date('Tuesday', date(2024, 1, 10)),
            date(2024, 1, 16)
        )
        self.assertEqual(
            services.next_occurrence_date('Tuesday', date(2024, 1, 10), first_projection=True),
            date(2024, 1, 16)
        )

    def test_day_name_is_case_insensitive(self):
        self.assertEqual(
            services.next_occurrence_date(' saturday ', date(2024, 1, 2)),
            date(2024, 1, 6)
        )

    def test_invalid_day_name(self):
        with self.assertRaises(ValueError):
            services.next_occurrence_date('Funday', date(2024, 1, 2))

    def test_datetime_floor_is_read_in_utc(self):
        """Monday 11:30 PM in New York is already Tuesday in UTC."""
        floor = datetime(2024, 1, 1, 23, 30, tzinfo=dt_timezone(timedelta(hours=-5)))
        self.assertEqual(
            services.next_occurrence_date('Tuesday', floor),
            date(2024, 1, 9)
        )

    def test_day_bounds(self):
        start, end = services.day_bounds(utc(2024, 1, 9, 18, 45))
        self.assertEqual(start, utc(2024, 1, 9))
        self.assertEqual(end, utc(2024, 1, 10))


class CityRunModelTests(TestCase):
    """Test CityRun model and validation."""

    def setUp(self):
        self.club = RunClub.objects.create(slug='dc-run-crew', name='DC Run Crew')

    def test_create_recurring_run(self):
        """Test creating a recurring run template."""
        template = make_template(run_club=self.club)

        self.assertTrue(template.is_template)
        self.assertFalse(template.needs_approval)
        self.assertEqual(template.start_time_display, '6:00 PM')
        self.assertEqual(str(template), 'Tuesday Track Night - Every Tuesday')

    def test_save_derives_duplicate_keys(self):
        """Test normalized title, day and URL keys."""
        run = CityRun.objects.create(
            title='  Track NIGHT ',
            run_club=self.club,
            date=utc(2024, 1, 9),
            web_url=' https://Club.example.com/Events/42 '
        )

        self.assertEqual(run.title_key, 'track night')
        self.assertEqual(run.occurrence_day, date(2024, 1, 9))
        self.assertEqual(run.web_url, 'https://Club.example.com/Events/42')
        self.assertEqual(run.web_url_key, 'https://club.example.com/events/42')

    def test_template_requires_day_of_week(self):
        with self.assertRaises(ValidationError):
            make_template(day_of_week='')

    def test_instance_requires_template(self):
        """Test that instances must reference a recurring run."""
        with self.assertRaises(ValidationError):
            CityRun.objects.create(
                title='Orphan',
                run_type=RUN_TYPE_INSTANCE,
                date=utc(2024, 1, 9)
            )

    def test_instance_parent_must_be_recurring(self):
        single = CityRun.objects.create(title='Turkey Trot', date=utc(2024, 11, 28))

        with self.assertRaises(ValidationError):
            CityRun.objects.create(
                title='Turkey Trot',
                run_type=RUN_TYPE_INSTANCE,
                recurring_run=single,
                date=utc(2024, 12, 5)
            )

    def test_end_date_validation(self):
        """Test that end_date must not be before start_date."""
        with self.assertRaises(ValidationError):
            make_template(start_date=utc(2024, 2, 1), end_date=utc(2024, 1, 1))

    def test_unique_title_per_club_day(self):
        """The database rejects a second run of the same club, title and day."""
        CityRun.objects.create(title='Track Night', run_club=self.club, date=utc(2024, 1, 9))

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                CityRun.objects.create(
                    title='track night ',
                    run_club=self.club,
                    date=utc(2024, 1, 9)
                )

    def test_unique_url_per_club(self):
        CityRun.objects.create(
            title='Track Night',
            run_club=self.club,
            date=utc(2024, 1, 9),
            web_url='https://club.example.com/events/42'
        )

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                CityRun.objects.create(
                    title='Tempo Tuesday',
                    run_club=self.club,
                    date=utc(2024, 1, 16),
                    web_url='https://CLUB.example.com/events/42'
                )

    def test_templates_do_not_collide_with_their_runs(self):
        """A template may share its title and day with a dated run."""
        make_template(run_club=self.club, title='Track Night', date=utc(2024, 1, 9))
        run = CityRun.objects.create(title='Track Night', run_club=self.club, date=utc(2024, 1, 9))

        self.assertIsNotNone(run.pk)


class CityRunManagerTests(TestCase):
    """Test custom manager methods."""

    def setUp(self):
        self.now = utc(2024, 1, 10, 12, 0)

        make_template(title='Due', date=utc(2024, 1, 2))
        make_template(title='Upcoming', date=utc(2024, 1, 16))
        make_template(title='Retired', date=utc(2024, 1, 2), concluded_at=utc(2024, 1, 3))
        make_template(title='Never Projected')

        projected = make_template(title='Projected', date=utc(2024, 1, 2))
        CityRun.objects.create(
            title='Projected',
            run_type=RUN_TYPE_INSTANCE,
            recurring_run=projected,
            date=utc(2024, 1, 16)
        )
        CityRun.objects.create(title='Single', date=utc(2024, 1, 1))

    def test_recurring_filter(self):
        self.assertEqual(CityRun.objects.recurring().count(), 5)
        self.assertEqual(CityRun.objects.active_templates().count(), 4)

    def test_occurrences_filter(self):
        """Test that occurrences exclude templates."""
        titles = set(CityRun.objects.occurrences().values_list('title', flat=True))
        self.assertEqual(titles, {'Projected', 'Single'})

    def test_due_for_projection(self):
        """Test selecting templates whose last occurrence has passed."""
        due = CityRun.objects.due_for_projection(utc(2024, 1, 10))
        self.assertEqual(
            set(template.title for template in due),
            {'Due', 'Never Projected'}
        )

    def test_due_for_projection_uses_latest_instance(self):
        """Once the day of the latest instance has passed, the template is due again."""
        titles = set(t.title for t in CityRun.objects.due_for_projection(utc(2024, 1, 16)))
        self.assertNotIn('Projected', titles)
        self.assertNotIn('Upcoming', titles)

        titles = set(t.title for t in CityRun.objects.due_for_projection(utc(2024, 1, 17)))
        self.assertIn('Projected', titles)
        self.assertIn('Upcoming', titles)

    def test_series_starting_today_is_due(self):
        make_template(title='Starts Today', start_date=utc(2024, 1, 10))
        make_template(title='Starts Tomorrow', start_date=utc(2024, 1, 11))

        titles = set(t.title for t in CityRun.objects.due_for_projection(utc(2024, 1, 10)))
        self.assertIn('Starts Today', titles)
        self.assertNotIn('Starts Tomorrow', titles)

    def test_templates_projected_today_are_not_due(self):
        make_template(title='Done Today', date=utc(2024, 1, 2), last_projected_at=utc(2024, 1, 10, 6, 0))
        make_template(title='Done Yesterday', date=utc(2024, 1, 2), last_projected_at=utc(2024, 1, 9, 23, 0))

        titles = set(t.title for t in CityRun.objects.due_for_projection(utc(2024, 1, 10)))
        self.assertNotIn('Done Today', titles)
        self.assertIn('Done Yesterday', titles)


class FindExistingRunTests(TestCase):
    """Test the duplicate-avoidance check."""

    def setUp(self):
        self.club = RunClub.objects.create(slug='dc-run-crew', name='DC Run Crew')
        self.other_club = RunClub.objects.create(slug='pr-runners', name='PR Runners')
        self.run = CityRun.objects.create(
            title='Track Night',
            run_club=self.club,
            date=utc(2024, 1, 9),
            web_url='https://club.example.com/events/42'
        )

    def test_no_club_means_no_duplicate(self):
        self.assertIsNone(services.find_existing_run(None, 'Track Night', date(2024, 1, 9)))

    def test_matches_normalized_title_on_same_day(self):
        """Test title match is trimmed and case-insensitive."""
        found = services.find_existing_run(self.club, '  TRACK night ', utc(2024, 1, 9, 22, 0))
        self.assertEqual(found, self.run)

    def test_day_window_is_half_open(self):
        """Test that the next day's midnight is outside the window."""
        self.assertIsNone(services.find_existing_run(self.club, 'Track Night', utc(2024, 1, 10)))
        self.assertIsNone(services.find_existing_run(self.club, 'Track Night', date(2024, 1, 8)))

    def test_title_mismatch(self):
        self.assertIsNone(services.find_existing_run(self.club, 'Tempo Tuesday', date(2024, 1, 9)))

    def test_url_match_wins_over_title(self):
        """Test that a source URL identifies the run regardless of title."""
        found = services.find_existing_run(
            self.club,
            'Tuesday Speed Session',
            date(2024, 1, 9),
            web_url='https://CLUB.example.com/events/42 '
        )
        self.assertEqual(found, self.run)

    def test_url_miss_falls_back_to_title(self):
        found = services.find_existing_run(
            self.club,
            'Track Night',
            date(2024, 1, 9),
            web_url='https://club.example.com/events/99'
        )
        self.assertEqual(found, self.run)

    def test_scoped_per_club(self):
        self.assertIsNone(
            services.find_existing_run(self.other_club, 'Track Night', date(2024, 1, 9))
        )

    def test_templates_are_not_matches(self):
        """Test that templates are not treated as dated occurrences."""
        make_template(run_club=self.other_club, title='Track Night', date=utc(2024, 1, 9))
        self.assertIsNone(
            services.find_existing_run(self.other_club, 'Track Night', date(2024, 1, 9))
        )


class RecurringRunGeneratorTests(TestCase):
    """Test the recurring-run instance generator."""

    def setUp(self):
        self.club = RunClub.objects.create(slug='dc-run-crew', name='DC Run Crew')
        self.now = utc(2024, 1, 10, 12, 0)

    def test_scenario(self):
        """Tuesday template last run 2024-01-02, processed on Wednesday 2024-01-10."""
        template = make_template(run_club=self.club, date=utc(2024, 1, 2), total_miles=4.5)

        created = services.process_concluded_recurring_runs(now=self.now)

        self.assertEqual(created, 1)
        instance = CityRun.objects.instances().get()
        self.assertEqual(instance.date, utc(2024, 1, 9))
        self.assertEqual(instance.start_date, utc(2024, 1, 9))
        self.assertEqual(instance.recurring_run, template)
        self.assertEqual(instance.workflow_status, WORKFLOW_SUBMITTED)
        self.assertTrue(instance.needs_approval)
        self.assertEqual(instance.title, template.title)
        self.assertEqual(instance.run_club, self.club)
        self.assertEqual(instance.start_time_display, '6:00 PM')
        self.assertEqual(instance.timezone, 'America/New_York')
        self.assertEqual(instance.meet_up_point, 'Boathouse')
        self.assertEqual(instance.total_miles, 4.5)

        template.refresh_from_db()
        self.assertEqual(template.run_type, RUN_TYPE_RECURRING)
        self.assertIsNone(template.concluded_at)

    def test_idempotent(self):
        """Test that a second invocation creates nothing."""
        make_template(run_club=self.club, date=utc(2024, 1, 9))

        first = services.process_concluded_recurring_runs(now=self.now)
        second = services.process_concluded_recurring_runs(now=self.now)

        self.assertEqual(first, 1)
        self.assertEqual(second, 0)
        self.assertEqual(CityRun.objects.instances().get().date, utc(2024, 1, 16))

    def test_scenario_second_invocation_creates_nothing(self):
        """Test that repeating the Wednesday run does not project past 2024-01-09."""
        template = make_template(run_club=self.club, date=utc(2024, 1, 2))

        first = services.process_concluded_recurring_runs(now=self.now)
        second = services.process_concluded_recurring_runs(now=self.now)

        self.assertEqual(first, 1)
        self.assertEqual(second, 0)
        dates = list(CityRun.objects.for_template(template).values_list('date', flat=True))
        self.assertEqual(dates, [utc(2024, 1, 9)])

    def test_same_day_first_projection_is_not_repeated(self):
        """Test that an occurrence dated today is not treated as concluded."""
        template = make_template(
            run_club=self.club,
            day_of_week='Wednesday',
            start_date=utc(2024, 1, 10)
        )
        morning = utc(2024, 1, 10, 9, 0)

        first = services.process_concluded_recurring_runs(now=morning)
        second = services.process_concluded_recurring_runs(now=morning)
        evening = services.process_concluded_recurring_runs(now=morning + timedelta(hours=12))

        self.assertEqual((first, second, evening), (1, 0, 0))
        self.assertEqual(CityRun.objects.for_template(template).get().date, utc(2024, 1, 10))

    def test_projects_again_on_a_later_day(self):
        """Test that a template behind schedule advances one occurrence per day."""
        template = make_template(run_club=self.club, date=utc(2023, 12, 26))

        services.process_concluded_recurring_runs(now=self.now)
        services.process_concluded_recurring_runs(now=self.now)
        services.process_concluded_recurring_runs(now=self.now + timedelta(days=1))
        services.process_concluded_recurring_runs(now=self.now + timedelta(days=2))

        dates = list(
            CityRun.objects.for_template(template).order_by('date').values_list('date', flat=True)
        )
        self.assertEqual(dates, [utc(2024, 1, 2), utc(2024, 1, 9), utc(2024, 1, 16)])

        # Caught up: the latest instance has not happened yet.
        services.process_concluded_recurring_runs(now=self.now + timedelta(days=3))
        self.assertEqual(CityRun.objects.for_template(template).count(), 3)

    def test_records_projection_time(self):
        template = make_template(run_club=self.club, date=utc(2024, 1, 2))

        services.process_concluded_recurring_runs(now=self.now)

        template.refresh_from_db()
        self.assertEqual(template.last_projected_at, self.now)

    def test_first_projection_from_series_start(self):
        """Test that a Tuesday series start is itself the first occurrence."""
        make_template(run_club=self.club, start_date=utc(2024, 1, 2))

        services.process_concluded_recurring_runs(now=self.now)

        self.assertEqual(CityRun.objects.instances().get().date, utc(2024, 1, 2))

    def test_never_dated_template_projects_from_now(self):
        make_template(run_club=self.club, day_of_week='Wednesday')

        services.process_concluded_recurring_runs(now=self.now)

        self.assertEqual(CityRun.objects.instances().get().date, utc(2024, 1, 10))

    def test_boundary_respected(self):
        """Test that a series past its end date is retired without instances."""
        template = make_template(
            run_club=self.club,
            date=utc(2024, 1, 2),
            end_date=utc(2024, 1, 5)
        )

        summary = services.project_recurring_runs(now=self.now)

        self.assertEqual(summary.created, 0)
        self.assertEqual(summary.concluded, 1)
        template.refresh_from_db()
        self.assertEqual(template.concluded_at, self.now)

        for days in (0, 7, 30):
            later = self.now + timedelta(days=days)
            self.assertEqual(services.process_concluded_recurring_runs(now=later), 0)
        self.assertFalse(CityRun.objects.instances().exists())

    def test_end_date_day_is_inclusive(self):
        make_template(run_club=self.club, date=utc(2024, 1, 2), end_date=utc(2024, 1, 9))

        self.assertEqual(services.process_concluded_recurring_runs(now=self.now), 1)

    def test_skips_existing_club_run(self):
        """Test that an imported run on the same day blocks generation."""
        make_template(run_club=self.club, date=utc(2024, 1, 2))
        CityRun.objects.create(
            title='TUESDAY TRACK NIGHT',
            run_club=self.club,
            date=utc(2024, 1, 9),
            web_url='https://club.example.com/events/42'
        )

        summary = services.project_recurring_runs(now=self.now)

        self.assertEqual(summary.created, 0)
        self.assertEqual(summary.duplicates, 1)
        self.assertFalse(CityRun.objects.instances().exists())

    def test_concurrent_insert_is_skipped(self):
        """Test that a uniqueness violation on write counts as already existing."""
        make_template(run_club=self.club, date=utc(2024, 1, 2))
        CityRun.objects.create(
            title='Tuesday Track Night',
            run_club=self.club,
            date=utc(2024, 1, 9)
        )

        with patch('runs.services.find_existing_run', return_value=None):
            summary = services.project_recurring_runs(now=self.now)

        self.assertEqual(summary.created, 0)
        self.assertEqual(summary.duplicates, 1)
        self.assertEqual(summary.failed, [])

    def test_web_url_is_not_copied(self):
        make_template(
            run_club=self.club,
            date=utc(2024, 1, 2),
            web_url='https://club.example.com/track-night'
        )

        services.process_concluded_recurring_runs(now=self.now)

        self.assertEqual(CityRun.objects.instances().get().web_url, '')

    def test_partial_failure_isolation(self):
        """Test that a failed write does not stop the remaining templates."""
        first = make_template(run_club=self.club, title='Monday Miles', day_of_week='Monday', date=utc(2024, 1, 8))
        failing = make_template(run_club=self.club, title='Track Night', date=utc(2024, 1, 9))
        third = make_template(run_club=self.club, title='Long Run', day_of_week='Saturday', date=utc(2024, 1, 6))

        original = services._create_instance

        def flaky(template, occurrence_date):
            if template.pk == failing.pk:
                raise DatabaseError("simulated write failure")
            return original(template, occurrence_date)

        with patch('runs.services._create_instance', side_effect=flaky):
            with self.assertLogs('runs.services', level='ERROR'):
                summary = services.project_recurring_runs(now=self.now)

        self.assertEqual(summary.created, 2)
        self.assertEqual(summary.failed, [failing.pk])
        self.assertTrue(CityRun.objects.for_template(first).exists())
        self.assertTrue(CityRun.objects.for_template(third).exists())
        self.assertFalse(CityRun.objects.for_template(failing).exists())

        # The failed template is retried on the next invocation.
        self.assertEqual(services.process_concluded_recurring_runs(now=self.now), 1)
        self.assertEqual(CityRun.objects.for_template(failing).get().date, utc(2024, 1, 16))

    def test_malformed_template_is_isolated(self):
        broken = make_template(run_club=self.club, title='Broken', date=utc(2024, 1, 2))
        CityRun.objects.filter(pk=broken.pk).update(day_of_week='Funday')
        make_template(run_club=self.club, date=utc(2024, 1, 2))

        with self.assertLogs('runs.services', level='ERROR'):
            summary = services.project_recurring_runs(now=self.now)

        self.assertEqual(summary.created, 1)
        self.assertEqual(summary.failed, [broken.pk])

    def test_storage_unavailable_propagates(self):
        """Test that failing to load templates aborts the invocation."""
        with patch(
            'runs.services.CityRun.objects.due_for_projection',
            side_effect=OperationalError('database is unavailable')
        ):
            with self.assertRaises(OperationalError):
                services.process_concluded_recurring_runs(now=self.now)

    def test_rejects_non_template(self):
        run = CityRun.objects.create(title='Turkey Trot', date=utc(2024, 11, 28))

        with self.assertRaises(ValueError):
            services.generate_next_instance(run, now=self.now)


class RecurringRunServiceTests(TestCase):
    """Test recurring run creation."""

    def setUp(self):
        self.club = RunClub.objects.create(slug='dc-run-crew', name='DC Run Crew')

    def test_create_recurring_run(self):
        template, count = services.create_recurring_run(
            title='Thursday Social',
            day_of_week='thursday',
            run_club=self.club,
            start_date=date(2024, 1, 4),
            start_time_hour=7,
            start_time_minute=30,
            start_time_period='AM',
            meet_up_point='Coffee shop'
        )

        self.assertEqual(count, 0)
        self.assertEqual(template.run_type, RUN_TYPE_RECURRING)
        self.assertEqual(template.day_of_week, 'Thursday')
        self.assertEqual(template.start_date, utc(2024, 1, 4))
        self.assertEqual(template.start_time_display, '7:30 AM')

    def test_create_with_instance_generation(self):
        start = timezone.now().date() - timedelta(days=7)
        template, count = services.create_recurring_run(
            title='Weekly Long Run',
            day_of_week=DAYS_OF_WEEK[start.weekday()],
            run_club=self.club,
            start_date=start,
            generate_instance=True
        )

        self.assertEqual(count, 1)
        self.assertEqual(CityRun.objects.for_template(template).get().date, utc(start.year, start.month, start.day))

    def test_invalid_day(self):
        with self.assertRaises(ValueError):
            services.create_recurring_run(title='Bad', day_of_week='Someday')

    def test_invalid_time_of_day(self):
        with self.assertRaises(ValueError):
            services.create_recurring_run(title='Bad', day_of_week='Monday', start_time_hour=18)

        with self.assertRaises(ValueError):
            services.create_recurring_run(title='Bad', day_of_week='Monday', start_time_period='XM')

    def test_end_before_start(self):
        with self.assertRaises(ValueError):
            services.create_recurring_run(
                title='Bad',
                day_of_week='Monday',
                start_date=date(2024, 2, 1),
                end_date=date(2024, 1, 1)
            )

    def test_unknown_field(self):
        with self.assertRaises(ValueError):
            services.create_recurring_run(title='Bad', day_of_week='Monday', workflow_status='APPROVED')

    def test_create_with_own_occurrence(self):
        """Test that a template's own occurrence is the floor for projection."""
        template, count = services.create_recurring_run(
            title='Tuesday Track Night',
            day_of_week='Tuesday',
            run_club=self.club,
            occurrence_date=date(2024, 1, 2)
        )

        self.assertEqual(count, 0)
        self.assertEqual(template.date, utc(2024, 1, 2))
        self.assertEqual(services.process_concluded_recurring_runs(now=utc(2024, 1, 10)), 1)
        self.assertEqual(CityRun.objects.for_template(template).get().date, utc(2024, 1, 9))


class ApprovalServiceTests(TestCase):
    """Test instance approval and workflow updates."""

    def setUp(self):
        self.template = make_template(date=utc(2024, 1, 2))
        services.process_concluded_recurring_runs(now=utc(2024, 1, 10))
        self.instance = CityRun.objects.instances().get()

    def test_approve_instance(self):
        services.approve_run_instance(self.instance)

        self.instance.refresh_from_db()
        self.assertEqual(self.instance.workflow_status, WORKFLOW_APPROVED)
        self.assertFalse(self.instance.needs_approval)

    def test_approve_twice(self):
        services.approve_run_instance(self.instance)

        with self.assertRaises(ValueError):
            services.approve_run_instance(self.instance)

    def test_only_instances_can_be_approved(self):
        with self.assertRaises(ValueError):
            services.approve_run_instance(self.template)

    def test_bulk_workflow_status(self):
        single = CityRun.objects.create(title='Turkey Trot', date=utc(2024, 11, 28))

        updated = services.update_workflow_status([self.instance.pk, single.pk], WORKFLOW_PENDING)

        self.assertEqual(updated, 2)
        single.refresh_from_db()
        self.assertEqual(single.workflow_status, WORKFLOW_PENDING)

    def test_bulk_workflow_status_validation(self):
        with self.assertRaises(ValueError):
            services.update_workflow_status([], WORKFLOW_PENDING)

        with self.assertRaises(ValueError):
            services.update_workflow_status([self.instance.pk], 'PUBLISHED')


class ClubIngestionServiceTests(TestCase):
    """Test run club upserts and run ingestion."""

    def test_save_run_club(self):
        club, existed = services.save_run_club('dc-run-crew', 'DC Run Crew', city='Washington')
        self.assertFalse(existed)

        same, existed = services.save_run_club('dc-run-crew', 'DC Run Crew')
        self.assertTrue(existed)
        self.assertEqual(same.pk, club.pk)
        self.assertEqual(same.city, 'Washington')

        renamed, _ = services.save_run_club('dc-run-crew', 'District Run Crew')
        renamed.refresh_from_db()
        self.assertEqual(renamed.name, 'District Run Crew')

    def test_create_club_run(self):
        club, _ = services.save_run_club('dc-run-crew', 'DC Run Crew')

        run, created = services.create_club_run(
            club,
            'Turkey Trot',
            utc(2024, 11, 28, 13, 0),
            start_time_hour=8,
            start_time_period='AM'
        )

        self.assertTrue(created)
        self.assertEqual(run.run_type, RUN_TYPE_SINGLE_EVENT)
        self.assertEqual(run.date, utc(2024, 11, 28))
        self.assertEqual(run.day_of_week, 'Thursday')

    def test_same_url_different_title_creates_one_run(self):
        """Test that the source URL deduplicates differently parsed titles."""
        club, _ = services.save_run_club('dc-run-crew', 'DC Run Crew')
        url = 'https://club.example.com/events/42'

        first, created_first = services.create_club_run(club, 'Track Night', date(2024, 1, 9), web_url=url)
        second, created_second = services.create_club_run(club, 'Track Night @ Wilson HS', date(2024, 1, 9), web_url=url)

        self.assertTrue(created_first)
        self.assertFalse(created_second)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(CityRun.objects.for_club(club).count(), 1)

    def test_unknown_field(self):
        club, _ = services.save_run_club('dc-run-crew', 'DC Run Crew')

        with self.assertRaises(ValueError):
            services.create_club_run(club, 'Track Night', date(2024, 1, 9), run_type=RUN_TYPE_INSTANCE)


class ProcessRecurringRunsAPITests(APITestCase):
    """Test the recurring-run trigger endpoint."""

    def setUp(self):
        self.client = APIClient()
        yesterday = timezone.now() - timedelta(days=1)
        self.template = make_template(
            day_of_week=DAYS_OF_WEEK[yesterday.weekday()],
            date=yesterday
        )

    def test_process_recurring(self):
        response = self.client.post('/api/runs/process-recurring/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['created_count'], 1)

        response = self.client.get('/api/runs/process-recurring/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['created_count'], 0)

    def test_fatal_error(self):
        with patch(
            'runs.views.services.process_concluded_recurring_runs',
            side_effect=OperationalError('database is unavailable')
        ):
            with self.assertLogs('runs.views', level='ERROR'):
                response = self.client.post('/api/runs/process-recurring/')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertFalse(response.data['success'])


class RecurringRunAPITests(APITestCase):
    """Test recurring run creation endpoint."""

    def setUp(self):
        self.client = APIClient()
        RunClub.objects.create(slug='dc-run-crew', name='DC Run Crew')

    def test_create_recurring_run(self):
        data = {
            "title": "Tuesday Track Night",
            "day_of_week": "Tuesday",
            "run_club": "dc-run-crew",
            "start_date": "2024-01-02",
            "start_time_hour": 6,
            "start_time_minute": 0,
            "start_time_period": "PM",
            "meet_up_point": "Boathouse"
        }

        response = self.client.post('/api/runs/recurring/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['run']['run_type'], RUN_TYPE_RECURRING)
        self.assertEqual(response.data['run']['run_club']['slug'], 'dc-run-crew')
        self.assertEqual(response.data['run']['start_time_display'], '6:00 PM')
        self.assertEqual(response.data['instances_created'], 0)

    def test_create_with_own_date(self):
        data = {"title": "Tuesday Track Night", "day_of_week": "Tuesday", "date": "2024-01-02"}

        response = self.client.post('/api/runs/recurring/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(CityRun.objects.recurring().get().date, utc(2024, 1, 2))

    def test_invalid_day(self):
        data = {"title": "Bad", "day_of_week": "Funday"}

        response = self.client.post('/api/runs/recurring/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class RunManageAPITests(APITestCase):
    """Test approval endpoints."""

    def setUp(self):
        self.client = APIClient()
        self.template = make_template(date=utc(2024, 1, 2))
        services.process_concluded_recurring_runs(now=utc(2024, 1, 10))
        self.instance = CityRun.objects.instances().get()

    def test_approve(self):
        response = self.client.post(f'/api/runs/manage/{self.instance.id}/approve/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['run']['workflow_status'], WORKFLOW_APPROVED)

    def test_approve_template(self):
        response = self.client.post(f'/api/runs/manage/{self.template.id}/approve/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_approve_missing(self):
        response = self.client.post('/api/runs/manage/999999/approve/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_bulk_workflow_status(self):
        data = {"run_ids": [self.instance.id], "workflow_status": "PENDING"}

        response = self.client.post('/api/runs/manage/bulk-workflow-status/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['updated'], 1)

        self.instance.refresh_from_db()
        self.assertEqual(self.instance.workflow_status, WORKFLOW_PENDING)

    def test_bulk_workflow_status_validation(self):
        response = self.client.post(
            '/api/runs/manage/bulk-workflow-status/',
            {"run_ids": [], "workflow_status": "PENDING"},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class RunClubAPITests(APITestCase):
    """Test run club and ingestion endpoints."""

    def setUp(self):
        self.client = APIClient()

    def test_save_run_club(self):
        data = {"slug": "dc-run-crew", "name": "DC Run Crew", "city": "Washington"}

        response = self.client.post('/api/runclubs/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data['already_exists'])

        response = self.client.post('/api/runclubs/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['already_exists'])

    def test_ingest_run(self):
        RunClub.objects.create(slug='dc-run-crew', name='DC Run Crew')
        data = {
            "title": "Track Night",
            "start_date": "2024-01-09T23:00:00Z",
            "web_url": "https://club.example.com/events/42",
            "meet_up_point": "Wilson HS"
        }

        response = self.client.post('/api/runclubs/dc-run-crew/runs/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data['already_exists'])

        data['title'] = 'Track Night @ Wilson'
        response = self.client.post('/api/runclubs/dc-run-crew/runs/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['already_exists'])
        self.assertEqual(CityRun.objects.count(), 1)

    def test_ingest_unknown_club(self):
        data = {"title": "Track Night", "start_date": "2024-01-09T23:00:00Z"}

        response = self.client.post('/api/runclubs/nobody/runs/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class ManagementCommandTests(TestCase):
    """Test management commands."""

    def test_process_recurring_runs_command(self):
        """Test the process_recurring_runs management command."""
        yesterday = timezone.now() - timedelta(days=1)
        make_template(day_of_week=DAYS_OF_WEEK[yesterday.weekday()], date=yesterday)

        out = StringIO()
        call_command('process_recurring_runs', stdout=out)

        output = out.getvalue()
        self.assertIn('Successfully generated 1 new instance(s)', output)
        self.assertEqual(CityRun.objects.instances().count(), 1)


class CityRunAdminTests(TestCase):
    """Test admin actions."""

    def setUp(self):
        admin_user = get_user_model().objects.create_superuser(
            username='admin', email='admin@example.com', password='password'
        )
        self.client.force_login(admin_user)

    def test_generate_next_instances_isolates_failures(self):
        """Test that one broken template does not abort the admin action."""
        yesterday = timezone.now() - timedelta(days=1)
        working = make_template(day_of_week=DAYS_OF_WEEK[yesterday.weekday()], date=yesterday)
        broken = make_template(title='Broken', date=yesterday)
        CityRun.objects.filter(pk=broken.pk).update(day_of_week='Funday')

        with self.assertLogs('runs.services', level='ERROR'):
            response = self.client.post('/admin/runs/cityrun/', {
                'action': 'generate_next_instances',
                '_selected_action': [working.pk, broken.pk],
            })

        self.assertEqual(response.status_code, 302)
        self.assertEqual(CityRun.objects.for_template(working).count(), 1)
        self.assertFalse(CityRun.objects.for_template(broken).exists())
