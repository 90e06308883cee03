"""
Models for the run scheduling system.

Runs live in a single table distinguished by a type tag:
- RECURRING rows are templates ("every Tuesday at 6pm") and are never dated occurrences
- INSTANCE rows are dated occurrences materialized from a template
- SINGLE_EVENT rows are one-off runs created by hand or imported from a club's site
"""

from datetime import datetime, timezone as dt_timezone

from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from .managers import CityRunManager
from .types import (
    DAYS_OF_WEEK,
    RUN_TYPE_INSTANCE,
    RUN_TYPE_RECURRING,
    RUN_TYPE_SINGLE_EVENT,
    WORKFLOW_APPROVED,
    WORKFLOW_DEVELOP,
    WORKFLOW_PENDING,
    WORKFLOW_SUBMITTED,
)


def normalize_title(title):
    """Trimmed, case-folded title used for duplicate detection."""
    return (title or '').strip().casefold()


def normalize_web_url(web_url):
    return (web_url or '').strip().lower()


def utc_day(value):
    """Calendar day of a date or datetime, read in UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(dt_timezone.utc)
        return value.date()
    return value


class RunClub(models.Model):
    """A club that publishes runs. Duplicate detection is scoped per club."""

    slug = models.SlugField(max_length=200, unique=True)
    name = models.CharField(max_length=200)
    city = models.CharField(max_length=120, blank=True, default='')
    logo_url = models.URLField(max_length=500, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class CityRun(models.Model):
    """
    A run published in a city, either a recurring template or a dated run.

    Instances keep a back-reference to the template they were generated
    from. ``title_key``, ``occurrence_day`` and ``web_url_key`` are derived
    on save and back the per-club uniqueness constraints.
    """

    RUN_TYPE_CHOICES = [
        (RUN_TYPE_SINGLE_EVENT, 'Single event'),
        (RUN_TYPE_RECURRING, 'Recurring'),
        (RUN_TYPE_INSTANCE, 'Instance'),
    ]

    WORKFLOW_STATUS_CHOICES = [
        (WORKFLOW_DEVELOP, 'Develop'),
        (WORKFLOW_PENDING, 'Pending'),
        (WORKFLOW_SUBMITTED, 'Submitted'),
        (WORKFLOW_APPROVED, 'Approved'),
    ]

    DAY_OF_WEEK_CHOICES = [(day, day) for day in DAYS_OF_WEEK]

    PERIOD_CHOICES = [
        ('AM', 'AM'),
        ('PM', 'PM'),
    ]

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')

    run_type = models.CharField(
        max_length=20,
        choices=RUN_TYPE_CHOICES,
        default=RUN_TYPE_SINGLE_EVENT
    )
    workflow_status = models.CharField(
        max_length=20,
        choices=WORKFLOW_STATUS_CHOICES,
        default=WORKFLOW_DEVELOP
    )

    run_club = models.ForeignKey(
        RunClub,
        on_delete=models.SET_NULL,
        related_name='runs',
        null=True,
        blank=True
    )
    recurring_run = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        related_name='instances',
        null=True,
        blank=True,
        help_text="Template this instance was generated from (instances only)"
    )

    day_of_week = models.CharField(
        max_length=10,
        choices=DAY_OF_WEEK_CHOICES,
        blank=True,
        default=''
    )
    start_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Series start for templates, occurrence day for dated runs"
    )
    date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Occurrence date, normalized to UTC midnight"
    )
    end_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last day the series runs (null = no end date)"
    )
    concluded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a template's series was retired"
    )
    last_projected_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the generator last projected this template"
    )

    start_time_hour = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(12)]
    )
    start_time_minute = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MaxValueValidator(59)]
    )
    start_time_period = models.CharField(
        max_length=2,
        choices=PERIOD_CHOICES,
        blank=True,
        default=''
    )
    timezone = models.CharField(max_length=64, blank=True, default='')

    meet_up_point = models.CharField(max_length=255, blank=True, default='')
    meet_up_address = models.CharField(max_length=255, blank=True, default='')
    meet_up_street_address = models.CharField(max_length=255, blank=True, default='')
    meet_up_city = models.CharField(max_length=120, blank=True, default='')
    meet_up_state = models.CharField(max_length=60, blank=True, default='')
    meet_up_zip = models.CharField(max_length=20, blank=True, default='')
    meet_up_place_id = models.CharField(max_length=255, blank=True, default='')
    meet_up_lat = models.FloatField(null=True, blank=True)
    meet_up_lng = models.FloatField(null=True, blank=True)

    end_point = models.CharField(max_length=255, blank=True, default='')
    end_street_address = models.CharField(max_length=255, blank=True, default='')
    end_city = models.CharField(max_length=120, blank=True, default='')
    end_state = models.CharField(max_length=60, blank=True, default='')
    total_miles = models.FloatField(null=True, blank=True)
    pace = models.CharField(max_length=60, blank=True, default='')
    strava_map_url = models.URLField(max_length=500, blank=True, default='')

    web_url = models.URLField(
        max_length=500,
        blank=True,
        default='',
        help_text="External page this run was imported from"
    )

    title_key = models.CharField(max_length=255, blank=True, default='', editable=False)
    occurrence_day = models.DateField(null=True, blank=True, editable=False)
    web_url_key = models.CharField(max_length=500, blank=True, default='', editable=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CityRunManager()

    class Meta:
        ordering = ['date', 'pk']
        indexes = [
            models.Index(fields=['run_type', 'date'], name='cityrun_type_date_idx'),
            models.Index(fields=['run_club', 'date'], name='cityrun_club_date_idx'),
            models.Index(fields=['recurring_run', 'date'], name='cityrun_template_date_idx'),
            models.Index(fields=['workflow_status'], name='cityrun_workflow_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['run_club', 'title_key', 'occurrence_day'],
                condition=~models.Q(run_type=RUN_TYPE_RECURRING),
                name='unique_club_run_title_per_day',
            ),
            models.UniqueConstraint(
                fields=['run_club', 'web_url_key'],
                condition=~models.Q(run_type=RUN_TYPE_RECURRING) & ~models.Q(web_url_key=''),
                name='unique_club_run_web_url',
            ),
            models.UniqueConstraint(
                fields=['recurring_run', 'occurrence_day'],
                condition=models.Q(run_type=RUN_TYPE_INSTANCE),
                name='unique_instance_per_template_day',
            ),
        ]

    def __str__(self):
        if self.is_template:
            return f"{self.title} - Every {self.day_of_week}"
        if self.date:
            return f"{self.title} - {utc_day(self.date).isoformat()}"
        return self.title

    @property
    def is_template(self):
        return self.run_type == RUN_TYPE_RECURRING

    @property
    def is_instance(self):
        return self.run_type == RUN_TYPE_INSTANCE

    @property
    def needs_approval(self):
        """Generated instances stay hidden until a club admin approves them."""
        return self.is_instance and self.workflow_status != WORKFLOW_APPROVED

    @property
    def start_time_display(self):
        """Human-readable start time, e.g. '6:00 PM'."""
        if self.start_time_hour is None:
            return ''
        minute = self.start_time_minute or 0
        return f"{self.start_time_hour}:{minute:02d} {self.start_time_period}".strip()

    def clean(self):
        """Validate run data."""
        super().clean()

        errors = {}
        if self.is_template and not self.day_of_week:
            errors['day_of_week'] = 'Recurring runs need a day of week.'

        if self.is_instance and not self.recurring_run_id:
            errors['recurring_run'] = 'Instances must reference a recurring run.'
        elif self.recurring_run_id and not self.recurring_run.is_template:
            errors['recurring_run'] = 'Only recurring runs can have instances.'

        if self.end_date and self.start_date and self.end_date < self.start_date:
            errors['end_date'] = 'End date must not be before start date.'

        if errors:
            raise ValidationError(errors)

    def save(self, *args, **kwargs):
        """Refresh the duplicate-detection keys and save with validation."""
        self.web_url = (self.web_url or '').strip()
        self.title_key = normalize_title(self.title)
        self.web_url_key = normalize_web_url(self.web_url)
        self.occurrence_day = utc_day(self.date) if self.date else None
        # Uniqueness is left to the database so racing writers surface as IntegrityError.
        self.full_clean(validate_constraints=False)
        super().save(*args, **kwargs)
