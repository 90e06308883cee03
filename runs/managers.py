"""
Custom managers and querysets for run models.

QuerySets define chainable query methods.
Managers use QuerySets to enable method chaining.
No business logic should be here - only query operations.
"""

from datetime import timedelta

from django.db import models
from django.db.models.functions import Coalesce

from .types import RUN_TYPE_INSTANCE, RUN_TYPE_RECURRING


class CityRunQuerySet(models.QuerySet):
    """Custom queryset for CityRun model with chainable methods."""

    def recurring(self):
        """Get all recurring run templates."""
        return self.filter(run_type=RUN_TYPE_RECURRING)

    def active_templates(self):
        """Get recurring templates whose series has not been retired."""
        return self.recurring().filter(concluded_at__isnull=True)

    def instances(self):
        """Get runs generated from a recurring template."""
        return self.filter(run_type=RUN_TYPE_INSTANCE)

    def occurrences(self):
        """Get every dated run (anything that is not a template)."""
        return self.exclude(run_type=RUN_TYPE_RECURRING)

    def for_template(self, template):
        """
        Get all instances generated from a template.

        Args:
            template: CityRun instance with run_type RECURRING
        """
        return self.filter(recurring_run=template)

    def for_club(self, run_club):
        """
        Get runs belonging to a run club.

        Args:
            run_club: RunClub instance
        """
        return self.filter(run_club=run_club)

    def on_day(self, day_start, day_end):
        """
        Get runs dated within a day window.

        Args:
            day_start: datetime, inclusive
            day_end: datetime, exclusive
        """
        return self.filter(date__gte=day_start, date__lt=day_end)

    def with_web_url(self, web_url):
        """
        Get runs imported from an external source URL (case-insensitive).

        Args:
            web_url: str
        """
        return self.filter(web_url_key=web_url.strip().lower())

    def due_for_projection(self, today):
        """
        Get active templates whose most recent known occurrence is over.

        The reference date is the latest generated instance, falling back
        to the template's own date. A reference dated ``today`` has not
        happened yet, so it must fall on an earlier day. A series start
        only counts as the first occurrence and may fall on ``today``.
        Templates with no reference at all have never been projected.

        Templates already projected on or after ``today`` are left out.

        Args:
            today: datetime at the start of the current UTC day
        """
        tomorrow = today + timedelta(days=1)
        return self.active_templates().filter(
            models.Q(last_projected_at__isnull=True) |
            models.Q(last_projected_at__lt=today)
        ).annotate(
            latest_instance=models.Max('instances__date'),
            last_occurrence=Coalesce(
                models.Max('instances__date'), 'date', 'start_date'
            )
        ).filter(
            models.Q(last_occurrence__lt=today) |
            models.Q(
                latest_instance__isnull=True,
                date__isnull=True,
                start_date__lt=tomorrow
            ) |
            models.Q(last_occurrence__isnull=True)
        ).order_by('last_occurrence', 'pk')


class CityRunManager(models.Manager):
    """Custom manager for CityRun model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return CityRunQuerySet(self.model, using=self._db)

    def recurring(self):
        """Get all recurring run templates."""
        return self.get_queryset().recurring()

    def active_templates(self):
        """Get recurring templates whose series has not been retired."""
        return self.get_queryset().active_templates()

    def instances(self):
        """Get runs generated from a recurring template."""
        return self.get_queryset().instances()

    def occurrences(self):
        """Get every dated run (anything that is not a template)."""
        return self.get_queryset().occurrences()

    def for_template(self, template):
        return self.get_queryset().for_template(template)

    def for_club(self, run_club):
        return self.get_queryset().for_club(run_club)

    def on_day(self, day_start, day_end):
        return self.get_queryset().on_day(day_start, day_end)

    def with_web_url(self, web_url):
        return self.get_queryset().with_web_url(web_url)

    def due_for_projection(self, today):
        """
        Get active templates due for projection on ``today``.

        Args:
            today: datetime at the start of the current UTC day
        """
        return self.get_queryset().due_for_projection(today)
