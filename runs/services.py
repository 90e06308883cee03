"""
Service layer for run business logic.
Services are framework-agnostic and handle all business operations.

The recurring-run generator lives here: it projects RECURRING templates
forward into dated INSTANCE rows, at most one occurrence per day, and relies
on ``find_existing_run`` plus the model's uniqueness constraints to stay
idempotent when invoked repeatedly or concurrently.
"""

import logging
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import Iterable, Optional, Tuple

from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, models, transaction
from django.utils import timezone

from .models import CityRun, RunClub, normalize_title, utc_day
from .types import (
    DAYS_OF_WEEK,
    INSTANCE_DEFAULT_WORKFLOW_STATUS,
    OUTCOME_CONCLUDED,
    OUTCOME_CREATED,
    OUTCOME_DUPLICATE,
    RUN_DETAIL_FIELDS,
    RUN_TYPE_INSTANCE,
    RUN_TYPE_RECURRING,
    RUN_TYPE_SINGLE_EVENT,
    TEMPLATE_COPY_FIELDS,
    WORKFLOW_APPROVED,
    WORKFLOW_STATUSES,
    ProjectionResult,
    ProjectionSummary,
)

logger = logging.getLogger(__name__)


def weekday_index(day_of_week: str) -> int:
    """
    Convert a day name to its ``date.weekday()`` index.

    Args:
        day_of_week: English day name, case-insensitive ("Tuesday", "tuesday")

    Returns:
        int (0=Monday, 6=Sunday)

    Raises:
        ValueError: If the name is not a day of the week
    """
    name = (day_of_week or '').strip().capitalize()
    if name not in DAYS_OF_WEEK:
        raise ValueError(f"Invalid day of week: {day_of_week!r}")
    return DAYS_OF_WEEK.index(name)


def day_start(value) -> datetime:
    """UTC midnight of the calendar day of a date or datetime."""
    day = utc_day(value)
    return datetime(day.year, day.month, day.day, tzinfo=dt_timezone.utc)


def day_bounds(value) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC window covering the day of ``value``."""
    start = day_start(value)
    return start, start + timedelta(days=1)


def next_occurrence_date(
    day_of_week: str,
    floor,
    first_projection: bool = False
) -> date:
    """
    Earliest date on or after ``floor`` that falls on ``day_of_week``.

    A floor already on the right weekday moves a full week ahead, unless
    this is the series' first projection, in which case the floor itself
    is the occurrence.

    Args:
        day_of_week: English day name
        floor: date or datetime; the last known occurrence or series start
        first_projection: True when the template has never been projected

    Returns:
        date of the next occurrence
    """
    target = weekday_index(day_of_week)
    floor_day = utc_day(floor)

    days_ahead = (target - floor_day.weekday()) % 7
    if days_ahead == 0 and not first_projection:
        days_ahead = 7

    return floor_day + timedelta(days=days_ahead)


def find_existing_run(
    run_club: Optional[RunClub],
    title: str,
    start_date,
    web_url: Optional[str] = None
) -> Optional[CityRun]:
    """
    Find a dated run of the same club that describes the same occurrence.

    A source URL identifies one real-world run regardless of how its title
    was parsed, so it is checked first. Otherwise a run on the same UTC
    calendar day with the same normalized title matches. Without a club
    there is nothing to compare against.

    Args:
        run_club: RunClub instance or None
        title: Proposed title
        start_date: date or datetime of the proposed occurrence
        web_url: Optional external source URL

    Returns:
        Matching CityRun, or None
    """
    if run_club is None:
        return None

    candidates = CityRun.objects.occurrences().for_club(run_club)

    if web_url and web_url.strip():
        by_url = candidates.with_web_url(web_url).first()
        if by_url is not None:
            return by_url

    window_start, window_end = day_bounds(start_date)
    return candidates.on_day(window_start, window_end).filter(
        title_key=normalize_title(title)
    ).first()


def process_concluded_recurring_runs(now: Optional[datetime] = None) -> int:
    """
    Generate the next instance of every recurring run whose current
    occurrence has concluded.

    Safe to call repeatedly (e.g. from cron): a template is projected at
    most once per UTC day, and duplicates are skipped.

    Args:
        now: Reference time; defaults to the current time

    Returns:
        Number of instances created

    Raises:
        DatabaseError: If the due templates cannot be loaded at all
    """
    return project_recurring_runs(now).created


def project_recurring_runs(now: Optional[datetime] = None) -> ProjectionSummary:
    """
    Project every due template and report what happened to each.

    Args:
        now: Reference time; defaults to the current time

    Returns:
        ProjectionSummary with created/duplicate/concluded counts and failed ids
    """
    now = now or timezone.now()

    templates = list(CityRun.objects.due_for_projection(day_start(now)))
    logger.info("Found %d concluded recurring runs to process", len(templates))

    return project_templates(templates, now=now)


def project_templates(
    templates: Iterable[CityRun],
    now: Optional[datetime] = None
) -> ProjectionSummary:
    """
    Generate the next instance of each given template.

    Each template is handled in its own savepoint; a failure is logged and
    leaves the template eligible for the next invocation.

    Args:
        templates: CityRun templates to project
        now: Reference time; defaults to the current time

    Returns:
        ProjectionSummary with created/duplicate/concluded counts and failed ids
    """
    now = now or timezone.now()
    templates = list(templates)

    summary = ProjectionSummary(templates_processed=len(templates))
    for template in templates:
        try:
            with transaction.atomic():
                result = generate_next_instance(template, now=now)
        except (DatabaseError, ValidationError, ValueError):
            logger.exception(
                "Error generating next instance for recurring run %s", template.pk
            )
            summary.failed.append(template.pk)
            continue
        summary.record(result)

    if summary.failed:
        logger.warning(
            "%d recurring run(s) failed and will be retried: %s",
            len(summary.failed),
            summary.failed,
        )
    logger.info(
        "Processed %d recurring runs, created %d new instances "
        "(%d already existed, %d series concluded)",
        summary.templates_processed,
        summary.created,
        summary.duplicates,
        summary.concluded,
    )
    return summary


def generate_next_instance(
    template: CityRun,
    now: Optional[datetime] = None
) -> ProjectionResult:
    """
    Generate the next dated instance of one recurring run.

    Args:
        template: CityRun with run_type RECURRING
        now: Reference time used when the template has no prior occurrence

    Returns:
        ProjectionResult describing whether an instance was created, already
        existed, or the series has concluded

    Raises:
        ValueError: If the run is not a template or its day of week is invalid
    """
    if not template.is_template:
        raise ValueError(f"Run {template.pk} is not a recurring run")

    now = now or timezone.now()
    floor, first_projection = _projection_floor(template, now)
    occurrence_date = next_occurrence_date(
        template.day_of_week, floor, first_projection=first_projection
    )

    if template.end_date and occurrence_date > utc_day(template.end_date):
        _conclude_template(template, now)
        logger.info(
            "Recurring run %s has reached its end date, no more instances",
            template.pk,
        )
        return ProjectionResult(OUTCOME_CONCLUDED, occurrence_date)

    existing = find_existing_run(template.run_club, template.title, occurrence_date)
    if existing is not None:
        _mark_projected(template, now)
        logger.info(
            "Instance for recurring run %s on %s already exists (run %s)",
            template.pk, occurrence_date, existing.pk,
        )
        return ProjectionResult(OUTCOME_DUPLICATE, occurrence_date, existing)

    try:
        with transaction.atomic():
            instance = _create_instance(template, occurrence_date)
    except IntegrityError:
        _mark_projected(template, now)
        logger.info(
            "Instance for recurring run %s on %s was created concurrently",
            template.pk, occurrence_date,
        )
        return ProjectionResult(OUTCOME_DUPLICATE, occurrence_date)

    _mark_projected(template, now)
    logger.info(
        "Generated instance %s for recurring run %s on %s",
        instance.pk, template.pk, occurrence_date,
    )
    return ProjectionResult(OUTCOME_CREATED, occurrence_date, instance)


def _projection_floor(template: CityRun, now: datetime) -> Tuple[date, bool]:
    """Return (floor day, is first projection) for a template."""
    last_instance_date = CityRun.objects.for_template(template).aggregate(
        last=models.Max('date')
    )['last']
    if last_instance_date is not None:
        return utc_day(last_instance_date), False

    if template.date is not None:
        return utc_day(template.date), False

    if template.start_date is not None:
        return utc_day(template.start_date), True

    return utc_day(now), True


def _create_instance(template: CityRun, occurrence_date: date) -> CityRun:
    """Insert the INSTANCE row for one occurrence of a template."""
    occurrence_start = day_start(occurrence_date)
    fields = {name: getattr(template, name) for name in TEMPLATE_COPY_FIELDS}

    return CityRun.objects.create(
        run_type=RUN_TYPE_INSTANCE,
        workflow_status=INSTANCE_DEFAULT_WORKFLOW_STATUS,
        recurring_run=template,
        start_date=occurrence_start,
        date=occurrence_start,
        **fields
    )


def _mark_projected(template: CityRun, now: datetime) -> None:
    """Record the projection so the template is skipped for the rest of the day."""
    template.last_projected_at = now
    template.save(update_fields=['last_projected_at', 'updated_at'])


def _conclude_template(template: CityRun, now: datetime) -> None:
    """Retire a template so it is never selected for projection again."""
    template.concluded_at = now
    template.save(update_fields=['concluded_at', 'updated_at'])


@transaction.atomic
def create_recurring_run(
    title: str,
    day_of_week: str,
    run_club: Optional[RunClub] = None,
    start_date=None,
    occurrence_date=None,
    end_date=None,
    generate_instance: bool = False,
    **details
) -> Tuple[CityRun, int]:
    """
    Create a new recurring run template and optionally project it once.

    Args:
        title: Run title
        day_of_week: English day name
        run_club: Club publishing the run
        start_date: First day of the series (date or datetime)
        occurrence_date: The template's own occurrence, if it describes one
        end_date: Last day of the series (None = no end)
        generate_instance: Whether to generate the next instance immediately
        **details: Time-of-day, location and route fields

    Returns:
        Tuple of (created template, number of instances created)

    Raises:
        ValueError: If validation fails
    """
    _validate_details(details)
    _validate_time_of_day(
        details.get('start_time_hour'),
        details.get('start_time_minute'),
        details.get('start_time_period'),
    )
    day_name = DAYS_OF_WEEK[weekday_index(day_of_week)]

    start_date = day_start(start_date) if start_date else None
    occurrence_date = day_start(occurrence_date) if occurrence_date else None
    end_date = day_start(end_date) if end_date else None

    if end_date and start_date and end_date < start_date:
        raise ValueError("End date must not be before start date")

    template = CityRun.objects.create(
        run_type=RUN_TYPE_RECURRING,
        title=title,
        day_of_week=day_name,
        run_club=run_club,
        start_date=start_date,
        date=occurrence_date,
        end_date=end_date,
        **details
    )

    instances_created = 0
    if generate_instance:
        result = generate_next_instance(template)
        instances_created = int(result.outcome == OUTCOME_CREATED)

    return template, instances_created


@transaction.atomic
def approve_run_instance(run: CityRun) -> CityRun:
    """
    Approve a generated instance so it is published.

    Args:
        run: CityRun instance to approve

    Returns:
        Updated CityRun instance

    Raises:
        ValueError: If the run is not an instance or is already approved
    """
    if not run.is_instance:
        raise ValueError(
            f"Cannot approve run of type {run.run_type}. Only INSTANCE runs can be approved."
        )

    if run.workflow_status == WORKFLOW_APPROVED:
        raise ValueError("Run is already approved")

    run.workflow_status = WORKFLOW_APPROVED
    run.save()
    return run


def update_workflow_status(run_ids: Iterable[int], workflow_status: str) -> int:
    """
    Move many runs to a workflow status at once.

    Args:
        run_ids: Primary keys of the runs to update
        workflow_status: One of DEVELOP, PENDING, SUBMITTED, APPROVED

    Returns:
        Number of runs updated

    Raises:
        ValueError: If no ids are given or the status is unknown
    """
    run_ids = list(run_ids)
    if not run_ids:
        raise ValueError("run_ids must be a non-empty list")

    if workflow_status not in WORKFLOW_STATUSES:
        raise ValueError(
            f"workflow_status must be one of {', '.join(WORKFLOW_STATUSES)}"
        )

    return CityRun.objects.filter(pk__in=run_ids).update(
        workflow_status=workflow_status,
        updated_at=timezone.now()
    )


@transaction.atomic
def save_run_club(
    slug: str,
    name: str,
    city: str = '',
    logo_url: str = ''
) -> Tuple[RunClub, bool]:
    """
    Make sure a run club exists before runs are attached to it.

    Args:
        slug: Unique club slug (used for lookup)
        name: Club name
        city: City name
        logo_url: Logo URL

    Returns:
        Tuple of (RunClub, whether it already existed)
    """
    slug = slug.strip()
    club = RunClub.objects.filter(slug=slug).first()
    if club is None:
        club = RunClub(slug=slug)
        already_existed = False
    else:
        already_existed = True

    fields = {
        'name': name.strip() or None,
        'city': city or None,
        'logo_url': logo_url or None,
    }
    changed = [
        field_name for field_name, value in fields.items()
        if value is not None and getattr(club, field_name) != value
    ]
    _apply_field_updates(club, fields)

    if not already_existed or changed:
        club.full_clean()
        club.save()

    return club, already_existed


def create_club_run(
    run_club: RunClub,
    title: str,
    start_date,
    web_url: str = '',
    **details
) -> Tuple[CityRun, bool]:
    """
    Save a run imported for a club unless the same occurrence already exists.

    Args:
        run_club: Club the run belongs to
        title: Run title
        start_date: date or datetime of the run
        web_url: External page the run was imported from
        **details: Time-of-day, location and route fields

    Returns:
        Tuple of (CityRun, whether it was created)

    Raises:
        ValueError: If unknown detail fields are given
    """
    _validate_details(details)

    existing = find_existing_run(run_club, title, start_date, web_url)
    if existing is not None:
        return existing, False

    occurrence_start = day_start(start_date)
    try:
        with transaction.atomic():
            run = CityRun.objects.create(
                run_type=RUN_TYPE_SINGLE_EVENT,
                run_club=run_club,
                title=title,
                day_of_week=DAYS_OF_WEEK[occurrence_start.weekday()],
                start_date=occurrence_start,
                date=occurrence_start,
                web_url=web_url or '',
                **details
            )
    except IntegrityError:
        existing = find_existing_run(run_club, title, start_date, web_url)
        if existing is None:
            raise
        return existing, False

    return run, True


def _validate_details(details: dict) -> None:
    """Reject keyword fields that are not descriptive run fields."""
    unknown = sorted(set(details) - set(RUN_DETAIL_FIELDS))
    if unknown:
        raise ValueError(f"Unknown run fields: {', '.join(unknown)}")


def _validate_time_of_day(
    hour: Optional[int],
    minute: Optional[int],
    period: Optional[str]
) -> None:
    """Validate a 12-hour clock time."""
    if hour is not None and not 1 <= hour <= 12:
        raise ValueError("Start hour must be between 1 and 12")

    if minute is not None and not 0 <= minute <= 59:
        raise ValueError("Start minute must be between 0 and 59")

    if period and period not in ('AM', 'PM'):
        raise ValueError("Start period must be AM or PM")


def _apply_field_updates(obj, fields: dict) -> None:
    """Apply field updates to object if values are not None (DRY helper)."""
    for field_name, value in fields.items():
        if value is not None:
            setattr(obj, field_name, value)
