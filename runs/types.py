"""
Data types and constants for the run scheduling system.

This module contains:
- Constants shared by models, services and serializers
- DTOs (Data Transfer Objects) returned by the recurring-run generator
"""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


RUN_TYPE_SINGLE_EVENT = 'SINGLE_EVENT'
RUN_TYPE_RECURRING = 'RECURRING'
RUN_TYPE_INSTANCE = 'INSTANCE'

WORKFLOW_DEVELOP = 'DEVELOP'
WORKFLOW_PENDING = 'PENDING'
WORKFLOW_SUBMITTED = 'SUBMITTED'
WORKFLOW_APPROVED = 'APPROVED'

WORKFLOW_STATUSES = (
    WORKFLOW_DEVELOP,
    WORKFLOW_PENDING,
    WORKFLOW_SUBMITTED,
    WORKFLOW_APPROVED,
)

# Generated instances wait for a club admin before they go public.
INSTANCE_DEFAULT_WORKFLOW_STATUS = WORKFLOW_SUBMITTED

DAYS_OF_WEEK = (
    'Monday',
    'Tuesday',
    'Wednesday',
    'Thursday',
    'Friday',
    'Saturday',
    'Sunday',
)

# Descriptive fields callers may set on any run.
RUN_DETAIL_FIELDS = (
    'description',
    'start_time_hour',
    'start_time_minute',
    'start_time_period',
    'timezone',
    'meet_up_point',
    'meet_up_address',
    'meet_up_street_address',
    'meet_up_city',
    'meet_up_state',
    'meet_up_zip',
    'meet_up_place_id',
    'meet_up_lat',
    'meet_up_lng',
    'end_point',
    'end_street_address',
    'end_city',
    'end_state',
    'total_miles',
    'pace',
    'strava_map_url',
)

# Fields a generated instance inherits verbatim from its template.
TEMPLATE_COPY_FIELDS = (
    'title',
    'run_club',
    'day_of_week',
    'end_date',
) + RUN_DETAIL_FIELDS

OUTCOME_CREATED = 'created'
OUTCOME_DUPLICATE = 'duplicate'
OUTCOME_CONCLUDED = 'concluded'


@dataclass
class ProjectionResult:
    """Outcome of projecting a single template forward."""
    outcome: str
    occurrence_date: Optional[date] = None
    instance: Optional[object] = None


@dataclass
class ProjectionSummary:
    """Aggregate outcome of one generator invocation."""
    templates_processed: int = 0
    created: int = 0
    duplicates: int = 0
    concluded: int = 0
    failed: List[int] = field(default_factory=list)

    def record(self, result: ProjectionResult) -> None:
        if result.outcome == OUTCOME_CREATED:
            self.created += 1
        elif result.outcome == OUTCOME_DUPLICATE:
            self.duplicates += 1
        elif result.outcome == OUTCOME_CONCLUDED:
            self.concluded += 1
