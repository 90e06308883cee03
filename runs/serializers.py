"""
Serializers for the run scheduling system.
"""

from rest_framework import serializers

from .models import CityRun, RunClub
from .types import DAYS_OF_WEEK, WORKFLOW_STATUSES


class RunClubSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying RunClub (output)."""

    class Meta:
        model = RunClub
        fields = [
            'id',
            'slug',
            'name',
            'city',
            'logo_url',
        ]


class CityRunReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying CityRun (output)."""

    run_club = RunClubSerializer(read_only=True)
    recurring_run_id = serializers.IntegerField(read_only=True, allow_null=True)
    start_time_display = serializers.ReadOnlyField()
    needs_approval = serializers.ReadOnlyField()

    class Meta:
        model = CityRun
        fields = [
            'id',
            'title',
            'description',
            'run_type',
            'workflow_status',
            'needs_approval',
            'run_club',
            'recurring_run_id',
            'day_of_week',
            'start_date',
            'date',
            'end_date',
            'concluded_at',
            'start_time_hour',
            'start_time_minute',
            'start_time_period',
            'start_time_display',
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
            'web_url',
            'created_at',
            'updated_at',
        ]


class RunDetailsSerializer(serializers.Serializer):
    """Time-of-day, location and route fields shared by run inputs."""

    description = serializers.CharField(required=False, allow_blank=True)
    start_time_hour = serializers.IntegerField(min_value=1, max_value=12, required=False)
    start_time_minute = serializers.IntegerField(min_value=0, max_value=59, required=False)
    start_time_period = serializers.ChoiceField(choices=['AM', 'PM'], required=False)
    timezone = serializers.CharField(max_length=64, required=False, allow_blank=True)
    meet_up_point = serializers.CharField(max_length=255, required=False, allow_blank=True)
    meet_up_address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    meet_up_street_address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    meet_up_city = serializers.CharField(max_length=120, required=False, allow_blank=True)
    meet_up_state = serializers.CharField(max_length=60, required=False, allow_blank=True)
    meet_up_zip = serializers.CharField(max_length=20, required=False, allow_blank=True)
    meet_up_place_id = serializers.CharField(max_length=255, required=False, allow_blank=True)
    meet_up_lat = serializers.FloatField(required=False, allow_null=True)
    meet_up_lng = serializers.FloatField(required=False, allow_null=True)
    end_point = serializers.CharField(max_length=255, required=False, allow_blank=True)
    end_street_address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    end_city = serializers.CharField(max_length=120, required=False, allow_blank=True)
    end_state = serializers.CharField(max_length=60, required=False, allow_blank=True)
    total_miles = serializers.FloatField(min_value=0, required=False, allow_null=True)
    pace = serializers.CharField(max_length=60, required=False, allow_blank=True)
    strava_map_url = serializers.URLField(max_length=500, required=False, allow_blank=True)


class RecurringRunCreateSerializer(RunDetailsSerializer):
    """Serializer for creating a recurring run template."""

    title = serializers.CharField(max_length=200)
    day_of_week = serializers.ChoiceField(choices=list(DAYS_OF_WEEK))
    run_club = serializers.SlugRelatedField(
        slug_field='slug',
        queryset=RunClub.objects.all(),
        required=False,
        allow_null=True
    )
    start_date = serializers.DateField(required=False, allow_null=True)
    date = serializers.DateField(source='occurrence_date', required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)
    generate_instance = serializers.BooleanField(default=False)

    def validate(self, data):
        """Validate series boundaries."""
        start_date = data.get('start_date')
        end_date = data.get('end_date')

        if end_date and start_date and end_date < start_date:
            raise serializers.ValidationError({
                'end_date': 'End date must not be before start date.'
            })

        return data


class ClubRunIngestSerializer(RunDetailsSerializer):
    """Serializer for a run imported for a club."""

    title = serializers.CharField(max_length=200)
    start_date = serializers.DateTimeField()
    web_url = serializers.URLField(max_length=500, required=False, allow_blank=True, default='')


class RunClubSaveSerializer(serializers.Serializer):
    """Serializer for making sure a run club exists."""

    slug = serializers.SlugField(max_length=200)
    name = serializers.CharField(max_length=200)
    city = serializers.CharField(max_length=120, required=False, allow_blank=True, default='')
    logo_url = serializers.URLField(max_length=500, required=False, allow_blank=True, default='')


class BulkWorkflowStatusSerializer(serializers.Serializer):
    """Serializer for bulk workflow status updates."""

    run_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False
    )
    workflow_status = serializers.ChoiceField(choices=list(WORKFLOW_STATUSES))
