"""
Admin configuration for the runs app.
"""

from django.contrib import admin, messages

from .models import CityRun, RunClub
from . import services


@admin.register(RunClub)
class RunClubAdmin(admin.ModelAdmin):
    """Admin interface for RunClub model."""

    list_display = ['name', 'slug', 'city', 'created_at']
    search_fields = ['name', 'slug', 'city']
    prepopulated_fields = {'slug': ('name',)}
    readonly_fields = ['created_at', 'updated_at']


@admin.register(CityRun)
class CityRunAdmin(admin.ModelAdmin):
    """Admin interface for CityRun model."""

    list_display = [
        'title', 'run_type', 'workflow_status', 'run_club', 'day_of_week',
        'date', 'start_time_display', 'recurring_run',
    ]
    list_filter = ['run_type', 'workflow_status', 'day_of_week', 'run_club']
    search_fields = ['title', 'description', 'meet_up_point', 'web_url']
    date_hierarchy = 'date'
    raw_id_fields = ['recurring_run']
    actions = ['approve_instances', 'generate_next_instances']

    fieldsets = (
        ('Basic Information', {
            'fields': ('title', 'description', 'run_club', 'web_url')
        }),
        ('Type & Workflow', {
            'fields': ('run_type', 'workflow_status', 'recurring_run', 'concluded_at', 'last_projected_at')
        }),
        ('Schedule', {
            'fields': (
                'day_of_week', 'start_date', 'date', 'end_date',
                'start_time_hour', 'start_time_minute', 'start_time_period', 'timezone',
            )
        }),
        ('Meetup', {
            'fields': (
                'meet_up_point', 'meet_up_address', 'meet_up_street_address',
                'meet_up_city', 'meet_up_state', 'meet_up_zip',
                'meet_up_place_id', 'meet_up_lat', 'meet_up_lng',
            )
        }),
        ('Route', {
            'fields': (
                'end_point', 'end_street_address', 'end_city', 'end_state',
                'total_miles', 'pace', 'strava_map_url',
            ),
            'classes': ('collapse',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['concluded_at', 'last_projected_at', 'created_at', 'updated_at']

    @admin.action(description='Approve selected instances')
    def approve_instances(self, request, queryset):
        approved = 0
        for run in queryset.instances():
            try:
                services.approve_run_instance(run)
            except ValueError:
                continue
            approved += 1
        self.message_user(request, f'Approved {approved} instance(s).', messages.SUCCESS)

    @admin.action(description='Generate next instances of selected recurring runs')
    def generate_next_instances(self, request, queryset):
        summary = services.project_templates(queryset.active_templates())
        self.message_user(
            request, f'Generated {summary.created} new instance(s).', messages.SUCCESS
        )
        if summary.failed:
            self.message_user(
                request,
                f'Could not generate instances for run(s): {summary.failed}',
                messages.WARNING
            )
