"""Views for the run scheduling system."""

import logging

from django.db import DatabaseError
from django.shortcuts import get_object_or_404

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import CityRun, RunClub
from .serializers import (
    BulkWorkflowStatusSerializer,
    CityRunReadSerializer,
    ClubRunIngestSerializer,
    RecurringRunCreateSerializer,
    RunClubSaveSerializer,
    RunClubSerializer,
)
from . import services

logger = logging.getLogger(__name__)


class ProcessRecurringRunsView(APIView):
    """
    Generate the next instance of every concluded recurring run.

    GET /api/runs/process-recurring/ - Same as POST, for cron jobs
    POST /api/runs/process-recurring/ - Process recurring runs
    """

    def get(self, request):
        return self.post(request)

    def post(self, request):
        """Run the recurring-run generator."""
        try:
            created_count = services.process_concluded_recurring_runs()
        except DatabaseError as exc:
            logger.exception("Error processing recurring runs")
            return Response({
                'success': False,
                'error': 'Failed to process recurring runs',
                'details': str(exc),
            }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({
            'success': True,
            'message': f'Processed recurring runs, created {created_count} new instances',
            'created_count': created_count,
        })


class RecurringRunCreateView(APIView):
    """
    Create a recurring run template.

    POST /api/runs/recurring/
    """

    def post(self, request):
        """Create a template with optional first instance generation."""
        serializer = RecurringRunCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = dict(serializer.validated_data)
        try:
            template, instances_created = services.create_recurring_run(**data)
        except ValueError as exc:
            return Response({'error': str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            'run': CityRunReadSerializer(template).data,
            'instances_created': instances_created,
        }, status=status.HTTP_201_CREATED)


class RunApproveView(APIView):
    """
    Approve a generated run instance.

    POST /api/runs/manage/{id}/approve/
    """

    def post(self, request, pk):
        """Approve an INSTANCE run."""
        run = get_object_or_404(CityRun, pk=pk)

        try:
            services.approve_run_instance(run)
        except ValueError as exc:
            return Response({'error': str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            'success': True,
            'run': CityRunReadSerializer(run).data,
            'message': f'Run "{run.title}" has been approved.',
        }, status=status.HTTP_200_OK)


class BulkWorkflowStatusView(APIView):
    """
    Update the workflow status of many runs.

    POST /api/runs/manage/bulk-workflow-status/
    """

    def post(self, request):
        """Bulk update workflow status."""
        serializer = BulkWorkflowStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        workflow_status = serializer.validated_data['workflow_status']
        updated = services.update_workflow_status(
            serializer.validated_data['run_ids'],
            workflow_status
        )

        return Response({
            'success': True,
            'updated': updated,
            'workflow_status': workflow_status,
            'message': f'Updated {updated} run(s) to {workflow_status}',
        })


class RunClubSaveView(APIView):
    """
    Make sure a run club exists before its runs are imported.

    POST /api/runclubs/
    """

    def post(self, request):
        serializer = RunClubSaveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        club, already_existed = services.save_run_club(**serializer.validated_data)

        return Response({
            'success': True,
            'run_club': RunClubSerializer(club).data,
            'already_exists': already_existed,
        }, status=status.HTTP_200_OK if already_existed else status.HTTP_201_CREATED)


class ClubRunIngestView(APIView):
    """
    Import a run for a club, skipping occurrences it already has.

    POST /api/runclubs/{slug}/runs/
    """

    def post(self, request, slug):
        """Create the run unless a duplicate exists."""
        club = get_object_or_404(RunClub, slug=slug)
        serializer = ClubRunIngestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = dict(serializer.validated_data)
        run, created = services.create_club_run(
            run_club=club,
            title=data.pop('title'),
            start_date=data.pop('start_date'),
            web_url=data.pop('web_url', ''),
            **data
        )

        return Response({
            'run': CityRunReadSerializer(run).data,
            'already_exists': not created,
        }, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)
