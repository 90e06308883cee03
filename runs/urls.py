"""
URL routing for the runs API.
"""

from django.urls import path
from .views import (
    BulkWorkflowStatusView,
    ClubRunIngestView,
    ProcessRecurringRunsView,
    RecurringRunCreateView,
    RunApproveView,
    RunClubSaveView,
)

urlpatterns = [
    path('runs/process-recurring/', ProcessRecurringRunsView.as_view(), name='runs-process-recurring'),
    path('runs/recurring/', RecurringRunCreateView.as_view(), name='recurring-run-create'),
    path('runs/manage/<int:pk>/approve/', RunApproveView.as_view(), name='run-approve'),
    path('runs/manage/bulk-workflow-status/', BulkWorkflowStatusView.as_view(), name='runs-bulk-workflow-status'),
    path('runclubs/', RunClubSaveView.as_view(), name='runclub-save'),
    path('runclubs/<slug:slug>/runs/', ClubRunIngestView.as_view(), name='runclub-run-ingest'),
]
