from django.urls import path
from .views import (
    CleanupView,
    JobDetailView,
    PresetListView,
    ProcessView,
    UploadView,
    event_stream_view,
)

urlpatterns = [
    path("presets/", PresetListView.as_view(), name="presets"),
    path("upload/", UploadView.as_view(), name="upload"),
    path("process/", ProcessView.as_view(), name="process"),
    path("jobs/<str:job_id>/", JobDetailView.as_view(), name="job_detail"),
    path("cleanup/", CleanupView.as_view(), name="cleanup"),
    path("events/", event_stream_view, name="events"),
]
