from django.urls import include, path

from processing.views import DownloadView

urlpatterns = [
    path("api/", include("processing.urls")),
    path("download/<str:filename>", DownloadView.as_view(), name="download"),
]
