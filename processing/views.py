from django.conf import settings
from django.http import FileResponse, StreamingHttpResponse
from django.views.decorators.http import require_GET
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .presets import catalog
from .serializers import CleanupRequestSerializer, ProcessRequestSerializer, UploadSerializer
from .services import get_service


class PresetListView(views.APIView):
    """Platform presets for the frontend picker."""
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response(catalog())


class UploadView(views.APIView):
    """
    Accepts a multipart ``media`` upload, stores it under UPLOAD_DIR and
    creates a job. Processing is requested separately.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = UploadSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        job = get_service().upload(ser.validated_data["media"])
        return Response(
            {"jobId": job.id, "originalName": job.original_name, "mime": job.mime, "kind": job.kind.value},
            status=status.HTTP_201_CREATED,
        )


class ProcessView(views.APIView):
    """
    Starts one processing attempt.

    Images complete before the response (200 with the download url). Videos
    are acknowledged with 202 and report through the client's event stream.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = ProcessRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        outcome = get_service().process(
            data["jobId"],
            platform_id=data.get("targetPlatform") or None,
            overrides=data.get("custom"),
            address=data.get("socketId") or None,
        )
        code = status.HTTP_202_ACCEPTED if outcome.accepted else status.HTTP_200_OK
        return Response(outcome.to_dict(), status=code)


class JobDetailView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        return Response(get_service().job_status(job_id))


class DownloadView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, filename):
        path = get_service().retrieve(filename)
        return FileResponse(open(path, "rb"), as_attachment=True, filename=path.name)


class CleanupView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = CleanupRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        removed = get_service().cleanup(ser.validated_data["jobId"])
        return Response({"ok": True, "removed": removed})


@require_GET
def event_stream_view(request):
    """
    SSE endpoint delivering this client's processing events.

    The first frame is ``registered`` with the socketId to send along with
    processing requests. Passing ``?socketId=`` resumes a known address.
    """
    channel = get_service().channel
    subscriber = channel.connect(request.GET.get("socketId") or None)

    response = StreamingHttpResponse(
        channel.stream(subscriber, keepalive=settings.EVENT_KEEPALIVE_SECONDS),
        content_type="text/event-stream",
    )
    response["Cache-Control"] = "no-cache"
    response["X-Accel-Buffering"] = "no"
    return response
