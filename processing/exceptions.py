"""
Error taxonomy for the processing app.

Every failure carries a stable ``kind`` (the DRF ``default_code``) and an HTTP
status so views can simply raise and let DRF render the response.
"""
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.views import exception_handler as drf_exception_handler


class ProcessingError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Processing failed."
    default_code = "processing_error"

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail, code=code)
        self.message = str(self.detail)

    @property
    def kind(self) -> str:
        return self.default_code


class InvalidRequest(ProcessingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request."
    default_code = "invalid_request"


class UnsupportedMediaKind(ProcessingError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    default_detail = "Unsupported media kind."
    default_code = "unsupported_media_kind"


class InvalidConfig(ProcessingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid output configuration."
    default_code = "invalid_config"


class EngineFailure(ProcessingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Media engine failed."
    default_code = "engine_failure"


class IOFailure(ProcessingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Storage operation failed."
    default_code = "io_failure"


class NotFound(ProcessingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


def exception_handler(exc, context):
    """DRF handler that adds a stable ``kind`` to every error body."""
    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, ProcessingError):
        kind = exc.kind
    elif isinstance(exc, ValidationError):
        kind = InvalidRequest.default_code
    else:
        kind = getattr(exc, "default_code", "error")

    if isinstance(response.data, dict):
        response.data.setdefault("kind", kind)
    else:
        response.data = {"detail": response.data, "kind": kind}
    return response
