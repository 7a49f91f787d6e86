import logging

from django.http import Http404, JsonResponse

from .exceptions import ProposalError

logger = logging.getLogger(__name__)


class ApiErrorMiddleware:
    """
    Render errors raised by /api/ views as the JSON envelope
    {"success": false, "error": "..."} instead of an HTML error page.
    """

    api_prefix = "/api/"

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        if not request.path.startswith(self.api_prefix):
            return None

        if isinstance(exception, ProposalError):
            if exception.status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.path, exception.message)
            else:
                logger.info("%s %s rejected: %s", request.method, request.path, exception.message)
            return JsonResponse(
                {"success": False, "error": exception.message}, status=exception.status_code
            )

        if isinstance(exception, Http404):
            return JsonResponse({"success": False, "error": str(exception) or "Not found"}, status=404)

        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return JsonResponse(
            {"success": False, "error": "Failed to process request"}, status=500
        )
