import logging
import time
import uuid

logger = logging.getLogger(__name__)


class RequestLogMiddleware:
    """Tag every request with an id and log its outcome.

    An incoming ``X-Request-ID`` header is reused (truncated to 128 chars);
    otherwise a new id is generated.  The id is echoed on the response.
    """
    HEADER = 'X-Request-ID'

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = (request.headers.get(self.HEADER) or '').strip()[:128] or uuid.uuid4().hex
        request.request_id = request_id
        started = time.monotonic()
        response = self.get_response(request)
        elapsed_ms = (time.monotonic() - started) * 1000
        response[self.HEADER] = request_id
        logger.info(
            '%s %s -> %s (%.1f ms) rid=%s',
            request.method, request.path, response.status_code, elapsed_ms, request_id,
        )
        return response
