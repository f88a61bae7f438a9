import re
import uuid
from time import perf_counter

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from esgreport_api.core.logging import get_logger, reset_request_id, set_request_id

logger = get_logger("api.request")

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")
_QUIET_PATHS = frozenset({"/healthz", "/api/v1/healthz"})


def _incoming_request_id(request: Request) -> str:
    candidate = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if candidate and _VALID_REQUEST_ID.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID, echo it back and log the request's outcome."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = _incoming_request_id(request)
        request.state.request_id = request_id
        request_id_token = set_request_id(request_id)
        started = perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        except Exception:
            logger.exception(
                "request.error",
                extra={"component": "api", "method": request.method, "path": request.url.path},
            )
            raise
        finally:
            status_code = response.status_code if response is not None else 500
            if request.url.path not in _QUIET_PATHS or status_code >= 400:
                logger.info(
                    "request.end",
                    extra={
                        "component": "api",
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": status_code,
                        "duration_ms": int((perf_counter() - started) * 1000),
                    },
                )
            if response is not None:
                response.headers[REQUEST_ID_HEADER] = request_id
            reset_request_id(request_id_token)
