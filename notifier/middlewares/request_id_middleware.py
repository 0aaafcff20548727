import re
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from notifier.utils.context import request_id_scope

REQUEST_ID_HEADER = "X-Request-ID"

# Cron callers pass their own run ids; anything else gets a fresh uuid
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def resolve_request_id(header_value: Optional[str]) -> str:
    if header_value and _REQUEST_ID_PATTERN.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        # Bound for the logger while the request is handled
        with request_id_scope(request_id):
            response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
