from .request_id_middleware import *
from .jobs_auth_middleware import *

__all__ = [
    "RequestIDMiddleware",
    "resolve_request_id",
    "REQUEST_ID_HEADER",
    "require_jobs_api_key",
    "JOBS_API_KEY_HEADER",
]
