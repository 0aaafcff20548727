import uuid
from typing import Any, Dict, List, Optional
from fastapi import status, Request
from fastapi.responses import JSONResponse
from notifier.schemas.response_schemas import ApiResponse, ResponseStatus


class ResponseBuilder:
    """Builds ``ApiResponse`` envelopes tagged with the request id and path."""

    @staticmethod
    def _build(request: Request, status_code: int, **fields) -> JSONResponse:
        # RequestIDMiddleware sets request.state.request_id; handlers that fire
        # before it (e.g. a 404 on an unknown route) get a fresh id
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        envelope = ApiResponse(request_id=request_id, path=request.url.path, **fields)
        return JSONResponse(
            status_code=status_code,
            content=envelope.model_dump(by_alias=True, exclude_none=True),
        )

    @classmethod
    def success(
        cls,
        request: Request,
        data: Any = None,
        message: str = "Request successful",
        meta: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        return cls._build(
            request,
            status_code,
            success=True,
            status=ResponseStatus.SUCCESS,
            message=message,
            data=data,
            meta=meta,
        )

    @classmethod
    def error(
        cls,
        request: Request,
        message: str = "An error occurred",
        errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """Error envelope; ``error_code`` is folded into ``meta``."""
        meta = dict(meta or {})
        if error_code:
            meta["error_code"] = error_code
        return cls._build(
            request,
            status_code,
            success=False,
            status=ResponseStatus.ERROR,
            message=message,
            errors=errors,
            meta=meta or None,
        )
