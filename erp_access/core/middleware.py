"""Client-context, request-id, logging middleware and service error handling."""

import time
import uuid
import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from erp_access.core.exceptions import ERPAccessError, to_http_exception
from erp_access.schemas.schemas import ClientContext
from erp_access.services.identity import reset_client_context, set_client_context

logger = logging.getLogger("erp_access.http")


def client_context_from_request(request: Request, request_id: str) -> ClientContext:
    """Environment facts the audit trail attaches to entries recorded in this request."""
    headers = request.headers
    locale = headers.get("accept-language")
    return ClientContext(
        user_agent=(headers.get("user-agent") or "")[:500] or None,
        ip_address=request.client.host if request.client else None,
        screen=headers.get("x-screen-geometry"),
        timezone=headers.get("x-client-timezone"),
        locale=locale.split(",")[0].strip() if locale else None,
        request_id=request_id,
    )


class ClientContextMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id and expose its client context."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_client_context(client_context_from_request(request, request_id))
        start_time = time.time()

        try:
            response: Response = await call_next(request)
        finally:
            reset_client_context(token)

        duration = round((time.time() - start_time) * 1000, 2)
        response.headers["X-Request-Id"] = request_id

        logger.info(
            "%s %s %s %sms",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


async def erp_access_error_handler(request: Request, exc: ERPAccessError) -> JSONResponse:
    http_exc = to_http_exception(exc)
    if http_exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


def setup_middleware(app: FastAPI) -> None:
    """Install the access-control middleware and error handler on a host application."""
    app.add_exception_handler(ERPAccessError, erp_access_error_handler)

    # Client context + request ID + timing
    app.add_middleware(ClientContextMiddleware)
