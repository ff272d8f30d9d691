"""ASGI middleware guarding the internal messaging API with a Bearer token."""

from __future__ import annotations

import hmac

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from src.audit.logger import AuditLogger
from src.models import AuditEventType

# Only paths under this prefix require a token
PROTECTED_PREFIX = "/api/"


class AuthMiddleware:
    """Constant-time Bearer token check for ``/api/*`` routes.

    The LINE webhook and health check stay public: LINE authenticates with
    the request signature instead. With no token configured, the internal
    API is closed (503) rather than open.
    """

    def __init__(
        self,
        app: ASGIApp,
        token: str | None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.app = app
        self._token = token.encode() if token else None
        self.audit_logger = audit_logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope["path"].startswith(PROTECTED_PREFIX):
            await self.app(scope, receive, send)
            return

        request = Request(scope)

        if self._token is None:
            await JSONResponse({"error": "Internal API is disabled"}, status_code=503)(scope, receive, send)
            return

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            self._record(request, AuditEventType.AUTH_FAILURE, "missing_token" if not auth_header else "invalid_format")
            await JSONResponse({"error": "Authentication required"}, status_code=401)(scope, receive, send)
            return

        if not hmac.compare_digest(auth_header[7:].encode(), self._token):
            self._record(request, AuditEventType.AUTH_FAILURE, "invalid_token")
            await JSONResponse({"error": "Access denied"}, status_code=403)(scope, receive, send)
            return

        self._record(request, AuditEventType.AUTH_SUCCESS)
        await self.app(scope, receive, send)

    def _record(self, request: Request, event_type: AuditEventType, reason: str | None = None) -> None:
        if not self.audit_logger:
            return
        self.audit_logger.record(
            event_type,
            f"{request.method} {request.url.path}",
            "failure" if reason else "success",
            source_ip=request.client.host if request.client else None,
            details={"reason": reason} if reason else None,
        )
