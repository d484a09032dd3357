"""Pipeline error taxonomy and HTTP exception handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    import httpx

    from erp_client.schemas import QueuedOperation


class PipelineError(Exception):
    """Base class for every error raised by the request pipeline."""


class AuthorizationExpired(PipelineError):
    """The access credential was rejected as expired."""


class AuthorizationInvalid(PipelineError):
    """The credential was rejected outright; renewal is pointless."""


class ForcedLogoutError(PipelineError):
    """Renewal failed; the session is gone and the user must log in again."""


class NetworkUnreachable(PipelineError):
    """The server could not be reached."""


class ValidationRejected(PipelineError):
    """The server rejected the request payload. Never queued or retried."""

    def __init__(
        self, message: str, response: httpx.Response | None = None
    ) -> None:
        super().__init__(message)
        self.response = response


class QueueReplayConflict(PipelineError):
    """A queued operation was definitively rejected on replay."""

    def __init__(
        self,
        operation: QueuedOperation,
        status_code: int | None = None,
        detail: str = "",
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        super().__init__(
            f"Replay of operation {operation.id} conflicted"
            + (f": {detail}" if detail else "")
        )


class OperationNotFoundError(PipelineError):
    """No queued operation with the given id."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} not found")


def register_exception_handlers(app: FastAPI) -> None:
    """Register pipeline exception handlers on a FastAPI app.

    More specific handlers must be registered first so FastAPI
    matches them before the generic PipelineError handler.

    Handler order (most specific first):
    1. OperationNotFoundError → 404
    2. ForcedLogoutError → 401
    3. AuthorizationInvalid → 401
    4. ValidationRejected → 422
    5. QueueReplayConflict → 409
    6. NetworkUnreachable → 503
    7. PipelineError → 400 (catch-all)
    """

    def _error(status_code: int, exc: Exception, code: str) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "code": code},
        )

    @app.exception_handler(OperationNotFoundError)
    async def _not_found(
        request: Request,
        exc: OperationNotFoundError,
    ) -> JSONResponse:
        return _error(404, exc, "operation_not_found")

    @app.exception_handler(ForcedLogoutError)
    async def _forced_logout(
        request: Request,
        exc: ForcedLogoutError,
    ) -> JSONResponse:
        return _error(401, exc, "forced_logout")

    @app.exception_handler(AuthorizationInvalid)
    async def _authorization_invalid(
        request: Request,
        exc: AuthorizationInvalid,
    ) -> JSONResponse:
        return _error(401, exc, "authorization_invalid")

    @app.exception_handler(ValidationRejected)
    async def _validation_rejected(
        request: Request,
        exc: ValidationRejected,
    ) -> JSONResponse:
        return _error(422, exc, "validation_rejected")

    @app.exception_handler(QueueReplayConflict)
    async def _replay_conflict(
        request: Request,
        exc: QueueReplayConflict,
    ) -> JSONResponse:
        return _error(409, exc, "replay_conflict")

    @app.exception_handler(NetworkUnreachable)
    async def _unreachable(
        request: Request,
        exc: NetworkUnreachable,
    ) -> JSONResponse:
        return _error(503, exc, "network_unreachable")

    @app.exception_handler(PipelineError)
    async def _pipeline_error(
        request: Request,
        exc: PipelineError,
    ) -> JSONResponse:
        return _error(400, exc, "pipeline_error")
