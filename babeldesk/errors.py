"""Custom exceptions and FastAPI error handler registration."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ── Job run errors (converted to a failed job, never raised to callers) ──


class JobRunError(Exception):
    """Base class for anything that fails a single translation run."""


class ProvisioningError(JobRunError):
    """The interpreter, tool manager or translation executable is unavailable."""


class SpawnError(JobRunError):
    """The translation executable could not be started."""


class ExecutionError(JobRunError):
    """The translation process exited with a nonzero code."""

    def __init__(self, exit_code: Optional[int]):
        self.exit_code = exit_code
        super().__init__(f"BabelDOC exited with code {exit_code}")


class JobTimeoutError(JobRunError):
    """The translation process exceeded the configured timeout and was killed."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"BabelDOC timed out after {timeout_seconds:g}s and was killed")


# ── Caller-facing errors ─────────────────────────────────────────────


class JobNotFoundError(Exception):
    """Requested job ID does not exist."""


class InvalidJobStateError(Exception):
    """The job is in a state that does not allow the requested operation."""


class OutputNotReadyError(Exception):
    """No translated output is available to save."""


_EXCEPTION_STATUS = {
    JobNotFoundError: 404,
    InvalidJobStateError: 409,
    OutputNotReadyError: 409,
    ProvisioningError: 503,
}


def _make_handler(status_code: int):
    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return _handler


def register_error_handlers(app: FastAPI) -> None:
    for exc_cls, status_code in _EXCEPTION_STATUS.items():
        app.add_exception_handler(exc_cls, _make_handler(status_code))
