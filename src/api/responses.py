"""
Shared response helpers for API routers.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from src.schemas.commit import CommitOutcome, CommitResult

COMMIT_STATUS: dict[CommitOutcome, int] = {
    CommitOutcome.CREATED: 201,
    CommitOutcome.CONFLICT: 409,
    CommitOutcome.REJECTED: 422,
    CommitOutcome.ERROR: 500,
}


def commit_response(result: CommitResult) -> JSONResponse:
    """Render a ``CommitResult`` with a status code matching its outcome."""
    return JSONResponse(status_code=COMMIT_STATUS[result.outcome], content=result.model_dump(mode="json"))
