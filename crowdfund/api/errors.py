"""HTTP mapping of engine errors"""
from typing import Dict, Type

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crowdfund.services.errors import (
    AmountError,
    CooldownNotElapsed,
    DuplicateProposalId,
    EngineError,
    FundingCapExceeded,
    IdempotencyConflict,
    InvalidState,
    JournalError,
    NotFound,
    ProposalNotAcceptingInvestment,
    ThresholdNotReached,
    TransferFailed,
    Unauthorized,
    ValidationError,
)

logger = structlog.get_logger()

STATUS_CODES: Dict[Type[EngineError], int] = {
    ValidationError: 400,
    AmountError: 400,
    Unauthorized: 403,
    NotFound: 404,
    DuplicateProposalId: 409,
    InvalidState: 409,
    ProposalNotAcceptingInvestment: 409,
    FundingCapExceeded: 409,
    ThresholdNotReached: 409,
    CooldownNotElapsed: 409,
    IdempotencyConflict: 422,
    TransferFailed: 502,
    JournalError: 503,
}


def status_code_for(error: EngineError) -> int:
    for cls in type(error).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Command rejected",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        detail=exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)
