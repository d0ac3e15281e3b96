"""
Mapping of typed failures onto HTTP responses. Every failure is returned
as `{"code": ..., "message": ...}` so clients can pick a plain-language
message from the code.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from structlog import get_logger

from cellauth.core.errors import (
    AlreadyConnectedError,
    AuthFailure,
    ConfigValidationError,
    EmailAlreadyExistsError,
    FeatureDisabledError,
    ForbiddenError,
    GoogleAccountInUseError,
    InvalidConversionError,
    InvalidStateError,
    NoGoogleAccountError,
    NotAuthenticatedError,
    ProviderError,
    UserNotFoundError,
)
from cellauth.service.login import (
    RedirectInvalidError,
    RequestTransitionError,
    StaleRequestError,
)

STATUS_CODES: dict[type[AuthFailure], int] = {
    NotAuthenticatedError: status.HTTP_401_UNAUTHORIZED,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    UserNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateError: status.HTTP_400_BAD_REQUEST,
    AlreadyConnectedError: status.HTTP_409_CONFLICT,
    GoogleAccountInUseError: status.HTTP_409_CONFLICT,
    EmailAlreadyExistsError: status.HTTP_409_CONFLICT,
    InvalidConversionError: status.HTTP_409_CONFLICT,
    NoGoogleAccountError: status.HTTP_409_CONFLICT,
    ConfigValidationError: status.HTTP_400_BAD_REQUEST,
    ProviderError: status.HTTP_502_BAD_GATEWAY,
    FeatureDisabledError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(failure: AuthFailure) -> int:
    for cls in type(failure).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]

    return status.HTTP_400_BAD_REQUEST


async def auth_failure_handler(request: Request, exc: AuthFailure) -> JSONResponse:
    log = get_logger()
    await log.ainfo(
        "api.failure", code=exc.code, path=request.url.path, message=exc.message
    )

    return JSONResponse(status_code=status_code_for(exc), content=exc.to_dict())


async def stale_request_handler(
    request: Request, exc: StaleRequestError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"code": "REQUEST_NOT_FOUND", "message": str(exc)},
    )


async def redirect_invalid_handler(
    request: Request, exc: RedirectInvalidError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"code": "REDIRECT_INVALID", "message": str(exc)},
    )


async def transition_handler(
    request: Request, exc: RequestTransitionError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"code": "REQUEST_SETTLED", "message": str(exc)},
    )


def add_exception_handlers(app: FastAPI) -> FastAPI:
    app.add_exception_handler(AuthFailure, auth_failure_handler)
    app.add_exception_handler(StaleRequestError, stale_request_handler)
    app.add_exception_handler(RedirectInvalidError, redirect_invalid_handler)
    app.add_exception_handler(RequestTransitionError, transition_handler)
    return app
