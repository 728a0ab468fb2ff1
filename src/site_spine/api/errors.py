"""Maps site-spine errors to HTTP responses."""

from fastapi import Request
from fastapi.responses import JSONResponse

from site_spine.errors import ErrorCategory, SiteSpineError

CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTH: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.GENERATION: 502,
    ErrorCategory.STORAGE: 502,
    ErrorCategory.CONFIG: 500,
    ErrorCategory.INTERNAL: 500,
}


def status_for_error(error: SiteSpineError) -> int:
    """Resolve an error category to HTTP status, defaulting to 500."""
    return CATEGORY_TO_STATUS.get(error.category, 500)


async def site_spine_error_handler(request: Request, exc: SiteSpineError) -> JSONResponse:
    return JSONResponse(status_code=status_for_error(exc), content={"detail": exc.to_dict()})
