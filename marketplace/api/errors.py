# marketplace/api/errors.py
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from marketplace.domain.results import ActionResult
from marketplace.utils.errors import MarketplaceError

STATUS_BY_KIND = {
    "validation": 400,
    "forbidden": 403,
    "not_found": 404,
    "contention": 409,
    "integrity": 409,
    "state": 409,
    "external": 502,
    "internal": 500,
}


def _detail(code, message, next_action, data) -> dict:
    return {"code": code, "message": message, "next_action": next_action, "context": data or {}}


def unwrap(result: ActionResult) -> Any:
    """ActionResult -> payload, or an HTTPException carrying the plain-language reason."""
    if result.ok:
        return result.data
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(result.kind, 500),
        detail=_detail(result.code, result.message, result.next_action, result.data),
    )


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    # query paths raise directly, commands come back as ActionResult
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(exc.kind, 500),
        content={"detail": _detail(exc.code, exc.message, exc.next_action, exc.context)},
    )
