"""
api/responses.py -- Builders for the {success, message, data, timestamp} envelope.

Every route and every exception handler goes through these two functions so
clients can parse any response with one schema. Pydantic models inside data
are dumped by alias (camelCase) in JSON mode.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.models import ApiResponse


def _jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, mode="json")
    return data


def success_response(
    data: Any = None,
    message: str = "Success",
    status_code: int = 200,
    *,
    no_store: bool = False,
) -> JSONResponse:
    """Wrap data in a success envelope.

    no_store=True adds Cache-Control: no-store [M5] -- used on every response
    that carries tokens.
    """
    body = ApiResponse(success=True, message=message, data=_jsonable(data))
    resp = JSONResponse(status_code=status_code, content=body.model_dump())
    if no_store:
        resp.headers["Cache-Control"] = "no-store"
    return resp


def error_response(
    message: str,
    status_code: int,
    data: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Wrap a failure in the same envelope with success=false."""
    body = ApiResponse(success=False, message=message, data=data)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)
