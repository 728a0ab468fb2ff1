"""
FastAPI dependencies: the application context and the request principal.

The principal is the user id supplied by the external auth layer in the
``X-User-Id`` header.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException

from site_spine.context import AppContext, get_context


def get_app_context() -> AppContext:
    return get_context()


def get_principal(x_user_id: Annotated[str | None, Header()] = None) -> str:
    principal = (x_user_id or "").strip()
    if not principal:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return principal


Context = Annotated[AppContext, Depends(get_app_context)]
Principal = Annotated[str, Depends(get_principal)]
