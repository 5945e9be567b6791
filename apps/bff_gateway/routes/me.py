"""Current principal endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from apps.bff_gateway.auth.authenticator import RequestContext, principal_payload
from apps.bff_gateway.dependencies import get_request_context

router = APIRouter()


@router.get("/me")
async def me(context: RequestContext = Depends(get_request_context)) -> dict[str, Any]:
    """Return the principal snapshot taken at login.

    Anonymous callers never reach this handler; the request gate answers
    them with 401 or a redirect to the login entry point.
    """
    principal = context.principal
    if principal is None:
        raise RuntimeError("Protected route reached without a session")
    return principal_payload(principal)
