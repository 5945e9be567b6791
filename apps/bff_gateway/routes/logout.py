"""Logout endpoint: invalidate the session and clear both cookies."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from apps.bff_gateway import config
from apps.bff_gateway.auth.authenticator import RequestContext, SessionAuthenticator
from apps.bff_gateway.auth.session_store import mask_session_id
from apps.bff_gateway.dependencies import get_authenticator, get_request_context

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/logout")
async def logout(
    authenticator: SessionAuthenticator = Depends(get_authenticator),
    context: RequestContext = Depends(get_request_context),
) -> Any:
    """Invalidate the current session.

    CSRF was already validated by the request gate. Cookie deletion is
    applied to the response by the gate from ``context.clear_cookies``.
    """
    session = context.session
    await authenticator.logout(context)

    if session is not None:
        logger.info(
            "User logged out",
            extra={
                "session_id": mask_session_id(session.session_id),
                "subject": session.principal.subject,
                "client_ip": context.client_ip,
            },
        )
    return RedirectResponse(url=config.LOGOUT_SUCCESS_URL, status_code=302)
