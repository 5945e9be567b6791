"""Delegated OAuth login: start and callback."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from apps.bff_gateway import config
from apps.bff_gateway.auth.authenticator import RequestContext, SessionAuthenticator
from apps.bff_gateway.auth.exceptions import IdentityProviderError
from apps.bff_gateway.auth.providers import IdentityProvider
from apps.bff_gateway.auth.session_store import mask_session_id
from apps.bff_gateway.dependencies import (
    get_authenticator,
    get_identity_provider,
    get_request_context,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/login-start")
async def login_start(
    provider: IdentityProvider = Depends(get_identity_provider),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
    context: RequestContext = Depends(get_request_context),
) -> Any:
    """Redirect the browser to the identity provider's login page.

    The response also carries the HttpOnly state cookie that binds the
    pending login to this browser.
    """
    state = authenticator.start_login(context)
    authorization_url = await provider.begin_login(state)
    logger.info(
        "OAuth login initiated",
        extra={"provider": provider.name, "client_ip": context.client_ip},
    )
    return RedirectResponse(url=authorization_url, status_code=302)


@router.get("/login-callback")
async def login_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    provider: IdentityProvider = Depends(get_identity_provider),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
    context: RequestContext = Depends(get_request_context),
) -> Any:
    """Complete the OAuth exchange and bind the principal to a new session.

    Args:
        code: Authorization code from the identity provider
        state: Single-use state issued by ``/login-start``
        error: Set by the provider when the user denied access

    Returns:
        RedirectResponse to the authenticated landing page; the new session
        and CSRF cookies are attached by the request gate

    Raises:
        HTTPException: 400 if the provider reported an error, omitted
            parameters, or the state was not issued to this browser
        IdentityProviderError: If the code exchange fails (mapped to 400)
        SessionLimitExceededError: Reject-new policy refused the login (mapped to 409)
    """
    client_ip = context.client_ip

    if error:
        context.clear_login_state = True
        logger.warning(
            "OAuth login denied by provider",
            extra={"provider": provider.name, "error": error, "client_ip": client_ip},
        )
        raise HTTPException(status_code=400, detail="Authentication failed")
    if not code or not state:
        context.clear_login_state = True
        raise HTTPException(status_code=400, detail="Missing code or state parameter")
    if not authenticator.verify_login_state(context, state):
        raise HTTPException(status_code=400, detail="Authentication failed")

    try:
        principal = await provider.complete_login(code=code, state=state)
    except IdentityProviderError as e:
        logger.error(
            "OAuth login failed",
            extra={"provider": provider.name, "error": str(e), "client_ip": client_ip},
        )
        raise

    session = await authenticator.complete_login(context, principal)

    logger.info(
        "Login completed",
        extra={
            "provider": provider.name,
            "subject": principal.subject,
            "session_id": mask_session_id(session.session_id),
            "client_ip": client_ip,
        },
    )
    return RedirectResponse(url=config.LOGIN_SUCCESS_URL, status_code=302)
