"""
FastAPI routes for the OAuth bridge.

Browser routes drive the authorization-code flow and keep a reference to the
stored token in the signed session. The background check routes are called
cross-origin by the provider's web UI with a signed identity assertion instead
of a session.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from oauth_bridge.clients.resource_api import ResourceAPIUnauthorizedError
from oauth_bridge.clients.oauth_provider import OAuthStateError
from oauth_bridge.dependencies import (
    get_api_client_factory,
    get_background_check_service,
    get_cors_gate,
    get_identity_verifier,
    get_oauth_provider_client,
    get_oauth_state_encoder,
    get_request_context,
    get_token_lifecycle_service,
)
from oauth_bridge.schemas import BackgroundCheckRequest, IntegrationStatus
from oauth_bridge.services.request_context import OAUTH_STATE_KEY, RequestContext
from oauth_bridge.services.token_display import summarize_token

router = APIRouter()
logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth"


def _redirect_home() -> RedirectResponse:
    return RedirectResponse(url="/", status_code=HTTPStatus.SEE_OTHER)


def _apply_cors(request: Request, response: Response, gate: Any) -> None:
    """Apply the gate and remember the headers for error responses."""
    request.state.cors_headers = gate.apply(response, request.headers.get("origin"))


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/", status_code=HTTPStatus.OK)
async def home(
    context: Annotated[RequestContext, Depends(get_request_context)],
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_service)],
    api_client_factory: Annotated[Any, Depends(get_api_client_factory)],
) -> dict:
    """Describe the signed-in person, or point the browser at the login flow."""
    record = await lifecycle.session_token(context)
    if record is None:
        return {"authenticated": False, "login_url": LOGIN_PATH}

    try:
        me = await api_client_factory.build(record.access_token).me()
    except ResourceAPIUnauthorizedError:
        # bad token, start over
        lifecycle.invalidate(record, context)
        return _redirect_home()

    return {"authenticated": True, "me": me, "token": summarize_token(record)}


@router.get("/auth")
async def start_authorization(
    context: Annotated[RequestContext, Depends(get_request_context)],
    oauth_client: Annotated[Any, Depends(get_oauth_provider_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
) -> RedirectResponse:
    """Send the browser to the provider's consent screen."""
    nonce = uuid.uuid4().hex
    context.session[OAUTH_STATE_KEY] = nonce
    state = state_encoder.encode({"nonce": nonce})
    authorization_url = oauth_client.build_authorization_url(state=state)
    return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)


@router.get("/auth/complete")
async def complete_authorization(
    context: Annotated[RequestContext, Depends(get_request_context)],
    oauth_client: Annotated[Any, Depends(get_oauth_provider_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_service)],
    state: str = Query(..., description="OAuth state issued by /auth."),
    code: str | None = Query(default=None, description="Authorization code."),
    error: str | None = Query(default=None, description="Provider error, if any."),
) -> RedirectResponse:
    """Exchange the authorization code, store the token and sign the browser in."""
    expected_nonce = context.session.pop(OAUTH_STATE_KEY, None)
    state_data = state_encoder.decode(state)
    nonce = state_data.get("nonce")
    if not expected_nonce or not isinstance(nonce, str) or not hmac.compare_digest(
        expected_nonce, nonce
    ):
        raise OAuthStateError("OAuth state does not belong to this session.")

    if error or not code:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Authorization was not granted: {error or 'missing code'}.",
        )

    payload = await oauth_client.exchange_authorization_code(code)
    record = await lifecycle.store_authorization(payload)
    context.bind(record)
    return _redirect_home()


@router.get("/auth/logout")
async def logout(
    context: Annotated[RequestContext, Depends(get_request_context)],
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_service)],
) -> RedirectResponse:
    """Revoke the session's token with the provider and clear the session."""
    record = await lifecycle.session_token(context)
    if record is not None:
        await lifecycle.revoke(record, context)
    else:
        context.clear()
    return _redirect_home()


@router.get("/auth/refresh")
async def refresh(
    context: Annotated[RequestContext, Depends(get_request_context)],
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_service)],
) -> RedirectResponse:
    """Force a refresh of the session's token."""
    await lifecycle.session_token(context, refresh=True)
    return _redirect_home()


@router.options("/add_background_check")
@router.options("/delete_background_check")
async def background_check_preflight(
    request: Request,
    gate: Annotated[Any, Depends(get_cors_gate)],
) -> Response:
    response = Response(status_code=HTTPStatus.OK)
    _apply_cors(request, response, gate)
    return response


async def _read_background_check(request: Request) -> BackgroundCheckRequest:
    """Parse the JSON body whatever content type the browser declared."""
    body = await request.body()
    try:
        return BackgroundCheckRequest.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Body must be a JSON object with a personId.",
            headers=request.state.cors_headers or None,
        ) from exc


@router.post("/add_background_check", response_model=IntegrationStatus)
async def add_background_check(
    request: Request,
    response: Response,
    gate: Annotated[Any, Depends(get_cors_gate)],
    verifier: Annotated[Any, Depends(get_identity_verifier)],
    service: Annotated[Any, Depends(get_background_check_service)],
) -> IntegrationStatus:
    """Mark the person's background check as clear for the asserted organization."""
    _apply_cors(request, response, gate)
    payload = await _read_background_check(request)
    identity = verifier.verify(payload.identity)
    await service.add(identity.organization_id, str(payload.person_id))
    return IntegrationStatus(status="added")


@router.post("/delete_background_check", response_model=IntegrationStatus)
async def delete_background_check(
    request: Request,
    response: Response,
    gate: Annotated[Any, Depends(get_cors_gate)],
    verifier: Annotated[Any, Depends(get_identity_verifier)],
    service: Annotated[Any, Depends(get_background_check_service)],
) -> IntegrationStatus:
    """Remove every background check the person has in the asserted organization."""
    _apply_cors(request, response, gate)
    payload = await _read_background_check(request)
    identity = verifier.verify(payload.identity)
    removed = await service.remove_all(identity.organization_id, str(payload.person_id))
    logger.info(
        "Removed %s background checks for organization %s",
        removed,
        identity.organization_id,
    )
    return IntegrationStatus(status="deleted")
