"""
api/routes/v1/auth.py -- Registration, login, token refresh and logout.

Routes:
  POST /api/v1/auth/register  -- create a USER account; 201 with user + token pair
  POST /api/v1/auth/login     -- password login under lockout protection
  POST /api/v1/auth/refresh   -- exchange a refresh token for a new access token
  POST /api/v1/auth/logout    -- end one session, or all of them when authenticated

Security:
  [H2] register and login carry their own, stricter per-IP rate limits. The
       limiter decorator sits below @router so FastAPI registers the wrapped
       function; SlowAPIMiddleware leaves decorated routes to the decorator.
  [C1] AccountService.login() runs bcrypt even for unknown emails.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthPayload,
    LoginRequest,
    LogoutRequest,
    RefreshPayload,
    RefreshRequest,
    RegisterRequest,
    success_response,
)
from auth.dependencies import client_info, optional_authenticate
from auth.models import User
from auth.service import AccountService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   public; all_sessions requires a bearer token
router = APIRouter()

_settings = get_settings()


@router.post("/auth/register", status_code=201)
@limiter.limit(_settings.register_rate_limit)  # [H2]
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a USER account and return it with a fresh token pair.

    Password strength is checked by the service so the response lists
    every violated rule at once.
    """
    accounts: AccountService = request.app.state.accounts
    user, pair = accounts.register(body.email, body.password, client_info(request), **body.profile())
    return success_response(
        AuthPayload.build(user, pair),
        message="User registered successfully.",
        status_code=201,
        no_store=True,
    )


@router.post("/auth/login")
@limiter.limit(_settings.login_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password share one response (invalid_credentials).
    A locked account answers 423 until its lock window passes.
    """
    accounts: AccountService = request.app.state.accounts
    user, pair = accounts.login(body.email, body.password, client_info(request))
    return success_response(AuthPayload.build(user, pair), message="Login successful.", no_store=True)


@router.post("/auth/refresh")
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    accounts: AccountService = request.app.state.accounts
    result = accounts.refresh(body.refresh_token, client_info(request))
    return success_response(
        RefreshPayload.from_result(result),
        message="Token refreshed successfully.",
        no_store=True,
    )


@router.post("/auth/logout")
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    user: Optional[User] = Depends(optional_authenticate),
) -> JSONResponse:
    """End the session behind `refresh_token`.

    Always succeeds: an unknown or already revoked token is not an error.
    With all_sessions=true and a valid bearer token every session of the
    caller is revoked.
    """
    body = body or LogoutRequest()
    accounts: AccountService = request.app.state.accounts
    revoked = accounts.logout(body.refresh_token, client_info(request), user=user, all_sessions=body.all_sessions)
    message = "Logged out from all sessions." if body.all_sessions and user is not None else "Logged out successfully."
    return success_response({"sessions_revoked": revoked}, message=message)
