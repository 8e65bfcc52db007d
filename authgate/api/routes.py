from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Response

from authgate.api.cookies import (
    clear_session_cookie,
    load_cookie_session,
    set_session_cookie,
)
from authgate.api.schemas import (
    AppRequest,
    AppResponse,
    AuthResponse,
    CheckResponse,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RegisterRequest,
)
from authgate.service.auth import AuthResult
from authgate.service.runtime import get_runtime
from authgate.service.sessions import CookieSession

auth_router = APIRouter(prefix="/auth", tags=["auth"])
apps_router = APIRouter(prefix="/apps", tags=["apps"])


def _auth_response(response: Response, result: AuthResult, message: str) -> AuthResponse:
    runtime = get_runtime()
    set_session_cookie(response, result.session.key, runtime.settings)
    return AuthResponse(
        message=message,
        user=result.user.public(),
        cookie=result.session.key,
    )


@auth_router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    cookie_session: Optional[CookieSession] = Depends(load_cookie_session),
):
    """Create an account and sign the caller in.

    Raises:
        400: If any registration rule is violated (all violations listed)
        409: If the username, email or phone is already taken
    """
    runtime = get_runtime()
    result = await runtime.auth.register(
        body.username,
        body.email,
        body.phone,
        body.password,
        cookie_session=cookie_session,
    )
    return _auth_response(response, result, "Register successful")


@auth_router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    response: Response,
    cookie_session: Optional[CookieSession] = Depends(load_cookie_session),
):
    """Verify credentials and bind the user to a session.

    The returned ``cookie`` value doubles as a bearer key for API clients.
    """
    runtime = get_runtime()
    result = await runtime.auth.login(
        body.username, body.password, cookie_session=cookie_session
    )
    return _auth_response(response, result, "Login successful")


@auth_router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    cookie_session: Optional[CookieSession] = Depends(load_cookie_session),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    result = await runtime.auth.logout(
        cookie_session=cookie_session, authorization=authorization
    )
    if result.clear_cookie:
        clear_session_cookie(response, runtime.settings)
    return MessageResponse(message="Logout successful")


@auth_router.get("/profile", response_model=ProfileResponse, response_model_by_alias=True)
async def profile(
    cookie_session: Optional[CookieSession] = Depends(load_cookie_session),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    user = await runtime.auth.profile(
        cookie_session=cookie_session, authorization=authorization
    )
    return user.profile()


@auth_router.get("/check", response_model=CheckResponse)
async def check(
    cookie_session: Optional[CookieSession] = Depends(load_cookie_session),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    return await runtime.auth.check(
        cookie_session=cookie_session, authorization=authorization
    )


@apps_router.get("", response_model=List[AppResponse])
async def list_apps():
    runtime = get_runtime()
    apps = await runtime.apps.list_apps()
    return [app.to_dict() for app in apps]


@apps_router.post("", response_model=AppResponse, status_code=201)
async def create_app(body: AppRequest):
    runtime = get_runtime()
    app = await runtime.apps.create_app(body.name, body.path)
    return app.to_dict()


@apps_router.delete("/{app_id}", response_model=MessageResponse)
async def delete_app(app_id: int):
    runtime = get_runtime()
    await runtime.apps.delete_app(app_id)
    return MessageResponse(message="App deleted successfully")
