"""HTTP boundary for the account and parcel APIs."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, Field
from pydantic import ValidationError as PayloadValidationError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .accounts import AccountManager
from .config import Settings, load_settings
from .database import Database
from .errors import AccountError, ValidationError
from .mailer import DevMailer, ResetMailer, SMTPMailer
from .models import User
from .parcels import (
    GeoJSONFormatter,
    ParcelArrayFormatter,
    ParcelFilterError,
    ParcelFormatter,
    ParcelSource,
    lookup_parcels,
    parse_parcel_query,
)
from .sessions import SessionManager
from .tokens import ResetTokenCodec
from .transport import SchemeTransportGate, TransportGate

logger = logging.getLogger("localdata.service")

SESSION_COOKIE_NAME = "localdata_session"
AFTER_LOGIN_PATH = "/api/user"
INVALID_REQUEST = "Invalid request"

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class SignupRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotUser(BaseModel):
    email: Optional[str] = None


class ForgotRequest(BaseModel):
    user: ForgotUser = Field(default_factory=ForgotUser)


class ResetFields(BaseModel):
    email: Optional[str] = None
    token: Optional[str] = None
    code: Optional[str] = Field(default=None, description="Serialized reset code from the email link")
    password: Optional[str] = None


class ResetRequest(BaseModel):
    reset: ResetFields = Field(default_factory=ResetFields)


class UserView(BaseModel):
    id: str
    name: str
    email: str


class StatusResponse(BaseModel):
    status: str


def _user_to_view(user: User) -> UserView:
    return UserView(**user.public_fields())


async def _read_payload(request: Request, model: Type[PayloadT]) -> PayloadT:
    """Decode the JSON body into ``model``.

    Account routes read their own body so the transport gate can run first.
    Malformed JSON and wrong field types become a plain validation error that
    never echoes the submitted values.
    """

    raw = await request.body()
    data: Any = {}
    if raw.strip():
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ValidationError(INVALID_REQUEST) from exc
    try:
        return model.model_validate(data)
    except PayloadValidationError as exc:
        raise ValidationError(INVALID_REQUEST) from exc


async def _account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Account operation on %s failed", request.url.path, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected malformed request to %s", request.url.path)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": INVALID_REQUEST})


def _build_mailer(settings: Settings) -> ResetMailer:
    if settings.smtp_host:
        return SMTPMailer(
            settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.mail_sender,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
        )
    logger.warning("No SMTP host configured; password reset emails will only be logged.")
    return DevMailer()


def register_account_routes(
    app: FastAPI,
    accounts: AccountManager,
    *,
    gate: TransportGate,
    secure_cookies: bool,
) -> None:
    """Expose signup, login, logout, profile and reset endpoints."""

    router = APIRouter(prefix="/api")

    def _issue_session_cookie(response: Response, token: str) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=accounts.sessions.cookie_max_age,
            secure=secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )

    def _signed_in_redirect(token: str) -> RedirectResponse:
        response = RedirectResponse(url=AFTER_LOGIN_PATH, status_code=status.HTTP_302_FOUND)
        _issue_session_cookie(response, token)
        return response

    @router.post("/user")
    async def signup(request: Request) -> RedirectResponse:
        gate.require_secure(request)
        payload = await _read_payload(request, SignupRequest)
        _, token = await accounts.signup(
            request,
            name=payload.name,
            email=payload.email,
            password=payload.password,
        )
        return _signed_in_redirect(token)

    @router.post("/login")
    async def login(request: Request) -> RedirectResponse:
        gate.require_secure(request)
        payload = await _read_payload(request, LoginRequest)
        existing = request.cookies.get(SESSION_COOKIE_NAME)
        _, token = await accounts.login(request, email=payload.email, password=payload.password)
        if existing:
            accounts.logout(existing)
        return _signed_in_redirect(token)

    @router.get("/user", response_model=UserView)
    async def whoami(request: Request) -> UserView:
        user = await accounts.whoami(request.cookies.get(SESSION_COOKIE_NAME))
        return _user_to_view(user)

    @router.put("/user", response_model=UserView)
    async def update_profile(request: Request) -> UserView:
        gate.require_secure(request)
        payload = await _read_payload(request, ProfileUpdateRequest)
        user = await accounts.update_profile(
            request,
            request.cookies.get(SESSION_COOKIE_NAME),
            name=payload.name,
            email=payload.email,
            password=payload.password,
        )
        return _user_to_view(user)

    @router.post("/user/forgot", response_model=StatusResponse)
    async def forgot_password(request: Request) -> StatusResponse:
        payload = await _read_payload(request, ForgotRequest)
        await accounts.request_reset(payload.user.email)
        return StatusResponse(status="ok")

    @router.post("/user/reset")
    async def reset_password(request: Request) -> RedirectResponse:
        gate.require_secure(request)
        fields = (await _read_payload(request, ResetRequest)).reset
        if fields.code:
            _, token = await accounts.confirm_reset_code(
                request,
                code=fields.code,
                password=fields.password,
            )
        else:
            _, token = await accounts.confirm_reset(
                request,
                email=fields.email,
                token=fields.token,
                password=fields.password,
            )
        return _signed_in_redirect(token)

    app.include_router(router)

    @app.get("/logout", response_model=StatusResponse)
    async def logout(request: Request) -> JSONResponse:
        accounts.logout(request.cookies.get(SESSION_COOKIE_NAME))
        response = JSONResponse({"status": "ok"})
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        return response


def register_parcel_routes(app: FastAPI, source: ParcelSource) -> None:
    """Expose parcel lookups as a custom JSON array and as GeoJSON."""

    async def _respond(
        formatter: ParcelFormatter,
        bbox: Optional[str],
        lon: Optional[str],
        lat: Optional[str],
    ) -> Any:
        try:
            query = parse_parcel_query(bbox, lon, lat)
        except ParcelFilterError as exc:
            raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

        try:
            return await lookup_parcels(source, query, formatter)
        except Exception as exc:
            logger.error("Parcel lookup failed", exc_info=exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error",
            ) from exc

    @app.get("/api/parcels")
    async def parcels(
        bbox: Optional[str] = Query(default=None, description="west,south,east,north"),
        lon: Optional[str] = Query(default=None),
        lat: Optional[str] = Query(default=None),
    ) -> Any:
        return await _respond(ParcelArrayFormatter(), bbox, lon, lat)

    @app.get("/api/parcels.geojson")
    async def parcels_geojson(
        bbox: Optional[str] = Query(default=None, description="west,south,east,north"),
        lon: Optional[str] = Query(default=None),
        lat: Optional[str] = Query(default=None),
    ) -> Any:
        return await _respond(GeoJSONFormatter(), bbox, lon, lat)


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    mailer: ResetMailer | None = None,
    gate: TransportGate | None = None,
    sessions: SessionManager | None = None,
    parcel_source: ParcelSource | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application.

    The database handle is owned by the caller (normally ``main``); when it is
    omitted one is built from ``settings`` and initialised here.
    """

    settings = settings or load_settings()
    if not settings.secret_key:
        raise RuntimeError("LOCALDATA_SECRET_KEY must be configured to serve account requests")

    if database is None:
        database = Database(settings.database_path)
        database.initialize()

    if not settings.session_secure:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    gate = gate or SchemeTransportGate(allow_insecure=settings.allow_insecure_transport)
    sessions = sessions or SessionManager(ttl=timedelta(hours=settings.session_ttl_hours))
    mailer = mailer or _build_mailer(settings)

    accounts = AccountManager(
        database,
        sessions,
        ResetTokenCodec(settings.secret_key),
        mailer,
        gate,
        reset_ttl=timedelta(minutes=settings.reset_ttl_minutes),
        reset_link_template=settings.reset_link_template,
        clock=clock,
    )

    app = FastAPI(
        title="LocalData API",
        version="0.1.0",
        description="Parcel lookups and user accounts for LocalData surveys.",
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.trusted_proxies)
    app.add_exception_handler(AccountError, _account_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    app.state.settings = settings
    app.state.database = database
    app.state.mailer = mailer
    app.state.accounts = accounts

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    register_account_routes(app, accounts, gate=gate, secure_cookies=settings.session_secure)
    if parcel_source is not None:
        register_parcel_routes(app, parcel_source)

    return app


__all__ = ["SESSION_COOKIE_NAME", "create_app", "register_account_routes", "register_parcel_routes"]
