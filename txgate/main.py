from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Mapping

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from txgate import __version__
from txgate.auth import EXPOSED_METHODS, AuthService, SessionManager
from txgate.config import Settings, load_settings
from txgate.context import RequestContext
from txgate.db import Database
from txgate.dispatcher import Dispatcher
from txgate.email import EmailService
from txgate.logging import AuditLogger, get_logger
from txgate.responses import ErrorKind, Response, failure
from txgate.security import HandlerSpec, SecurityRegistry

logger = get_logger("app")


def build_handlers(auth: AuthService) -> dict[str, HandlerSpec]:
    return {"Auth": HandlerSpec(factory=lambda: auth, methods=EXPOSED_METHODS)}


def create_app(
    settings: Settings | None = None,
    email: EmailService | None = None,
    database: Database | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    database = database or Database(settings.database_url)
    email = email or EmailService(settings.email, app_name=settings.app_name)
    audit = AuditLogger(database)
    sessions = SessionManager(database, settings.session_secret, settings.auth.session_ttl_seconds)
    auth = AuthService(settings.auth, database, email, sessions, audit=audit, app_name=settings.app_name)
    registry = SecurityRegistry(database, build_handlers(auth))
    dispatcher = Dispatcher(registry, sessions, audit, public_profile_id=settings.auth.public_profile_id)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.auto_create_schema:
            await database.create_schema()
        registry.start()
        logger.info("%s started (env=%s)", settings.app_name, settings.app_env)
        yield
        await database.dispose()

    app = FastAPI(title="txgate", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.registry = registry
    app.state.auth = auth
    app.state.dispatcher = dispatcher

    cookie_name = settings.auth.device_cookie_name

    async def request_context(request: Request) -> RequestContext:
        header = request.headers.get("authorization", "")
        token = header[7:].strip() if header.lower().startswith("bearer ") else ""
        context = RequestContext(
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            session_token=token or None,
            device_token=request.cookies.get(cookie_name),
        )
        return await dispatcher.authenticate(context)

    async def read_body(request: Request) -> Mapping[str, Any] | None:
        try:
            body = await request.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    def render(response: Response) -> JSONResponse:
        payload = response.to_dict()
        data = payload.get("data")
        device_token = data.pop("device_token", None) if isinstance(data, dict) else None
        result = JSONResponse(status_code=response.code, content=payload)
        if device_token:
            result.set_cookie(
                cookie_name,
                device_token,
                max_age=settings.auth.device_cookie_max_age_seconds,
                httponly=True,
                samesite="lax",
                secure=settings.app_env == "production",
            )
        return result

    @app.get("/health")
    async def health():
        try:
            async with database.engine.connect() as connection:
                await connection.execute(text("select 1"))
        except Exception as exc:
            raise HTTPException(status_code=503, detail="database_unavailable") from exc
        return {"status": "ok"}

    @app.get("/ready")
    async def ready():
        if registry.is_ready:
            return {"status": "ready"}
        return render(failure(ErrorKind.SERVICE_UNAVAILABLE))

    @app.post("/tx")
    async def tx(request: Request):
        body = await read_body(request)
        if body is None or body.get("tx") is None:
            return render(failure(ErrorKind.INVALID_PARAMETERS, ["tx is required"]))
        params = body.get("params")
        if params is not None and not isinstance(params, dict):
            return render(failure(ErrorKind.INVALID_PARAMETERS, ["params must be an object"]))
        context = await request_context(request)
        return render(await dispatcher.process(body["tx"], params or {}, context))

    @app.post("/login")
    async def login(request: Request):
        body = await read_body(request)
        if body is None:
            return render(failure(ErrorKind.INVALID_PARAMETERS, ["body must be a JSON object"]))
        context = await request_context(request)
        return render(await auth.login(body, context))

    @app.post("/logout")
    async def logout(request: Request):
        context = await request_context(request)
        return render(await auth.logout({}, context))

    return app
