from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.dependencies import get_rbac
from app.core.errors import Conflict, Forbidden, InvalidArgument, NotFound, RbacError, StorageFailure
from app.features.assignments.routes import router as assignment_router
from app.features.authorization.routes import router as authorization_router
from app.features.authorization.schemas import ResetRequest
from app.features.entities.routes import build_router
from app.rbac import Rbac
from app.utils import get_logger


log = get_logger(__name__)

ERROR_STATUS = (
    (NotFound, 404),
    (InvalidArgument, 400),
    (Conflict, 409),
    (Forbidden, 403),
    (StorageFailure, 503),
)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


def create_app(rbac: Optional[Rbac] = None, rate_limit: str = config.RATE_LIMIT) -> FastAPI:
    """
    Build the HTTP application around an authority store.

    Without ``rbac`` a store is created from the configured DATABASE_URL and
    initialised on startup. A store passed in is used as is; the caller owns
    its initialisation and disposal.
    """
    log.info("Initializing server")
    app = FastAPI(
        title="RBAC Authority Store",
        description="Hierarchical roles and permissions with nested-set storage",
        version="0.1.0",
        docs_url="/docs" if config.ENABLE_DOCS else None,
        redoc_url="/redoc" if config.ENABLE_DOCS else None,
        openapi_url="/openapi.json" if config.ENABLE_DOCS else None,
    )
    owns_store = rbac is None
    app.state.rbac = rbac or Rbac()

    limiter = Limiter(key_func=get_remote_address, default_limits=[rate_limit])
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

    if config.ENABLE_DOCS:
        log.warning("Docs enabled")
    if config.ALLOW_ORIGIN:
        log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[config.ALLOW_ORIGIN],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        errors = dict()
        for error in exc.errors():
            if "loc" not in error or "msg" not in error:
                continue
            key = error["loc"][-1]
            if key == "__root__":
                key = "root"
            errors[key] = error["msg"]
        log.info("Request validation error %s", errors)
        return JSONResponse(status_code=400, content=jsonable_encoder(errors))

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
        return JSONResponse({"error": "You are going too fast"}, status_code=429)

    @app.exception_handler(RbacError)
    async def rbac_error_handler(_request: Request, exc: RbacError) -> Response:
        for error_type, status_code in ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code = 500
        if status_code >= 500:
            log.error("Request failed: %s", exc)
        else:
            log.info("Request rejected (%s): %s", type(exc).__name__, exc)
        return JSONResponse({"error": str(exc), "kind": type(exc).__name__}, status_code=status_code)

    @app.on_event("startup")
    async def startup():
        if owns_store:
            log.info("Initializing database...")
            await app.state.rbac.init()
            log.info("Database initialized successfully")

    @app.on_event("shutdown")
    async def shutdown():
        if owns_store:
            await app.state.rbac.close()

    @app.get("/")
    async def root():
        """Root endpoint - API health check."""
        return {
            "message": "RBAC Authority Store API",
            "version": "0.1.0",
            "status": "online",
            "docs": "/docs" if config.ENABLE_DOCS else None,
            "features": {
                "roles": "Role hierarchy (nested sets)",
                "permissions": "Permission hierarchy (nested sets)",
                "assignments": "Role/permission and role/subject edges",
                "authorization": "Permission checks with hierarchical grants",
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post("/reset")
    async def reset(body: ResetRequest, store: Rbac = Depends(get_rbac)):
        """Remove every node and edge. Requires {"confirm": true}."""
        await store.reset(body.confirm)
        return {"status": "reset"}

    # Include routers
    app.include_router(build_router("roles"), prefix="/roles", tags=["roles"])
    app.include_router(build_router("permissions"), prefix="/permissions", tags=["permissions"])
    app.include_router(assignment_router, prefix="/assignments", tags=["assignments"])
    app.include_router(authorization_router, prefix="/authorization", tags=["authorization"])

    return app
