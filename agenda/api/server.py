"""
FastAPI server for the agenda API. Run with run_api_server(app) (blocks) from the CLI.
Central endpoints: GET /api/health, GET /api/tasks. Per-plugin routes are mounted
from agenda.plugins.<package>.api (get_router(agenda_app)) under /api/components/<package>/.
Docs: http://<host>:<port>/docs
"""
import importlib
import logging
import pkgutil
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agenda import __version__
from agenda.core.errors import AggregateSourceError, ProviderError, SourceUnavailable

logger = logging.getLogger(__name__)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _error_body(exc: Exception, **extra: Any) -> Dict[str, Any]:
    return {"detail": str(exc), "error": exc.__class__.__name__, **extra}


def create_app(agenda_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given AgendaApp instance."""
    app = FastAPI(title="Personal Agenda API", description="Merged calendar and prayer times", version=__version__)

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
        logger.warning(f"{request.url.path}: {exc}")
        return JSONResponse(status_code=502, content=_error_body(exc, provider=exc.provider, status=exc.status))

    @app.exception_handler(AggregateSourceError)
    async def aggregate_error_handler(request: Request, exc: AggregateSourceError) -> JSONResponse:
        logger.warning(f"{request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content=_error_body(exc, sources={name: str(e) for name, e in exc.failures.items()}),
        )

    @app.exception_handler(SourceUnavailable)
    async def source_unavailable_handler(request: Request, exc: SourceUnavailable) -> JSONResponse:
        logger.warning(f"{request.url.path}: {exc}")
        return JSONResponse(status_code=503, content=_error_body(exc, source=exc.source))

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__, "time": _serialize_datetime(agenda_app.clock())}

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """List scheduled tasks: DB schedules and active in-memory timers."""
        from agenda.core.models import get_all_task_schedules

        db_schedules = get_all_task_schedules(agenda_app.database)
        for row in db_schedules:
            row["next_run_at"] = _serialize_datetime(row.get("next_run_at"))
            row["last_run_at"] = _serialize_datetime(row.get("last_run_at"))

        active_list = [
            {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
            for t in agenda_app.task_manager.get_active_timers()
        ]
        return {"db_schedules": db_schedules, "active_timers": active_list}

    # Mount per-plugin API routers from agenda.plugins.<name>.api (get_router(agenda_app))
    plugins_pkg = importlib.import_module("agenda.plugins")
    for _mod, name, is_pkg in pkgutil.iter_modules(plugins_pkg.__path__):
        if not is_pkg:
            continue
        try:
            api_module = importlib.import_module(f"agenda.plugins.{name}.api")
        except ModuleNotFoundError as e:
            if e.name != f"agenda.plugins.{name}.api":
                raise
            continue
        if not callable(getattr(api_module, "get_router", None)):
            continue
        router = api_module.get_router(agenda_app)
        if router is not None:
            app.include_router(router, prefix=f"/api/components/{name}")
            logger.debug(f"Mounted API router for plugin {name}")

    return app


def run_api_server(agenda_app: Any, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """
    Serve the API with uvicorn until interrupted.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config unless given.
    """
    import uvicorn

    api_config = agenda_app.config.get_section("api")
    host = host or api_config.get("host", "127.0.0.1")
    port = int(port or api_config.get("port", 8765))
    fastapi_app = create_app(agenda_app)
    logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
    uvicorn.run(fastapi_app, host=host, port=port, log_config=None)
