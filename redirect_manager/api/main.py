import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from redirect_manager import __version__
from redirect_manager.adapters.sqlite.migrator import SQLiteMigrator
from redirect_manager.api.deps import get_settings
from redirect_manager.rules.loader import load_rules

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules and migrate on startup (fail-fast)
    try:
        load_rules(settings.rules_path)
        logger.info("Rules loaded from %s", settings.rules_path)
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        SQLiteMigrator(settings.db_path, settings.migrations_dir).run_migrations()
    except Exception:
        logger.critical("Startup failed", exc_info=True)
        raise

    yield


app = FastAPI(
    title="Redirect Manager API",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.get("/health")
def health_check() -> dict[str, Any]:
    return {"status": "ok", "version": __version__}


# --- Routers ---
from redirect_manager.api.routes import (  # noqa: E402
    admin_not_found,
    admin_redirects,
    hooks,
    public_redirects,
)

app.include_router(admin_redirects.router, prefix="/api/admin", tags=["Admin Redirects"])
app.include_router(admin_not_found.router, prefix="/api/admin", tags=["Admin Not Found"])
app.include_router(hooks.router, prefix="/api/hooks", tags=["Hooks"])
# Catch-all; must stay last
app.include_router(public_redirects.router, prefix="", tags=["Public Redirects"])
