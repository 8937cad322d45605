"""Smart Home Bridge web application."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smarthome.auth.authority import Authority
from smarthome.core.config import AuthConfig, settings
from smarthome.core.database import create_db_and_tables
from smarthome.core.errors import BridgeError, bridge_error_handler
from smarthome.core.persistence import open_blob_store
from smarthome.core.scheduler import shutdown_scheduler, start_scheduler
from smarthome.devices import DeviceRegistry
from smarthome.homegraph.reporter import StateReporter
from smarthome.intents.dispatcher import IntentDispatcher
from smarthome.routes import local, oauth, smarthome

# Configure logging
log_dir = Path.home() / ".logs" / "smarthome-bridge"
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / "latest.log"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    filename=str(log_file),
)
logger = logging.getLogger(__name__)


def build_bridge(app: FastAPI) -> None:
    """Create the bridge components and attach them to app.state."""
    registry = DeviceRegistry()
    if settings.devices_file:
        try:
            registry.load_file(settings.devices_file)
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to load devices from {settings.devices_file}: {e}")

    authority = Authority(
        AuthConfig.from_settings(settings),
        persistence=open_blob_store(settings.node_id, settings.auth_file),
    )
    authority.load()

    app.state.registry = registry
    app.state.authority = authority
    app.state.reporter = StateReporter(
        authority, registry, service_account_file=settings.service_account_file or None
    )
    app.state.dispatcher = IntentDispatcher(
        authority,
        registry,
        node_id=settings.node_id,
        local_execution=settings.local_execution,
        http_port=settings.port,
        local_path_prefix=settings.local_path_prefix,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    # Startup
    logger.info("Starting Smart Home Bridge")
    create_db_and_tables()
    build_bridge(app)
    start_scheduler(app.state.authority)
    yield
    # Shutdown
    shutdown_scheduler()
    logger.info("Smart Home Bridge shut down")


app = FastAPI(
    title=settings.app_name,
    description="OAuth2 authority and smart home fulfillment bridge for local devices",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for external access
origins = (
    ["*"]
    if settings.allowed_origins == "*"
    else [o.strip() for o in settings.allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(BridgeError, bridge_error_handler)

# Include routers
app.include_router(smarthome.router, prefix=settings.http_path_prefix)
app.include_router(oauth.router, prefix=settings.http_path_prefix)
app.include_router(local.router, prefix=settings.local_path_prefix)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}
