"""MSP security dashboard: FastAPI application entry point."""

import logging
import logging.config
from contextlib import asynccontextmanager
from pathlib import Path

import yaml
from fastapi import FastAPI

from src.api import annotations, credentials, dashboard, findings, health, organizations
from src.clients.blumira import BlumiraClient
from src.config import Settings, get_settings
from src.logging_setup import configure_structured_logging
from src.models.annotation import AnnotationChange
from src.repositories.annotations import AnnotationStore
from src.repositories.storage import (
    JsonFileKeyValueMedium,
    MongoKeyValueMedium,
    create_mongo_client,
    ensure_indexes,
    get_database,
)
from src.services.aggregation import DashboardAggregator

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Load logging configuration from YAML."""
    log_config_path = Path("config/logging.yaml")
    if log_config_path.exists():
        with open(log_config_path) as f:
            config = yaml.safe_load(f)
        # Ensure log directory exists
        Path("data").mkdir(exist_ok=True)
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    configure_structured_logging()


def _log_annotation_change(change: AnnotationChange) -> None:
    logger.info(
        "Annotations changed (version=%s kind=%s findings=%s).",
        change.version,
        change.kind.value,
        len(change.finding_ids),
    )


async def _build_medium(settings: Settings):
    if settings.annotation_backend == "mongo":
        mongo_client = await create_mongo_client(settings.mongodb_uri or "")
        mongo_db = get_database(mongo_client, settings.mongodb_database)
        await ensure_indexes(mongo_db)
        return MongoKeyValueMedium(mongo_db), mongo_client
    return JsonFileKeyValueMedium(settings.annotation_data_dir), None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    setup_logging()
    logger.info("Dashboard service starting up...")
    mongo_client = None
    blumira_client: BlumiraClient | None = None

    try:
        settings = get_settings()
        medium, mongo_client = await _build_medium(settings)
        store = AnnotationStore(medium, storage_key=settings.annotation_storage_key)
        store.subscribe(_log_annotation_change)
        logger.info("Annotation store ready (backend=%s).", medium.name)

        blumira_client = BlumiraClient.from_settings(settings)
        if not blumira_client.has_credentials:
            logger.warning("Upstream credentials are not configured; dashboard data is unavailable until set.")

        app.state.settings = settings
        app.state.mongo_client = mongo_client
        app.state.annotation_store = store
        app.state.blumira_client = blumira_client
        app.state.aggregator = DashboardAggregator(blumira_client)
        app.state.allow_upstream_writes = settings.allow_upstream_writes

        logger.info("Dashboard service ready.")
        yield
    finally:
        # Shutdown
        logger.info("Dashboard service shutting down...")
        if blumira_client is not None:
            await blumira_client.close()
        if mongo_client is not None:
            mongo_client.close()


app = FastAPI(
    title="MSP Security Dashboard",
    description="Aggregated findings, organizations and agents with operator-local annotations",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(health.router)
app.include_router(credentials.router)
app.include_router(dashboard.router)
app.include_router(organizations.router)
app.include_router(findings.router)
app.include_router(annotations.router)
app.include_router(annotations.batch_router)


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}
