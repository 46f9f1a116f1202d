"""FastAPI route modules."""

from src.api import annotations, credentials, dashboard, findings, health, organizations

__all__ = ["annotations", "credentials", "dashboard", "findings", "health", "organizations"]
