from __future__ import annotations

from typing import List, Optional, Protocol

from authgate.logging import get_logger
from authgate.service.errors import (
    BadRequestError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ServiceError,
)
from authgate.storage.models import App

logger = get_logger(__name__)


class AppStore(Protocol):
    async def list_apps(self) -> List[App]: ...

    async def get_app(self, app_id: int) -> Optional[App]: ...

    async def get_app_by_name(self, name: str) -> Optional[App]: ...

    async def create_app(self, name: str, path: str) -> App: ...

    async def delete_app(self, app_id: int) -> bool: ...


class AppsService:
    """Registry of apps served behind the shared session."""

    def __init__(self, store: AppStore) -> None:
        self.store = store
        self.logger = logger

    async def list_apps(self) -> List[App]:
        try:
            return await self.store.list_apps()
        except Exception as exc:
            self.logger.error(
                "list_apps_failed", error_type=type(exc).__name__, error=str(exc)
            )
            raise DependencyError("Failed to load apps") from exc

    async def create_app(self, name: Optional[str], path: Optional[str]) -> App:
        if not name or not path:
            raise BadRequestError("App name and path are required")
        try:
            if await self.store.get_app_by_name(name):
                raise ConflictError("App with this name already exists")
            app = await self.store.create_app(name, path)
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.error(
                "create_app_failed",
                name=name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise DependencyError("Failed to create app. Please try again.") from exc
        self.logger.info("app_created", app_id=app.id, name=app.name)
        return app

    async def delete_app(self, app_id: int) -> None:
        try:
            if await self.store.get_app(app_id) is None:
                raise NotFoundError("App not found")
            await self.store.delete_app(app_id)
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.error(
                "delete_app_failed",
                app_id=app_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise DependencyError("Failed to delete app. Please try again.") from exc
        self.logger.info("app_deleted", app_id=app_id)
