"""Application wiring - builds all components and manages lifecycle."""

from __future__ import annotations

from typing import Iterable, Optional

from chatloom.config import AppConfig
from chatloom.core.orchestrator import SessionOrchestrator
from chatloom.log import get_logger
from chatloom.plugins.base import ChatPlugin
from chatloom.providers.registry import ProviderRegistry
from chatloom.providers.transport import AiohttpTransport, Transport
from chatloom.storage.session_store import SessionStore

logger = get_logger(__name__)


class ChatloomApp:
    """Top-level application object."""

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[Transport] = None,
        plugins: Iterable[ChatPlugin] = (),
    ):
        self.config = config
        self.transport = transport or AiohttpTransport()
        self.registry = ProviderRegistry.with_defaults(self.transport)
        self.store: Optional[SessionStore] = None
        if config.storage.enabled:
            self.store = SessionStore(config.storage.db_path, recent_ttl_days=config.storage.recent_ttl_days)
        self.orchestrator = SessionOrchestrator(
            self.registry,
            config.provider,
            memory=config.memory,
            system_prompt=config.system_prompt or None,
            plugins=plugins,
            store=self.store,
            session_id=config.session_id,
            tools=config.tools or None,
        )

    async def start(self, restore: bool = True) -> None:
        """Initialize storage and pick up the recent session."""
        # 1. Validate provider selection early
        self.registry.get_for(self.config.provider)

        # 2. Database
        if self.store is not None:
            await self.store.initialize()

        # 3. Recent session
        if restore and self.config.session_id is None:
            await self.orchestrator.restore_recent()

        logger.info(
            "chatloom_started",
            provider=self.config.provider.provider,
            model=self.config.provider.model,
            session_id=self.orchestrator.session_id,
            storage=self.store is not None,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.orchestrator.flush()
        try:
            await self.transport.close()
        except Exception as e:
            logger.error("transport_close_error", error=str(e))
        if self.store is not None:
            await self.store.close()
        logger.info("chatloom_stopped")
