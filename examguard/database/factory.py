"""
Database Adapter Factory for the Exam Proctoring System

Decides once per factory which backend serves the application: Oracle when
USE_ORACLE is set and the Oracle adapter passes its availability probe,
otherwise the relational adapter. The choice is cached for the factory's
lifetime and never re-evaluated.
"""

import logging
from typing import Any, Dict, Optional

from examguard.config import Settings, settings as default_settings
from examguard.database.base import DatabaseAdapter
from examguard.database.fields import validate_field_tables
from examguard.database.oracle_adapter import OracleAdapter
from examguard.database.relational_adapter import RelationalAdapter

logger = logging.getLogger(__name__)


class AdapterFactory:
    """Selects a database adapter with Oracle-to-relational fallback."""

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings
        self._adapter: Optional[DatabaseAdapter] = None
        self.fell_back = False

    async def get_adapter(self) -> DatabaseAdapter:
        """Build the adapter on first call; return the same instance afterwards."""
        if self._adapter is None:
            self._adapter = self._select_adapter()
        return self._adapter

    def _select_adapter(self) -> DatabaseAdapter:
        validate_field_tables()

        if self.settings.USE_ORACLE:
            oracle = OracleAdapter.from_settings(self.settings)
            if oracle.is_available:
                logger.info("✅ Using Oracle database adapter")
                return oracle

            logger.warning("⚠️ Oracle not available, falling back to relational adapter")
            self.fell_back = True

        adapter = RelationalAdapter(
            database_url=self.settings.DATABASE_URL,
            owner_open_id=self.settings.OWNER_OPEN_ID,
            echo=self.settings.DB_ECHO
        )
        logger.info("✅ Using relational database adapter")
        return adapter

    def get_status(self) -> Dict[str, Any]:
        """Current selection status."""
        if self._adapter is None:
            return {"selected": False, "oracle_requested": self.settings.USE_ORACLE}

        status = self._adapter.get_status()
        status.update({
            "selected": True,
            "oracle_requested": self.settings.USE_ORACLE,
            "fell_back": self.fell_back,
        })
        return status

    async def close(self):
        if self._adapter is not None:
            await self._adapter.close()


# Process-wide default factory for callers without an injected adapter
_default_factory: Optional[AdapterFactory] = None


def get_default_factory() -> AdapterFactory:
    global _default_factory

    if _default_factory is None:
        _default_factory = AdapterFactory()

    return _default_factory


async def get_database_adapter() -> DatabaseAdapter:
    """Get or create the process-wide adapter."""
    return await get_default_factory().get_adapter()


async def close_database_adapter():
    """Close the process-wide adapter and forget the selection."""
    global _default_factory

    if _default_factory:
        await _default_factory.close()
        _default_factory = None
