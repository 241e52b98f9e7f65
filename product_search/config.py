"""Application configuration and constants."""
from __future__ import annotations

import os
from dataclasses import dataclass


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value is not None else default


@dataclass(frozen=True)
class Settings:
    """Simple settings container with environment variable overrides."""

    solr_url: str = _get_env("SOLR_URL", "http://localhost:8983/solr")
    solr_core: str = _get_env("SOLR_CORE", "products")
    solr_timeout_seconds: float = float(_get_env("SOLR_TIMEOUT_SECONDS", "10"))
    default_rows: int = int(_get_env("SOLR_DEFAULT_ROWS", "20"))
    max_rows: int = int(_get_env("SOLR_MAX_ROWS", "100"))
    facet_limit: int = int(_get_env("SOLR_FACET_LIMIT", "100"))
    facet_mincount: int = int(_get_env("SOLR_FACET_MINCOUNT", "1"))
    mongo_url: str = _get_env("MONGO_URL", "mongodb://localhost:27017")
    default_tenant: str = _get_env("DEFAULT_TENANT", "default")
    default_lang: str = _get_env("DEFAULT_LANG", "it")
    entity_cache_ttl_seconds: float = float(_get_env("ENTITY_CACHE_TTL_SECONDS", "60"))
    entity_cache_backend: str = _get_env("ENTITY_CACHE_BACKEND", "memory")
    redis_host: str = _get_env("REDIS_HOST", "localhost")
    redis_port: int = int(_get_env("REDIS_PORT", "6379"))
    log_level: str = _get_env("LOG_LEVEL", "INFO")

    def core_for(self, tenant: str) -> str:
        """Engine core serving ``tenant``; the default tenant uses the configured core."""
        if not tenant or tenant == self.default_tenant:
            return self.solr_core
        return tenant


settings = Settings()
