"""
Collector settings from the environment.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from sentra_hub.db import PostgresStore
from sentra_hub.store import MemoryStore, Store

TRUE_VALUES = ('1', 'true', 'yes', 'on')


@dataclass
class CollectorSettings:
    db_url: Optional[str] = None
    store: str = 'postgres'
    allow_unclaimed_commands: bool = True
    status_limit: int = 50
    statement_timeout_ms: int = 5000
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'CollectorSettings':
        env = os.environ if environ is None else environ
        return cls(
            db_url=env.get('SENTRA_DB_URL'),
            store=env.get('SENTRA_STORE', 'postgres').lower(),
            allow_unclaimed_commands=env.get('SENTRA_ALLOW_UNCLAIMED_COMMANDS', 'true').lower() in TRUE_VALUES,
            status_limit=int(env.get('SENTRA_STATUS_LIMIT', '50')),
            statement_timeout_ms=int(env.get('SENTRA_STATEMENT_TIMEOUT_MS', '5000')),
            log_level=env.get('SENTRA_LOG_LEVEL', 'INFO')
        )


def build_store(settings: CollectorSettings) -> Store:
    """Create the Store selected by settings"""
    if settings.store == 'memory':
        return MemoryStore()

    if settings.store != 'postgres':
        raise ValueError(f"Unknown SENTRA_STORE: {settings.store}. Must be postgres or memory")

    if not settings.db_url:
        raise ValueError(
            "SENTRA_DB_URL environment variable not set. "
            "Please set it to your PostgreSQL connection string."
        )

    return PostgresStore(settings.db_url, statement_timeout_ms=settings.statement_timeout_ms)
