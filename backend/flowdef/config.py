"""Environment-driven settings and logging setup."""

import logging
import os
import sys
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment."""

    database_path: str = "./data/flowdef.db"
    log_level: str = "INFO"
    worker_id: int = 1
    tree_view_limit: int = 100
    copy_suffix: str = "_copy"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", cls.database_path),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            worker_id=int(os.getenv("FLOWDEF_WORKER_ID", str(cls.worker_id))),
            tree_view_limit=int(
                os.getenv("FLOWDEF_TREE_VIEW_LIMIT", str(cls.tree_view_limit))
            ),
            copy_suffix=os.getenv("FLOWDEF_COPY_SUFFIX", cls.copy_suffix),
        )


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for processes embedding flowdef."""
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
