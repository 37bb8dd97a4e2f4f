"""Programmatic Alembic upgrades for the shared SQLite file."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]

_upgraded: set[Path] = set()
_upgrade_lock = threading.Lock()


def alembic_config(db_path: Path) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Migrate ``db_path`` to head once per process.

    Job store, feed repository and conversation memory share one file and each
    calls this on open; later calls for the same resolved path are no-ops.
    """

    resolved = db_path.resolve()
    with _upgrade_lock:
        if resolved in _upgraded:
            return
        resolved.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Upgrading schema of %s to head", resolved)
        command.upgrade(alembic_config(resolved), "head")
        _upgraded.add(resolved)
