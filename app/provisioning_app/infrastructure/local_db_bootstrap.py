"""Start-up initialization of the dev/local SQLite stores.

The relational schema comes from ``setup/local_db/init_local_db.py`` so the
app and the tests build the same tables. A reset also drops the local
identity store, otherwise every roster row re-uploaded against the fresh
database conflicts with an identity left over from the previous run.
"""

from __future__ import annotations

import logging
from pathlib import Path
import subprocess
import sys

from provisioning_app.core.config import AppConfig
from provisioning_app.core.defaults import CREDENTIAL_STORE_LOCAL
from provisioning_app.core.env import (
    PROVISIONING_LOCAL_DB_AUTO_INIT,
    PROVISIONING_LOCAL_DB_RESET_ON_START,
    get_env_bool,
)

LOGGER = logging.getLogger(__name__)
REPO_ROOT = Path(__file__).resolve().parents[3]
INIT_SCRIPT = REPO_ROOT / "setup" / "local_db" / "init_local_db.py"


class LocalDbBootstrapError(RuntimeError):
    pass


def _init_command(init_script: Path, db_path: Path, *, reset: bool) -> list[str]:
    cmd = [sys.executable, str(init_script), "--db-path", str(db_path)]
    if reset:
        cmd.append("--reset")
    return cmd


def _drop_local_identities(config: AppConfig) -> None:
    if config.credential_store_mode != CREDENTIAL_STORE_LOCAL:
        return
    identity_db = Path(config.local_identity_db_path).resolve()
    if identity_db.exists():
        identity_db.unlink()
        LOGGER.info(
            "Local identity store dropped. path=%s",
            identity_db,
            extra={"event": "local_identity_store_reset", "db_path": str(identity_db)},
        )


def ensure_local_db_ready(config: AppConfig, *, init_script: Path = INIT_SCRIPT) -> bool:
    """Create (or recreate) the local database. Returns True when the init script ran."""
    if not config.use_local_db:
        return False
    if not get_env_bool(PROVISIONING_LOCAL_DB_AUTO_INIT, default=True):
        return False

    db_path = Path(config.local_db_path).resolve()
    reset = get_env_bool(PROVISIONING_LOCAL_DB_RESET_ON_START, default=False)
    if db_path.exists() and not reset:
        return False
    if not init_script.exists():
        raise LocalDbBootstrapError(f"Local DB init script not found: {init_script}")

    cmd = _init_command(init_script, db_path, reset=reset)
    result = subprocess.run(cmd, capture_output=True, text=True, cwd=str(REPO_ROOT), check=False)
    if result.returncode != 0:
        raise LocalDbBootstrapError(
            "Local DB bootstrap failed.\n"
            f"Command: {' '.join(cmd)}\n"
            f"stdout:\n{result.stdout}\n"
            f"stderr:\n{result.stderr}"
        )
    if reset:
        _drop_local_identities(config)

    LOGGER.info(
        "Local DB initialized. path=%s reset=%s",
        db_path,
        str(reset).lower(),
        extra={"event": "local_db_initialized", "db_path": str(db_path), "reset": reset},
    )
    return True
