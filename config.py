"""Application configuration — environment variables and derived paths.

Loads ``MULTIS_HOME``, ``MULTIS_CONFIG_PATH``, ``MULTIS_DB_PATH`` and
``MULTIS_SKILLS_DIR`` from the environment via ``python-dotenv``.  All values
are resolved at import time so other modules can ``from config import …``
without repeated lookups.  Runtime settings (pairing code, users, policy)
live in :mod:`core.config_store`, not here.
"""

# ── stdlib ───────────────────────────────────────────────────────────────────
import os

# ── third-party ──────────────────────────────────────────────────────────────
from dotenv import load_dotenv

# ── core ─────────────────────────────────────────────────────────────────────
from core.logger import MultisLogger

# ── Environment bootstrap ────────────────────────────────────────────────────
load_dotenv()

logger = MultisLogger.get_logger()


def _resolve_home() -> str:
    """Return the multis state directory (``MULTIS_HOME`` or ``~/.multis``)."""
    from_env = os.environ.get("MULTIS_HOME")
    if from_env:
        return os.path.abspath(os.path.expanduser(from_env))
    return os.path.join(os.path.expanduser("~"), ".multis")


# ── Public constants ─────────────────────────────────────────────────────────

VERSION: str = "0.1.0"
MULTIS_HOME: str = _resolve_home()
CONFIG_PATH: str = os.environ.get("MULTIS_CONFIG_PATH") or os.path.join(MULTIS_HOME, "config.json")
DB_PATH: str = os.environ.get("MULTIS_DB_PATH") or os.path.join(MULTIS_HOME, "documents.db")
SKILLS_DIR: str = os.environ.get("MULTIS_SKILLS_DIR") or os.path.join(MULTIS_HOME, "skills")


# ── Startup diagnostics ─────────────────────────────────────────────────────

logger.debug(
    "Config paths resolved",
    extra={"multis_home": MULTIS_HOME, "config_path": CONFIG_PATH, "db_path": DB_PATH, "skills_dir": SKILLS_DIR},
)
