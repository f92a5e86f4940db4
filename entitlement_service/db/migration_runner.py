"""
Migration Runner - Runs Alembic migrations at application startup.

Applies pending migrations before the service accepts traffic so the
usage counter upsert always finds its unique constraint.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from entitlement_service.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current vs head revision of the database schema."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        """True when the schema is behind the migration scripts."""
        return self.current_revision != self.head_revision


def _get_sync_database_url() -> str:
    """Alembic's command API is synchronous, so swap asyncpg for psycopg2."""
    return settings.database_url.replace("asyncpg", "psycopg2")


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def _alembic_config(sync_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
    return alembic_cfg


def check_migrations_status() -> MigrationStatus:
    """
    Check migration status without applying them.

    Raises:
        FileNotFoundError: If alembic.ini is missing
    """
    if not ALEMBIC_INI_PATH.exists():
        raise FileNotFoundError(f"Alembic config not found at {ALEMBIC_INI_PATH}")

    sync_url = _get_sync_database_url()
    alembic_cfg = _alembic_config(sync_url)
    engine = create_engine(sync_url)
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(alembic_cfg),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Raises:
        RuntimeError: If a migration fails
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        status = check_migrations_status()
        if not status.pending:
            logger.info("database_schema_up_to_date", revision=status.current_revision)
            return

        logger.info(
            "database_migrations_running",
            from_revision=status.current_revision,
            to_revision=status.head_revision,
        )
        command.upgrade(_alembic_config(_get_sync_database_url()), "head")
        logger.info("database_migrations_complete", revision=status.head_revision)

    except Exception as e:
        logger.error("database_migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
