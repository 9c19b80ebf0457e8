"""Database base configuration"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from incident_bridge.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

logger = logging.getLogger(__name__)


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_artifact_mappings_unique_indexes():
    """Add the identity indexes to artifact_mappings tables created without them.

    The mapping table decides whether an incident or release was already
    synchronized, so a duplicate row would mean a duplicate issue.
    """
    with engine.begin() as conn:
        if engine.dialect.name == "sqlite":
            tables = {
                row[0]
                for row in conn.exec_driver_sql(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                ).fetchall()
            }
            if "artifact_mappings" not in tables:
                return

        for name, column in (("uq_artifact_mappings_internal", "internal_id"), ("uq_artifact_mappings_external", "external_key")):
            sql = (
                f"CREATE UNIQUE INDEX IF NOT EXISTS {name} "
                f"ON artifact_mappings(project_id, artifact_type, {column})"
            )
            try:
                conn.exec_driver_sql(sql)
            except Exception as e:
                logger.warning(f"Could not ensure unique index {name} on artifact_mappings: {e}")


def init_db():
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import incident_bridge.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=engine)
    _ensure_artifact_mappings_unique_indexes()
