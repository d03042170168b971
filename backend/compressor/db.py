"""Conversion history. SQLite by default; set DATABASE_URL (or MYSQL_* vars) for MySQL.
Startup ensures the table exists; on connection failure logs verbosely and falls back to SQLite or in-memory so the app can start."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from compressor import config as app_config
from compressor.conversion.models import ConversionResult, Outcome

logger = logging.getLogger("compressor.db")

_engine: Optional[Engine] = None

REQUIRED_TABLES = ("conversions",)


def _is_sqlite() -> bool:
    return "sqlite" in app_config.DATABASE_URL


def _is_mysql() -> bool:
    return "mysql" in app_config.DATABASE_URL


def _db_kind() -> str:
    if _is_mysql():
        return "MySQL"
    if _is_sqlite():
        return "SQLite"
    return app_config.DATABASE_URL.split(":", 1)[0]


def _create_engine(url: str) -> Engine:
    if url == "sqlite:///:memory:":
        # one shared connection, otherwise each thread sees its own empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    kwargs = {}
    if "sqlite" in url:
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _create_engine(app_config.DATABASE_URL)
        logger.info("Database engine created (%s)", _db_kind())
    return _engine


def _create_sqlite_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS conversions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            batch_id TEXT NOT NULL,
            filename TEXT,
            output_name TEXT,
            target_format TEXT,
            quality INTEGER,
            status TEXT NOT NULL,
            input_bytes INTEGER,
            output_bytes INTEGER,
            error TEXT,
            created_at TEXT NOT NULL
        )
    """))
    conn.commit()


def _create_mysql_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS conversions (
            id BIGINT AUTO_INCREMENT PRIMARY KEY,
            batch_id VARCHAR(64) NOT NULL,
            filename VARCHAR(512),
            output_name VARCHAR(512),
            target_format VARCHAR(32),
            quality INT,
            status VARCHAR(50) NOT NULL,
            input_bytes BIGINT,
            output_bytes BIGINT,
            error TEXT,
            created_at VARCHAR(50) NOT NULL
        )
    """))
    conn.commit()


def _ensure_tables(engine: Engine) -> None:
    """Create required tables if they do not exist."""
    with engine.connect() as conn:
        if _is_mysql():
            _create_mysql_tables(conn)
        else:
            _create_sqlite_tables(conn)
    logger.info("Required tables ensured: %s", ", ".join(REQUIRED_TABLES))


def init_db() -> None:
    """Prepare database at startup. On failure, fall back to SQLite file or in-memory so the app can start."""
    global _engine
    kind = _db_kind()
    logger.info("Database init: preparing %s (tables: %s)", kind, ", ".join(REQUIRED_TABLES))

    try:
        _ensure_tables(get_engine())
        logger.info("Database ready: %s", kind)
        return
    except OperationalError as e:
        logger.warning("Database connection failed (%s): %s. Will try fallback.", kind, e.orig, exc_info=True)
        if _is_mysql():
            try:
                sqlite_path = app_config.BASE_DIR / "data" / "compressor.db"
                sqlite_path.parent.mkdir(parents=True, exist_ok=True)
                app_config.DATABASE_URL = f"sqlite:///{sqlite_path}"
                _engine = None
                _ensure_tables(get_engine())
                logger.warning("MySQL unavailable. Using SQLite at %s. Fix MYSQL_* in .env to use MySQL.", sqlite_path)
                return
            except Exception as fallback_err:
                logger.exception("SQLite file fallback failed: %s. Trying in-memory SQLite.", fallback_err)
    except Exception as e:
        logger.exception("Database init failed: %s. Trying in-memory SQLite.", e)

    # Last resort: in-memory SQLite so the app can run (history will not persist across restarts)
    app_config.DATABASE_URL = "sqlite:///:memory:"
    _engine = None
    _ensure_tables(get_engine())
    logger.warning("Database unavailable. Using in-memory SQLite. History will not persist across restarts.")


def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_batch(
    batch_id: str,
    target_format: str,
    quality: int,
    results: Iterable[ConversionResult],
) -> None:
    """Insert one history row per item of the batch."""
    now = _now_iso()
    rows = [
        {
            "batch_id": batch_id,
            "filename": r.original_name,
            "output_name": r.output_name,
            "target_format": target_format,
            "quality": quality,
            "status": r.outcome.value,
            "input_bytes": r.original_size,
            "output_bytes": r.output_size,
            "error": r.message,
            "created_at": now,
        }
        for r in results
    ]
    if not rows:
        return
    with session() as conn:
        conn.execute(
            text("""
                INSERT INTO conversions (batch_id, filename, output_name, target_format, quality, status, input_bytes, output_bytes, error, created_at)
                VALUES (:batch_id, :filename, :output_name, :target_format, :quality, :status, :input_bytes, :output_bytes, :error, :created_at)
            """),
            rows,
        )


def get_stats() -> dict:
    """Aggregate history: batches, files, completed, failed, byte totals and compression_percent over completed files."""
    with get_engine().connect() as conn:
        row = conn.execute(
            text("""
                SELECT
                    COUNT(DISTINCT batch_id) AS batches,
                    COUNT(*) AS files,
                    COALESCE(SUM(CASE WHEN status = :complete THEN 1 ELSE 0 END), 0) AS completed,
                    COALESCE(SUM(CASE WHEN status = :complete THEN input_bytes ELSE 0 END), 0) AS total_input_bytes,
                    COALESCE(SUM(CASE WHEN status = :complete THEN output_bytes ELSE 0 END), 0) AS total_output_bytes
                FROM conversions
            """),
            {"complete": Outcome.COMPLETE.value},
        ).fetchone()
    batches, files, completed, total_input, total_output = (int(v or 0) for v in row)
    compression_percent = 0.0
    if total_input > 0:
        compression_percent = round((1.0 - total_output / total_input) * 100.0, 1)
    return {
        "batches": batches,
        "files": files,
        "completed": completed,
        "failed": files - completed,
        "total_input_bytes": total_input,
        "total_output_bytes": total_output,
        "compression_percent": compression_percent,
    }


def get_recent_conversions(limit: int = 50) -> list[dict]:
    """Recent history rows, newest first."""
    with get_engine().connect() as conn:
        rows = conn.execute(
            text("""
                SELECT batch_id, filename, output_name, target_format, quality, status, input_bytes, output_bytes, error, created_at
                FROM conversions ORDER BY id DESC LIMIT :lim
            """),
            {"lim": limit},
        ).fetchall()
    return [
        {
            "batch_id": r[0],
            "filename": r[1],
            "output_name": r[2],
            "target_format": r[3],
            "quality": r[4],
            "status": r[5],
            "input_bytes": r[6],
            "output_bytes": r[7],
            "error": r[8],
            "created_at": r[9],
        }
        for r in rows
    ]
