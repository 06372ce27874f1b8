import os
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

from services.diagnosis.knowledge_matcher import normalize_text
from utils.knowledge_seed import seed_knowledge

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS PRODUCT (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        active_ingredient TEXT NOT NULL,
        manufacturer TEXT NOT NULL,
        target_diseases TEXT NOT NULL DEFAULT '[]',
        target_crops TEXT NOT NULL DEFAULT '[]',
        dosage TEXT NOT NULL,
        usage TEXT NOT NULL,
        source TEXT NOT NULL,
        verified INTEGER NOT NULL DEFAULT 0,
        price TEXT,
        image_url TEXT,
        frequency TEXT,
        isolation_period TEXT,
        precautions TEXT NOT NULL DEFAULT '[]'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS BIOLOGICAL_METHOD (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        target_diseases TEXT NOT NULL DEFAULT '[]',
        materials TEXT NOT NULL,
        steps TEXT NOT NULL,
        timeframe TEXT NOT NULL,
        effectiveness TEXT NOT NULL,
        source TEXT NOT NULL,
        verified INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS CULTURAL_PRACTICE (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        category TEXT NOT NULL CHECK (category IN ('soil', 'water', 'fertilizer', 'light', 'spacing')),
        action TEXT NOT NULL,
        description TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'Medium' CHECK (priority IN ('High', 'Medium', 'Low')),
        applicable_to TEXT NOT NULL DEFAULT '[]',
        source TEXT NOT NULL,
        verified INTEGER NOT NULL DEFAULT 0
    )
    """,
)


def _lower_text(value: Optional[str]) -> str:
    # SQLite's lower() only folds ASCII; Vietnamese needs full Unicode.
    return (value or "").lower()


def _fold_text(value: Optional[str]) -> str:
    return normalize_text(value or "")


class AsyncDatabaseInitializer:
    """
    Manage the async SQLite knowledge database using the DATABASE_DIR environment variable.

    - The database file is located at: <DATABASE_DIR>/knowledge.db
    - DATABASE_DIR is required unless a directory is passed explicitly. A
      RuntimeError is raised if it is missing or invalid.
    - On the first call to `ensure_database()` for a given instance the three
      knowledge tables are created if missing and, when they are all empty and
      a seed file is configured, filled from that seed. Existing data is kept.
    - Subsequent calls to `ensure_database()` on the same instance are no-ops,
      so it is safe for `connection()` to call it.
    """

    def __init__(self, database_dir: Optional[Path | str] = None, seed_path: Optional[Path] = None) -> None:
        env_dir = str(database_dir) if database_dir is not None else os.getenv("DATABASE_DIR")

        if env_dir is None or not env_dir.strip():
            raise RuntimeError(
                "DATABASE_DIR environment variable must be set to a writable "
                "directory path where the SQLite database file will be stored."
            )

        db_dir = Path(env_dir).expanduser()

        if db_dir.exists() and not db_dir.is_dir():
            raise RuntimeError(
                f"DATABASE_DIR={env_dir!r} points to a file, not a directory "
                f"({db_dir}). Please set DATABASE_DIR to a directory path."
            )

        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create or access database directory at {db_dir}"
            ) from exc

        self.db_dir = db_dir
        self.db_path = self.db_dir / "knowledge.db"
        self.seed_path = seed_path

        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def ensure_database(self) -> None:
        """
        Ensure the knowledge tables exist at `self.db_path`.

        Subsequent calls on the same instance are no-ops.
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            max_attempts = 3
            for attempt in range(1, max_attempts + 1):
                try:
                    async with aiosqlite.connect(self.db_path) as db:
                        for statement in SCHEMA:
                            await db.execute(statement)
                        await db.commit()

                        if self.seed_path is not None and await self._is_empty(db):
                            inserted = await seed_knowledge(db, self.seed_path)
                            logging.info("Seeded knowledge database with %d records from %s", inserted, self.seed_path)
                    break
                except FileNotFoundError:
                    # On some platforms a transient missing file error may occur; retry a few times.
                    if attempt >= max_attempts:
                        raise
                    await asyncio.sleep(0.1 * attempt)

            self._initialized = True

    @staticmethod
    async def _is_empty(db: aiosqlite.Connection) -> bool:
        for table in ("PRODUCT", "BIOLOGICAL_METHOD", "CULTURAL_PRACTICE"):
            cur = await db.execute(f"SELECT COUNT(*) FROM {table}")
            row = await cur.fetchone()
            if row and row[0]:
                return False
        return True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Async context manager yielding an `aiosqlite.Connection`.

        The connection has `lower_text(value)` and `fold_text(value)` SQL
        functions registered for Unicode-aware, accent-insensitive matching.
        """
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            await conn.create_function("lower_text", 1, _lower_text, deterministic=True)
            await conn.create_function("fold_text", 1, _fold_text, deterministic=True)
            yield conn
        finally:
            await conn.close()
