from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Iterable, Iterator

from catalog_crawler.crawler.models import ProductRecord, UpsertSummary
from catalog_crawler.logger import get_logger

logger = get_logger(__name__)

_FIELDS = ("manufacturer", "model", "certificate_id", "page_id", "index_in_page")


class ProductStore:
    """SQLite-хранилище собранных товаров с уникальностью по URL."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()
        logger.info("Инициализировано хранилище товаров", extra={"db": str(db_path)})

    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS products (
                    url TEXT PRIMARY KEY,
                    manufacturer TEXT,
                    model TEXT,
                    certificate_id TEXT,
                    page_id INTEGER NOT NULL,
                    index_in_page INTEGER NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_products_slot ON products (page_id, index_in_page)"
            )

    def upsert(self, records: Iterable[ProductRecord]) -> UpsertSummary:
        """Сохраняет записи: новые добавляет, изменившиеся перезаписывает."""
        summary = UpsertSummary()
        with self._lock:
            for record in records:
                try:
                    with self._conn:
                        outcome = self._upsert_one(record)
                except sqlite3.Error as exc:
                    summary.failed += 1
                    logger.warning(
                        "Не удалось сохранить товар",
                        extra={"url": record.url, "error": str(exc)},
                    )
                    continue
                setattr(summary, outcome, getattr(summary, outcome) + 1)
        logger.debug(
            "Результат сохранения",
            extra={
                "added": summary.added,
                "updated": summary.updated,
                "unchanged": summary.unchanged,
                "failed": summary.failed,
            },
        )
        return summary

    def _upsert_one(self, record: ProductRecord) -> str:
        row = self._conn.execute(
            f"SELECT {', '.join(_FIELDS)} FROM products WHERE url=?",
            (record.url,),
        ).fetchone()
        values = tuple(getattr(record, name) for name in _FIELDS)
        if row is None:
            self._conn.execute(
                f"""
                INSERT INTO products (url, {', '.join(_FIELDS)})
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (record.url, *values),
            )
            return "added"
        if tuple(row) == values:
            return "unchanged"
        self._conn.execute(
            """
            UPDATE products
               SET manufacturer=?, model=?, certificate_id=?,
                   page_id=?, index_in_page=?, updated_at=CURRENT_TIMESTAMP
             WHERE url=?
            """,
            (*values, record.url),
        )
        return "updated"

    def get(self, url: str) -> ProductRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT url, {', '.join(_FIELDS)} FROM products WHERE url=?",
                (url,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def existing_urls(self) -> set[str]:
        with self._lock:
            rows = self._conn.execute("SELECT url FROM products").fetchall()
        return {row["url"] for row in rows}

    def query_indices_for_page(self, page_id: int) -> set[int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT index_in_page FROM products WHERE page_id=?",
                (page_id,),
            ).fetchall()
        return {row["index_in_page"] for row in rows}

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS total FROM products").fetchone()
        return int(row["total"])

    def max_page_id(self) -> int | None:
        with self._lock:
            row = self._conn.execute("SELECT MAX(page_id) AS max_id FROM products").fetchone()
        return row["max_id"]

    def iter_records(self) -> Iterator[ProductRecord]:
        """Все записи в стабильном порядке ``(page_id, index_in_page)``."""
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT url, {', '.join(_FIELDS)}
                  FROM products
                 ORDER BY page_id, index_in_page, url
                """
            ).fetchall()
        for row in rows:
            yield _row_to_record(row)

    def reset_all(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM products")

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _row_to_record(row: sqlite3.Row) -> ProductRecord:
    return ProductRecord(
        url=row["url"],
        manufacturer=row["manufacturer"],
        model=row["model"],
        certificate_id=row["certificate_id"],
        page_id=row["page_id"],
        index_in_page=row["index_in_page"],
    )
