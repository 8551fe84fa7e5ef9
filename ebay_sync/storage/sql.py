"""
Durable backend on SQLAlchemy.

Every public method is one short transaction. Upserts use the dialect's native
``INSERT ... ON CONFLICT`` so concurrent requests never race between a read
and a write; only PostgreSQL and SQLite are supported for that reason.
"""
import uuid
from contextlib import contextmanager
from typing import Any, Optional

from sqlalchemy import create_engine, event, func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.logger import info, warn
from .base import (
    Storage, Run, RunLogEntry, EbayLink, StorageUnavailable,
    RUNNING, utcnow, as_utc, normalize_level, check_terminal,
)
from .models import Base, ShopTokenRow, ProcessedEventRow, SyncRunRow, SyncRunLogRow, EbayLinkRow

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _enable_sqlite_fks(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_fks)
        return engine

    # PostgreSQL connection settings
    return create_engine(
        database_url,
        connect_args={"connect_timeout": 10},
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_timeout=30,
    )


class SqlStorage(Storage):
    kind = "sql"

    def __init__(self, database_url: str):
        try:
            self.engine = build_engine(database_url)
        except (SQLAlchemyError, ImportError) as e:
            raise StorageUnavailable(f"Cannot build engine for DATABASE_URL: {e}") from e

        self.dialect = self.engine.dialect.name
        if self.dialect not in _INSERTS:
            raise StorageUnavailable(f"Unsupported database dialect: {self.dialect}")
        self._insert = _INSERTS[self.dialect]
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

        safe_url = self.engine.url.render_as_string(hide_password=True)
        try:
            # CREATE ... IF NOT EXISTS for every table and index
            Base.metadata.create_all(self.engine)
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            self.engine.dispose()
            raise StorageUnavailable(f"Database unreachable at {safe_url}: {e}") from e
        info(f"[storage] schema ready on {safe_url}")

    @contextmanager
    def _tx(self):
        with self._sessions() as s:
            with s.begin():
                yield s

    def close(self) -> None:
        self.engine.dispose()

    # ---------------------------------------------------------
    # Tokens
    # ---------------------------------------------------------

    def set_token(self, shop: str, access_token: str) -> None:
        ins = self._insert(ShopTokenRow).values(shop=shop, access_token=access_token, updated_at=utcnow())
        stmt = ins.on_conflict_do_update(
            index_elements=["shop"],
            set_={"access_token": ins.excluded.access_token, "updated_at": ins.excluded.updated_at},
        )
        with self._tx() as s:
            s.execute(stmt)

    def get_token(self, shop: str) -> Optional[str]:
        with self._sessions() as s:
            return s.scalar(select(ShopTokenRow.access_token).where(ShopTokenRow.shop == shop))

    # ---------------------------------------------------------
    # Processed events
    # ---------------------------------------------------------

    def mark_processed(self, event_id: str) -> None:
        stmt = (
            self._insert(ProcessedEventRow)
            .values(event_id=event_id, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        with self._tx() as s:
            s.execute(stmt)

    def is_processed(self, event_id: str) -> bool:
        with self._sessions() as s:
            found = s.scalar(select(ProcessedEventRow.event_id).where(ProcessedEventRow.event_id == event_id))
            return found is not None

    # ---------------------------------------------------------
    # Runs
    # ---------------------------------------------------------

    def create_run(self, shop: str, trigger: str, summary: Any = None) -> str:
        run_id = str(uuid.uuid4())
        with self._tx() as s:
            s.add(SyncRunRow(
                id=run_id, shop=shop, trigger=trigger, status=RUNNING,
                summary=summary if summary is not None else {},
                started_at=utcnow(),
            ))
        return run_id

    def add_log(self, run_id: str, level: str, message: Optional[str], meta: Any = None) -> None:
        if not message:
            return
        try:
            with self._tx() as s:
                s.add(SyncRunLogRow(
                    run_id=run_id, level=normalize_level(level), message=str(message),
                    meta=meta, created_at=utcnow(),
                ))
        except IntegrityError:
            warn(f"[storage] dropped log line for unknown run {run_id}: {message}")

    def finish_run(self, run_id: str, status: str, summary: Any = None) -> None:
        check_terminal(status)
        stmt = (
            update(SyncRunRow)
            .where(SyncRunRow.id == run_id)
            .values(status=status, summary=summary if summary is not None else {}, finished_at=utcnow())
        )
        with self._tx() as s:
            s.execute(stmt)

    def list_runs(self, shop: str, limit: int = 20) -> list[Run]:
        q = (
            select(SyncRunRow)
            .where(SyncRunRow.shop == shop)
            .order_by(SyncRunRow.started_at.desc(), SyncRunRow.id.desc())
            .limit(max(limit, 0))
        )
        with self._sessions() as s:
            return [_run(r) for r in s.scalars(q)]

    def get_run_with_logs(self, shop: str, run_id: str, log_limit: int = 200
                          ) -> Optional[tuple[Run, list[RunLogEntry]]]:
        with self._sessions() as s:
            row = s.scalar(select(SyncRunRow).where(SyncRunRow.id == run_id, SyncRunRow.shop == shop))
            if row is None:
                return None
            q = (
                select(SyncRunLogRow)
                .where(SyncRunLogRow.run_id == run_id)
                .order_by(SyncRunLogRow.created_at.desc(), SyncRunLogRow.id.desc())
                .limit(max(log_limit, 0))
            )
            logs = [_log(l) for l in s.scalars(q)]
            logs.reverse()
            return _run(row), logs

    # ---------------------------------------------------------
    # eBay links
    # ---------------------------------------------------------

    def upsert_link(self, shop: str, sku: str,
                    shopify_product_id: Optional[str] = None,
                    shopify_variant_id: Optional[str] = None,
                    ebay_offer_id: Optional[str] = None,
                    ebay_listing_id: Optional[str] = None,
                    status: Optional[str] = None,
                    last_error: Optional[str] = None) -> EbayLink:
        ins = self._insert(EbayLinkRow).values(
            shop=shop,
            sku=sku,
            shopify_product_id=_str_or_none(shopify_product_id),
            shopify_variant_id=_str_or_none(shopify_variant_id),
            ebay_offer_id=_str_or_none(ebay_offer_id),
            ebay_listing_id=_str_or_none(ebay_listing_id),
            status=status or "linked",
            last_error=last_error,
            updated_at=utcnow(),
        )
        set_ = {
            "shopify_product_id": ins.excluded.shopify_product_id,
            "shopify_variant_id": ins.excluded.shopify_variant_id,
            "ebay_offer_id": func.coalesce(ins.excluded.ebay_offer_id, EbayLinkRow.ebay_offer_id),
            "ebay_listing_id": func.coalesce(ins.excluded.ebay_listing_id, EbayLinkRow.ebay_listing_id),
            "last_error": ins.excluded.last_error,
            "updated_at": ins.excluded.updated_at,
        }
        if status is not None:
            set_["status"] = ins.excluded.status
        stmt = ins.on_conflict_do_update(index_elements=["shop", "sku"], set_=set_)

        with self._tx() as s:
            s.execute(stmt)
            row = s.scalar(select(EbayLinkRow).where(EbayLinkRow.shop == shop, EbayLinkRow.sku == sku))
            return _link(row)

    def get_link_by_sku(self, shop: str, sku: str) -> Optional[EbayLink]:
        with self._sessions() as s:
            row = s.scalar(select(EbayLinkRow).where(EbayLinkRow.shop == shop, EbayLinkRow.sku == sku))
            return _link(row) if row else None

    def list_links(self, shop: str, limit: int = 200) -> list[EbayLink]:
        q = (
            select(EbayLinkRow)
            .where(EbayLinkRow.shop == shop)
            .order_by(EbayLinkRow.updated_at.desc(), EbayLinkRow.id.desc())
            .limit(max(limit, 0))
        )
        with self._sessions() as s:
            return [_link(r) for r in s.scalars(q)]


# =========================================================
# Row -> record
# =========================================================

def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)


def _run(row: SyncRunRow) -> Run:
    return Run(
        id=row.id, shop=row.shop, trigger=row.trigger, status=row.status,
        summary=row.summary if row.summary is not None else {},
        started_at=as_utc(row.started_at), finished_at=as_utc(row.finished_at),
    )


def _log(row: SyncRunLogRow) -> RunLogEntry:
    return RunLogEntry(
        id=row.id, run_id=row.run_id, level=row.level, message=row.message,
        meta=row.meta, created_at=as_utc(row.created_at),
    )


def _link(row: EbayLinkRow) -> EbayLink:
    return EbayLink(
        shop=row.shop, sku=row.sku,
        shopify_product_id=row.shopify_product_id, shopify_variant_id=row.shopify_variant_id,
        ebay_offer_id=row.ebay_offer_id, ebay_listing_id=row.ebay_listing_id,
        status=row.status, last_error=row.last_error, updated_at=as_utc(row.updated_at),
    )
