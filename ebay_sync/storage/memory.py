"""
In-process fallback used when DATABASE_URL is not set. State dies with the process.

Every read and write holds ``_lock``; requests run on several threads.
"""
import copy
import itertools
import threading
import uuid
from typing import Any, Optional

from ..utils.logger import warn
from .base import (
    Storage, Run, RunLogEntry, EbayLink,
    RUNNING, utcnow, normalize_level, check_terminal,
)


class MemoryStorage(Storage):
    kind = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: dict[str, tuple[str, Any]] = {}
        self._processed: dict[str, Any] = {}
        self._runs: dict[str, Run] = {}
        self._logs: dict[str, list[RunLogEntry]] = {}
        self._links: dict[tuple[str, str], EbayLink] = {}
        self._log_seq = itertools.count(1)

    # ---------------------------------------------------------
    # Tokens
    # ---------------------------------------------------------

    def set_token(self, shop: str, access_token: str) -> None:
        with self._lock:
            self._tokens[shop] = (access_token, utcnow())

    def get_token(self, shop: str) -> Optional[str]:
        with self._lock:
            row = self._tokens.get(shop)
        return row[0] if row else None

    # ---------------------------------------------------------
    # Processed events
    # ---------------------------------------------------------

    def mark_processed(self, event_id: str) -> None:
        with self._lock:
            self._processed.setdefault(event_id, utcnow())

    def is_processed(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._processed

    # ---------------------------------------------------------
    # Runs
    # ---------------------------------------------------------

    def create_run(self, shop: str, trigger: str, summary: Any = None) -> str:
        run_id = str(uuid.uuid4())
        run = Run(
            id=run_id, shop=shop, trigger=trigger, status=RUNNING,
            summary=copy.deepcopy(summary) if summary is not None else {},
            started_at=utcnow(),
        )
        with self._lock:
            self._runs[run_id] = run
            self._logs[run_id] = []
        return run_id

    def add_log(self, run_id: str, level: str, message: Optional[str], meta: Any = None) -> None:
        if not message:
            return
        entry = RunLogEntry(
            run_id=run_id, level=normalize_level(level), message=str(message),
            meta=copy.deepcopy(meta), created_at=utcnow(),
        )
        with self._lock:
            logs = self._logs.get(run_id)
            if logs is not None:
                entry.id = next(self._log_seq)
                logs.append(entry)
        if logs is None:
            warn(f"[storage] dropped log line for unknown run {run_id}: {message}")

    def finish_run(self, run_id: str, status: str, summary: Any = None) -> None:
        check_terminal(status)
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return
            run.status = status
            run.summary = copy.deepcopy(summary) if summary is not None else {}
            run.finished_at = utcnow()

    def list_runs(self, shop: str, limit: int = 20) -> list[Run]:
        # run id breaks ties between identical timestamps, same as the SQL backend
        with self._lock:
            runs = [r for r in self._runs.values() if r.shop == shop]
            runs.sort(key=lambda r: (r.started_at, r.id), reverse=True)
            return [copy.deepcopy(r) for r in runs[:max(limit, 0)]]

    def get_run_with_logs(self, shop: str, run_id: str, log_limit: int = 200
                          ) -> Optional[tuple[Run, list[RunLogEntry]]]:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None or run.shop != shop:
                return None
            logs = self._logs.get(run_id, [])
            tail = logs[-log_limit:] if log_limit > 0 else []
            return copy.deepcopy(run), copy.deepcopy(tail)

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
        key = (shop, sku)
        with self._lock:
            link = self._links.get(key)
            if link is None:
                link = EbayLink(shop=shop, sku=sku,
                                shopify_product_id=None, shopify_variant_id=None)
                self._links[key] = link
            link.shopify_product_id = _str_or_none(shopify_product_id)
            link.shopify_variant_id = _str_or_none(shopify_variant_id)
            if ebay_offer_id is not None:
                link.ebay_offer_id = str(ebay_offer_id)
            if ebay_listing_id is not None:
                link.ebay_listing_id = str(ebay_listing_id)
            if status is not None:
                link.status = status
            link.last_error = last_error
            link.updated_at = utcnow()
            return copy.deepcopy(link)

    def get_link_by_sku(self, shop: str, sku: str) -> Optional[EbayLink]:
        with self._lock:
            link = self._links.get((shop, sku))
            return copy.deepcopy(link) if link else None

    def list_links(self, shop: str, limit: int = 200) -> list[EbayLink]:
        with self._lock:
            links = [l for l in self._links.values() if l.shop == shop]
            links.sort(key=lambda l: l.updated_at, reverse=True)
            return [copy.deepcopy(l) for l in links[:max(limit, 0)]]


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)
