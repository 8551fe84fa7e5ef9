"""
Storage contract shared by the durable (SQL) and in-memory backends.

Every component talks to an instance of ``Storage``; which backend sits behind
it is decided once in ``ebay_sync.storage.init_storage``. Both backends must
return the same record types and follow the same not-found / duplicate rules:

- missing rows come back as ``None`` (never an exception)
- duplicate writes (processed event ids, upsert keys) are silent no-ops
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Optional

RUNNING = "running"
SUCCESS = "success"
ERROR = "error"
TERMINAL = (SUCCESS, ERROR)

LOG_LEVELS = ("info", "warn", "error")


class StorageUnavailable(RuntimeError):
    """Durable backend configured but unusable; startup must abort."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_level(level: Optional[str]) -> str:
    level = (level or "info").lower()
    if level == "warning":
        return "warn"
    return level if level in LOG_LEVELS else "info"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Run:
    id: str
    shop: str
    trigger: str
    status: str
    summary: Any
    started_at: datetime
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["started_at"] = _iso(self.started_at)
        d["finished_at"] = _iso(self.finished_at)
        return d


@dataclass
class RunLogEntry:
    run_id: str
    level: str
    message: str
    meta: Any = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["created_at"] = _iso(self.created_at)
        return d


@dataclass
class EbayLink:
    shop: str
    sku: str
    shopify_product_id: Optional[str]
    shopify_variant_id: Optional[str]
    ebay_offer_id: Optional[str] = None
    ebay_listing_id: Optional[str] = None
    status: str = "linked"
    last_error: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["updated_at"] = _iso(self.updated_at)
        return d


class TokenStore(ABC):
    @abstractmethod
    def set_token(self, shop: str, access_token: str) -> None:
        """Upsert the access token for a shop and refresh its timestamp."""

    @abstractmethod
    def get_token(self, shop: str) -> Optional[str]:
        ...


class DedupLedger(ABC):
    @abstractmethod
    def mark_processed(self, event_id: str) -> None:
        """Record an event id. Calling it again for the same id does nothing."""

    @abstractmethod
    def is_processed(self, event_id: str) -> bool:
        ...


class RunLedger(ABC):
    @abstractmethod
    def create_run(self, shop: str, trigger: str, summary: Any = None) -> str:
        """Create a ``running`` run and return its id."""

    @abstractmethod
    def add_log(self, run_id: str, level: str, message: Optional[str], meta: Any = None) -> None:
        """Append a log line. Empty messages are dropped."""

    @abstractmethod
    def finish_run(self, run_id: str, status: str, summary: Any = None) -> None:
        """Set a terminal status and replace the summary. Last call wins."""

    @abstractmethod
    def list_runs(self, shop: str, limit: int = 20) -> list[Run]:
        """Newest first by start time, only runs of ``shop``."""

    @abstractmethod
    def get_run_with_logs(self, shop: str, run_id: str, log_limit: int = 200
                          ) -> Optional[tuple[Run, list[RunLogEntry]]]:
        """
        Return the run and its most recent ``log_limit`` log lines in
        ascending order, or None when the run does not exist or belongs to
        another shop.
        """


class LinkRegistry(ABC):
    @abstractmethod
    def upsert_link(self, shop: str, sku: str,
                    shopify_product_id: Optional[str] = None,
                    shopify_variant_id: Optional[str] = None,
                    ebay_offer_id: Optional[str] = None,
                    ebay_listing_id: Optional[str] = None,
                    status: Optional[str] = None,
                    last_error: Optional[str] = None) -> EbayLink:
        """
        Merge-upsert keyed by (shop, sku).

        Product/variant ids and ``last_error`` always overwrite; offer id,
        listing id and status only overwrite when a value is given.
        """

    @abstractmethod
    def get_link_by_sku(self, shop: str, sku: str) -> Optional[EbayLink]:
        ...

    @abstractmethod
    def list_links(self, shop: str, limit: int = 200) -> list[EbayLink]:
        """Most recently updated first."""


class Storage(TokenStore, DedupLedger, RunLedger, LinkRegistry):
    kind = "abstract"

    def close(self) -> None:
        pass


def check_terminal(status: str):
    if status not in TERMINAL:
        raise ValueError(f"finish_run status must be one of {TERMINAL}, got {status!r}")
