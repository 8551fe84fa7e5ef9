# ebay_sync/services/runs.py
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from ..storage import Storage, SUCCESS, ERROR
from ..utils.logger import info, warn, error


class RunRecorder:
    """
    Handle on one open Run: appends log lines to the ledger (mirrored to the
    process log) and collects the summary written when the run finishes.
    """

    def __init__(self, storage: Storage, run_id: str, shop: str, trigger: str, summary: Optional[dict] = None):
        self.storage = storage
        self.id = run_id
        self.shop = shop
        self.trigger = trigger
        self.summary: dict = dict(summary or {})
        self.failed = False

    def _tag(self) -> str:
        return f"[run {self.id[:8]}][{self.trigger}][{self.shop}]"

    def info(self, message: str, **meta):
        info(f"{self._tag()} {message}")
        self.storage.add_log(self.id, "info", message, meta or None)

    def warn(self, message: str, **meta):
        warn(f"{self._tag()} {message}")
        self.storage.add_log(self.id, "warn", message, meta or None)

    def error(self, message: str, **meta):
        error(f"{self._tag()} {message}")
        self.storage.add_log(self.id, "error", message, meta or None)

    def fail(self):
        """Finish with status error even though the block completes normally."""
        self.failed = True


def error_text(e: BaseException) -> str:
    return str(e) or type(e).__name__


@contextmanager
def tracked_run(storage: Storage, shop: str, trigger: str, summary: Optional[dict] = None) -> Iterator[RunRecorder]:
    """
    create -> log -> finish around a block of work.

    An exception escaping the block is logged at error level, stored verbatim
    in ``summary["error"]``, the run is finished as ``error`` and the
    exception is re-raised to the caller.
    """
    run_id = storage.create_run(shop, trigger, summary or {})
    run = RunRecorder(storage, run_id, shop, trigger, summary)
    try:
        yield run
    except Exception as e:
        msg = error_text(e)
        run.error(msg, error_type=type(e).__name__)
        run.summary["error"] = msg
        storage.finish_run(run_id, ERROR, run.summary)
        raise
    storage.finish_run(run_id, ERROR if run.failed else SUCCESS, run.summary)


def run_payload(run: Any, logs: Optional[list] = None) -> dict:
    out = run.to_dict()
    if logs is not None:
        out["logs"] = [l.to_dict() for l in logs]
    return out
