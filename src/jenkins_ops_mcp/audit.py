"""
Append-only audit trail for privileged and mutating operations.

Only the newest ``max_entries`` entries are kept in memory. Every entry is
also emitted as a JSON structlog event on the stdlib
``jenkins_ops_mcp.audit`` logger, so it follows the host application's
logging handlers and never writes to stdout on its own.
"""

import logging
import threading
from collections import deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Iterator, List, Optional

import structlog

from .exceptions import AuthorizationError
from .models import AuditLogEntry, AuditResult, utc_now

DEFAULT_MAX_ENTRIES = 1000

audit_logger = structlog.wrap_logger(
    logging.getLogger("jenkins_ops_mcp.audit"),
    wrapper_class=structlog.stdlib.BoundLogger,
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer(),
    ],
)


class AuditLog:
    def __init__(self, user_id: Optional[str] = None, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.user_id = user_id or "anonymous"
        self._entries: Deque[AuditLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen

    def record(
            self,
            action: str,
            target: str,
            result: AuditResult,
            **details: Any
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            timestamp=utc_now(),
            user_id=self.user_id,
            action=action,
            target=target,
            result=result,
            details=details,
        )
        with self._lock:
            self._entries.append(entry)
        audit_logger.info("audit", **entry.to_dict())
        return entry

    @contextmanager
    def track(self, action: str, target: str, **details: Any) -> Iterator[Dict[str, Any]]:
        """
        Record one entry for the wrapped block.

        The yielded dict may be filled with extra details. The entry result is
        ``success`` unless the block raises, in which case it is ``failed``
        (``denied`` for AuthorizationError) and the exception propagates.
        """
        context: Dict[str, Any] = dict(details)
        try:
            yield context
        except AuthorizationError as e:
            self.record(action, target, "denied", error=str(e), **context)
            raise
        except Exception as e:
            self.record(action, target, "failed", error=str(e), **context)
            raise
        self.record(action, target, "success", **context)

    def entries(self) -> List[AuditLogEntry]:
        """Snapshot of the retained entries, oldest first"""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
