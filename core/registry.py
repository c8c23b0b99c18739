from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from observability.metrics import record_resource_created, record_resource_removed
from utils import compact_sql

logger = logging.getLogger(__name__)


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Resource:
    """Snapshot of a registered query handle.

    `sql` is the query definition exactly as captured at creation (no row bound).
    `total_count` is never recomputed.
    """

    id: str
    sql: str
    total_count: int
    created_at: float
    expires_at: Optional[float] = None
    access_count: int = 0
    last_accessed_at: Optional[float] = None
    columns: Optional[List[Dict[str, str]]] = None
    pinned: bool = False

    @property
    def uri(self) -> str:
        return f"resource://{self.id}"

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.pinned or self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sql": self.sql,
            "total_count": self.total_count,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "access_count": self.access_count,
            "last_accessed_at": _iso(self.last_accessed_at),
            "columns": list(self.columns) if self.columns else [],
            "pinned": self.pinned,
        }


@dataclass
class _Slot:
    resource: Resource
    lock: threading.Lock = field(default_factory=threading.Lock)
    removed: bool = False


class ResourceRegistry:
    """Process-wide id -> resource table.

    The table lock only guards the dict itself; counters on an entry are updated
    under that entry's own lock, so traffic on different ids never serializes.
    Callers only ever see immutable `Resource` snapshots.
    """

    def __init__(self, default_ttl_seconds: Optional[float] = None) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._slots: Dict[str, _Slot] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._sweeper_stop = threading.Event()

    # --- Public API ---
    def create(self, sql: str, total_count: int, *, columns: Optional[List[Dict[str, str]]] = None,
               ttl_seconds: Optional[float] = None) -> str:
        if not isinstance(sql, str) or not sql.strip():
            raise ValueError("Query definition must be a non-empty string")
        if total_count < 0:
            raise ValueError("total_count must be >= 0")
        now = time.time()
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        if ttl is not None and ttl < 0:
            raise ValueError("ttl_seconds must be >= 0")
        rid = str(uuid.uuid4())
        resource = Resource(
            id=rid,
            sql=sql,
            total_count=int(total_count),
            created_at=now,
            expires_at=(now + ttl) if ttl is not None else None,
            columns=list(columns) if columns else None,
        )
        with self._lock:
            self._slots[rid] = _Slot(resource)
            active = len(self._slots)
        record_resource_created(active)
        logger.debug("Created resource %s (total_count=%s): %s", rid, total_count, compact_sql(sql, 100))
        return rid

    def get(self, resource_id: str) -> Optional[Resource]:
        """Resolve an id and count the access.

        Returns None for unknown, deleted or expired ids; an expired entry is
        removed on the way out.
        """
        slot = self._slot(resource_id)
        if slot is None:
            logger.debug("Get resource %s: not found", resource_id)
            return None
        with slot.lock:
            if slot.removed:
                return None
            now = time.time()
            current = slot.resource
            if current.is_expired(now):
                expired = True
            else:
                expired = False
                last = current.last_accessed_at
                slot.resource = replace(
                    current,
                    access_count=current.access_count + 1,
                    last_accessed_at=now if last is None else max(last, now),
                )
                snapshot = slot.resource
        if expired:
            self._remove(resource_id, slot, reason="expired")
            logger.debug("Get resource %s: expired", resource_id)
            return None
        logger.debug("Get resource %s: access_count=%s", resource_id, snapshot.access_count)
        return snapshot

    def peek(self, resource_id: str) -> Optional[Resource]:
        """Read a resource without counting an access (diagnostics only)."""
        slot = self._slot(resource_id)
        if slot is None:
            return None
        with slot.lock:
            if slot.removed or slot.resource.is_expired():
                return None
            return slot.resource

    def delete(self, resource_id: str) -> bool:
        slot = self._slot(resource_id)
        if slot is None:
            logger.debug("Delete resource %s: not found", resource_id)
            return False
        deleted = self._remove(resource_id, slot, reason="deleted")
        logger.debug("Delete resource %s: %s", resource_id, "deleted" if deleted else "not found")
        return deleted

    def pin(self, resource_id: str) -> bool:
        """Remove the expiration from a resource."""
        return self._update(resource_id, pinned=True, expires_at=None)

    def set_expiration(self, resource_id: str, ttl_seconds: float) -> bool:
        """Reset the expiration to now + ttl and unpin. A ttl of 0 expires the resource at once.

        Only pin() clears an expiration.
        """
        if ttl_seconds is None or ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        return self._update(resource_id, pinned=False, expires_at=time.time() + ttl_seconds)

    def cleanup(self) -> int:
        """Remove every expired resource, returning how many were dropped."""
        now = time.time()
        with self._lock:
            candidates = list(self._slots.items())
        removed = 0
        for rid, slot in candidates:
            with slot.lock:
                expired = not slot.removed and slot.resource.is_expired(now)
            if expired and self._remove(rid, slot, reason="expired"):
                removed += 1
        if removed:
            logger.info("Resource sweep removed %d expired entries", removed)
        return removed

    def list(self) -> List[Resource]:
        with self._lock:
            slots = list(self._slots.values())
        out = []
        for slot in slots:
            with slot.lock:
                if not slot.removed and not slot.resource.is_expired():
                    out.append(slot.resource)
        return out

    def stats(self) -> Dict[str, Any]:
        resources = self.list()
        return {
            "count": len(resources),
            "resources": [
                {
                    "id": r.id,
                    "total_count": r.total_count,
                    "access_count": r.access_count,
                    "created_at": _iso(r.created_at),
                    "expires_at": _iso(r.expires_at),
                }
                for r in resources
            ],
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    # --- Background sweep ---
    def start_sweeper(self, interval_seconds: float = 60.0) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._sweeper_stop.clear()

        def _loop():
            while not self._sweeper_stop.wait(interval_seconds):
                try:
                    self.cleanup()
                except Exception:
                    logger.exception("Resource sweep failed")

        self._sweeper = threading.Thread(target=_loop, name="resource-sweeper", daemon=True)
        self._sweeper.start()
        logger.info("Resource sweeper started (interval=%ss)", interval_seconds)

    def stop_sweeper(self) -> None:
        self._sweeper_stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    # --- Internals ---
    def _slot(self, resource_id: str) -> Optional[_Slot]:
        if not isinstance(resource_id, str):
            return None
        with self._lock:
            return self._slots.get(resource_id)

    def _remove(self, resource_id: str, slot: _Slot, *, reason: str) -> bool:
        with slot.lock:
            if slot.removed:
                return False
            slot.removed = True
        with self._lock:
            if self._slots.get(resource_id) is slot:
                del self._slots[resource_id]
            active = len(self._slots)
        record_resource_removed(reason, active)
        return True

    def _update(self, resource_id: str, **changes: Any) -> bool:
        slot = self._slot(resource_id)
        if slot is None:
            return False
        with slot.lock:
            if slot.removed or slot.resource.is_expired():
                return False
            slot.resource = replace(slot.resource, **changes)
        return True
