"""
Booking Store Adapter

Rows are plain JSON-compatible dicts. `update_where` is the only write used
for payment state: it applies `patch` only when every guard matches the
current row and returns the number of rows changed (0 = guard failed).

Guard values:
    "value"            column equals value
    None               column is null
    ("a", "b", ...)    column is one of the values
"""
import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from booking_service.errors import StoreError
from config.settings import Environment, Settings

logger = logging.getLogger(__name__)

Guard = Dict[str, Any]

MAX_LIST_LIMIT = 500
DEFAULT_LIST_LIMIT = 200


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BookingStore:
    """Base class for booking stores"""

    def insert(self, row: dict) -> dict:
        raise NotImplementedError

    def get(self, booking_id: str) -> Optional[dict]:
        raise NotImplementedError

    def find_by_session_id(self, session_id: str) -> Optional[dict]:
        raise NotImplementedError

    def update_where(self, booking_id: str, guard: Guard, patch: dict) -> int:
        raise NotImplementedError

    def list(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[dict]:
        raise NotImplementedError


def _matches(row: dict, guard: Guard) -> bool:
    for column, expected in guard.items():
        actual = row.get(column)
        if expected is None:
            if actual is not None:
                return False
        elif isinstance(expected, (tuple, list, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class InMemoryBookingStore(BookingStore):
    """Process-local store for mock mode and tests; same compare-and-swap contract"""

    def __init__(self):
        self._rows: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def insert(self, row: dict) -> dict:
        booking_id = row.get("id")
        if not booking_id:
            raise StoreError("Insert failed: missing id")
        with self._lock:
            if booking_id in self._rows:
                raise StoreError("Insert failed: duplicate key", booking_id=booking_id)
            stored = copy.deepcopy(row)
            now = utcnow_iso()
            stored.setdefault("created_at", now)
            stored.setdefault("updated_at", now)
            self._rows[booking_id] = stored
            return copy.deepcopy(stored)

    def get(self, booking_id: str) -> Optional[dict]:
        with self._lock:
            row = self._rows.get(booking_id)
            return copy.deepcopy(row) if row else None

    def find_by_session_id(self, session_id: str) -> Optional[dict]:
        with self._lock:
            for row in self._rows.values():
                if row.get("payment_session_id") == session_id:
                    return copy.deepcopy(row)
        return None

    def update_where(self, booking_id: str, guard: Guard, patch: dict) -> int:
        with self._lock:
            row = self._rows.get(booking_id)
            if row is None or not _matches(row, guard):
                return 0
            row.update(copy.deepcopy(patch))
            return 1

    def list(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[dict]:
        with self._lock:
            rows = [
                copy.deepcopy(r)
                for r in self._rows.values()
                if status is None or r.get("status") == status
            ]
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return rows[: min(limit, MAX_LIST_LIMIT)]


def _postgrest_filter(expected: Any) -> str:
    if expected is None:
        return "is.null"
    if isinstance(expected, (tuple, list, set, frozenset)):
        values = ",".join(sorted(str(v) for v in expected))
        return f"in.({values})"
    return f"eq.{expected}"


class SupabaseBookingStore(BookingStore):
    """Bookings table behind Supabase's PostgREST API"""

    TABLE = "bookings"

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.url = f"{base_url.rstrip('/')}/rest/v1/{self.TABLE}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, params: dict, json: Any = None, prefer: Optional[str] = None) -> Any:
        headers = {"Prefer": prefer} if prefer else {}
        try:
            resp = self.session.request(
                method,
                self.url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Supabase %s failed: %s", method, e)
            raise StoreError(f"Store unreachable: {e}") from e

        if not resp.ok:
            logger.error("Supabase %s returned %s: %s", method, resp.status_code, resp.text[:500])
            raise StoreError(f"Store request failed with status {resp.status_code}")

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError("Store returned a non-JSON body") from e

    def insert(self, row: dict) -> dict:
        data = self._request("POST", {"select": "*"}, json=row, prefer="return=representation")
        inserted = data[0] if isinstance(data, list) and data else data
        if not inserted:
            raise StoreError("Insert returned no row", booking_id=row.get("id"))
        return inserted

    def _first(self, params: dict) -> Optional[dict]:
        rows = self._request("GET", {"select": "*", "limit": 1, **params})
        return rows[0] if rows else None

    def get(self, booking_id: str) -> Optional[dict]:
        return self._first({"id": f"eq.{booking_id}"})

    def find_by_session_id(self, session_id: str) -> Optional[dict]:
        return self._first({"payment_session_id": f"eq.{session_id}"})

    def update_where(self, booking_id: str, guard: Guard, patch: dict) -> int:
        params = {"id": f"eq.{booking_id}", "select": "id"}
        for column, expected in guard.items():
            params[column] = _postgrest_filter(expected)
        rows = self._request("PATCH", params, json=patch, prefer="return=representation")
        return len(rows or [])

    def list(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[dict]:
        params = {
            "select": "*",
            "order": "created_at.desc",
            "limit": min(limit, MAX_LIST_LIMIT),
        }
        if status:
            params["status"] = f"eq.{status}"
        return self._request("GET", params) or []


def get_store(settings: Settings) -> BookingStore:
    """Factory for the booking store of the configured environment"""
    if settings.environment == Environment.MOCK:
        return InMemoryBookingStore()
    settings.require("supabase_url", "supabase_service_role_key")
    return SupabaseBookingStore(
        settings.supabase_url,
        settings.supabase_service_role_key,
        timeout=settings.request_timeout,
    )
