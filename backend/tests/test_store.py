"""
Booking store adapters: PostgREST request shapes and in-memory guard semantics
"""
from unittest.mock import MagicMock

import pytest
import requests

from booking_service.errors import StoreError
from booking_service.store import InMemoryBookingStore, SupabaseBookingStore

SUPABASE_URL = "https://project.supabase.co/"
KEY = "service-role-key"


def _response(status=200, json_body=None):
    resp = MagicMock()
    resp.ok = 200 <= status < 300
    resp.status_code = status
    resp.content = b"" if json_body is None else b"x"
    resp.json.return_value = json_body
    resp.text = str(json_body)
    return resp


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def supabase(session):
    return SupabaseBookingStore(SUPABASE_URL, KEY, session=session, timeout=3)


def test_auth_headers_are_set(supabase, session):
    assert supabase.url == "https://project.supabase.co/rest/v1/bookings"
    assert session.headers["apikey"] == KEY
    assert session.headers["Authorization"] == f"Bearer {KEY}"


def test_insert_returns_representation(supabase, session):
    session.request.return_value = _response(201, [{"id": "b1", "payment_status": "unpaid"}])

    row = supabase.insert({"id": "b1", "payment_status": "unpaid"})

    assert row["id"] == "b1"
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert method == "POST"
    assert kwargs["headers"] == {"Prefer": "return=representation"}
    assert kwargs["json"] == {"id": "b1", "payment_status": "unpaid"}
    assert kwargs["timeout"] == 3


def test_get_returns_none_when_missing(supabase, session):
    session.request.return_value = _response(200, [])

    assert supabase.get("b1") is None
    assert session.request.call_args.kwargs["params"]["id"] == "eq.b1"


def test_update_where_encodes_guard_as_filters(supabase, session):
    session.request.return_value = _response(200, [{"id": "b1"}])

    changed = supabase.update_where(
        "b1",
        {"payment_status": ("payment_failed", "awaiting_payment"), "payment_session_id": "cs_1"},
        {"payment_status": "paid"},
    )

    assert changed == 1
    params = session.request.call_args.kwargs["params"]
    assert session.request.call_args.args[0] == "PATCH"
    assert params["id"] == "eq.b1"
    assert params["payment_status"] == "in.(awaiting_payment,payment_failed)"
    assert params["payment_session_id"] == "eq.cs_1"


def test_update_where_null_guard_and_no_match(supabase, session):
    session.request.return_value = _response(200, [])

    changed = supabase.update_where("b1", {"payment_session_id": None}, {"payment_status": "awaiting_payment"})

    assert changed == 0
    assert session.request.call_args.kwargs["params"]["payment_session_id"] == "is.null"


def test_list_caps_limit_and_orders(supabase, session):
    session.request.return_value = _response(200, [])

    supabase.list(status="pending", limit=10_000)

    params = session.request.call_args.kwargs["params"]
    assert params["limit"] == 500
    assert params["order"] == "created_at.desc"
    assert params["status"] == "eq.pending"


def test_http_error_raises_store_error(supabase, session):
    session.request.return_value = _response(409, {"message": "duplicate key"})

    with pytest.raises(StoreError) as exc:
        supabase.insert({"id": "b1"})
    assert exc.value.retryable


def test_connection_error_raises_store_error(supabase, session):
    session.request.side_effect = requests.ConnectionError("reset")

    with pytest.raises(StoreError):
        supabase.get("b1")


def test_in_memory_guards():
    store = InMemoryBookingStore()
    store.insert({"id": "b1", "payment_status": "unpaid", "payment_session_id": None})

    assert store.update_where("b1", {"payment_status": "paid"}, {"notes": "x"}) == 0
    assert store.update_where("b1", {"payment_session_id": None}, {"payment_session_id": "s1"}) == 1
    assert store.update_where("b1", {"payment_session_id": None}, {"payment_session_id": "s2"}) == 0
    assert store.update_where("b1", {"payment_status": ("unpaid", "paid")}, {"payment_status": "paid"}) == 1
    assert store.find_by_session_id("s1")["payment_status"] == "paid"
    assert store.update_where("missing", {}, {"notes": "x"}) == 0


def test_in_memory_rejects_duplicate_ids():
    store = InMemoryBookingStore()
    store.insert({"id": "b1"})
    with pytest.raises(StoreError):
        store.insert({"id": "b1"})


def test_in_memory_returns_copies():
    store = InMemoryBookingStore()
    row = store.insert({"id": "b1", "payment_status": "unpaid"})
    row["payment_status"] = "paid"
    assert store.get("b1")["payment_status"] == "unpaid"
