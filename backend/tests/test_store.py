# Overview: Pytest coverage for the document store contract.

import pytest
from sqlalchemy.exc import OperationalError

from commerce.errors import ConflictError, InvalidStateError, NotFoundError, PersistenceError, ValidationError
from commerce.models import Cart, PaymentMethod
from commerce.services import concurrency
from commerce.time_utils import days_from_now


def _cart_data(session_id, **extra):
    data = {"session_id": session_id, "status": "active", "expires_at": days_from_now(30)}
    data.update(extra)
    return data


class TestReads:
    def test_get_by_document_id_or_integer_id(self, store):
        cart = store.create(Cart, _cart_data("s-1"))

        assert store.get(Cart, cart.id).id == cart.id
        assert store.get(Cart, cart.document_id).id == cart.id
        assert store.get(Cart, "missing") is None
        assert store.get(Cart, None) is None

    def test_filter_operators(self, store):
        store.create(Cart, _cart_data("s-1", total=10))
        store.create(Cart, _cart_data("s-2", total=20))
        store.create(Cart, _cart_data("s-3", total=30, status="converted"))

        assert store.count(Cart, total__gt=10) == 2
        assert store.count(Cart, total__lte=20) == 2
        assert store.count(Cart, status__ne="active") == 1
        assert store.count(Cart, session_id__in=["s-1", "s-3"]) == 2
        assert store.count(Cart, user_id__isnull=True) == 3
        assert store.count(Cart, user_id=None) == 3

    def test_find_many_ordering(self, store):
        for session_id in ("b", "a", "c"):
            store.create(Cart, _cart_data(session_id))

        assert [c.session_id for c in store.find_many(Cart)] == ["b", "a", "c"]
        assert [c.session_id for c in store.find_many(Cart, order_by="session_id")] == ["a", "b", "c"]
        assert [c.session_id for c in store.find_many(Cart, order_by="-session_id")] == ["c", "b", "a"]

    def test_unknown_field_rejected(self, store):
        with pytest.raises(ValidationError):
            store.find(Cart, colour="red")
        with pytest.raises(ValidationError):
            store.find(Cart, total__between=1)


class TestWrites:
    def test_update_and_delete(self, store):
        cart = store.create(Cart, _cart_data("s-1"))

        updated = store.update(Cart, cart.document_id, {"status": "converted"})
        assert updated.status == "converted"

        store.delete(Cart, cart.id)
        assert store.get(Cart, cart.id) is None

    def test_update_missing_record(self, store):
        with pytest.raises(NotFoundError):
            store.update(Cart, "nope", {"status": "converted"})
        with pytest.raises(NotFoundError):
            store.delete(Cart, "nope")

    def test_update_expect_guard(self, store):
        cart = store.create(Cart, _cart_data("s-1"))
        store.update(Cart, cart.id, {"status": "converted"}, expect={"status": "active"})

        with pytest.raises(InvalidStateError):
            store.update(Cart, cart.id, {"status": "active"}, expect={"status": "active"})
        assert store.get(Cart, cart.id).status == "converted"

    def test_integrity_error_becomes_conflict(self, store):
        store.create(PaymentMethod, {"code": "card", "name": "Card"})

        with pytest.raises(ConflictError):
            store.create(PaymentMethod, {"code": "card", "name": "Card again"})
        # Session is usable after the rollback
        assert store.count(PaymentMethod) == 1


class TestTransaction:
    def test_commits_all_writes_together(self, store):
        def _work():
            store.create(Cart, _cart_data("s-1"))
            store.create(Cart, _cart_data("s-2"))
            assert store.in_transaction
            return "done"

        assert store.transaction(_work) == "done"
        assert store.count(Cart) == 2
        assert not store.in_transaction

    def test_failure_rolls_back_every_write(self, store):
        def _work():
            store.create(Cart, _cart_data("s-1"))
            raise ValidationError("boom")

        with pytest.raises(ValidationError):
            store.transaction(_work)
        assert store.count(Cart) == 0

    def test_nested_transaction_commits_at_outermost(self, store):
        def _inner():
            store.create(Cart, _cart_data("inner"))

        def _outer():
            store.transaction(_inner)
            store.create(Cart, _cart_data("outer"))
            raise NotFoundError("abort")

        with pytest.raises(NotFoundError):
            store.transaction(_outer)
        assert store.count(Cart) == 0


class TestRetry:
    def test_operational_error_retried_then_translated(self, store, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda _: None)
        calls = {"n": 0}

        def _commit():
            calls["n"] += 1
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(store.session, "commit", _commit)

        with pytest.raises(PersistenceError):
            store.create(PaymentMethod, {"code": "cash", "name": "Cash"})
        assert calls["n"] == 3
