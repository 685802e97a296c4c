# Overview: Pytest coverage for cart creation, items, expiry and guest-to-user migration.

"""
Cart Manager Tests

Covers:
- One live cart per session / user; an expired cart never blocks a new one
- Lookups ignore expired and converted carts
- Item add / merge / update / soft delete with total recalculation
- Guest -> user migration: merge rule, idempotence, empty sessions
- Expired cart sweep: sessions and guest links go with the cart, and one
  failing cart does not stop the rest
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from commerce.errors import ConflictError, InvalidStateError, NotFoundError, PersistenceError, ValidationError
from commerce.models import Cart, CartItem, CheckoutSession, Guest
from commerce.time_utils import utcnow
from conftest import SHIPPING_ADDRESS


class TestCartCreation:
    def test_guest_cart_starts_empty(self, cart_service):
        cart = cart_service.create_guest_cart("sess-1")

        assert cart.session_id == "sess-1"
        assert cart.user_id is None
        assert cart.status == "active"
        assert cart.currency == "USD"
        assert cart.total == Decimal("0.00")
        assert cart.expires_at > utcnow() + timedelta(days=29)

    def test_second_active_guest_cart_conflicts(self, cart_service):
        cart_service.create_guest_cart("sess-1")
        with pytest.raises(ConflictError):
            cart_service.create_guest_cart("sess-1")

    def test_second_active_user_cart_conflicts(self, cart_service, make_user):
        user = make_user()
        cart_service.create_user_cart(user.id)
        with pytest.raises(ConflictError):
            cart_service.create_user_cart(user.id)

    def test_missing_identity_rejected(self, cart_service):
        with pytest.raises(ValidationError):
            cart_service.create_guest_cart("")
        with pytest.raises(ValidationError):
            cart_service.get_or_create_cart()

    def test_get_or_create_reuses_cart(self, cart_service):
        first = cart_service.get_or_create_cart(session_id="sess-1")
        second = cart_service.get_or_create_cart(session_id="sess-1")
        assert first.id == second.id

    def test_expired_guest_cart_does_not_block_a_new_one(self, cart_service, store):
        stale = cart_service.create_guest_cart("sess-1")
        store.update(Cart, stale.id, {"expires_at": utcnow() - timedelta(minutes=1)})

        cart = cart_service.get_or_create_cart(session_id="sess-1")

        assert cart.id != stale.id
        assert cart.status == "active"

    def test_expired_user_cart_does_not_block_migration(self, cart_service, make_product, make_user, store):
        user = make_user()
        product, _ = make_product(price="12.00")
        stale = cart_service.create_user_cart(user.id)
        store.update(Cart, stale.id, {"expires_at": utcnow() - timedelta(minutes=1)})
        guest_cart = cart_service.create_guest_cart("sess-1")
        cart_service.add_item(guest_cart.id, product.id, 2)

        user_cart = cart_service.migrate_guest_to_user_cart("sess-1", user.id)

        assert user_cart.id not in (stale.id, guest_cart.id)
        assert user_cart.total == Decimal("24.00")


class TestCartLookup:
    def test_expired_cart_not_returned(self, cart_service, store):
        cart = cart_service.create_guest_cart("sess-1")
        store.update(Cart, cart.id, {"expires_at": utcnow() - timedelta(minutes=1)})

        assert cart_service.get_cart_by_session_id("sess-1") is None

    def test_converted_cart_not_returned(self, cart_service, store, make_user):
        user = make_user()
        cart = cart_service.create_user_cart(user.id)
        store.update(Cart, cart.id, {"status": "converted"})

        assert cart_service.get_cart_by_user_id(user.id) is None

    def test_user_cart_not_returned_for_session(self, cart_service, store, make_user):
        user = make_user()
        cart = cart_service.create_user_cart(user.id)
        store.update(Cart, cart.id, {"session_id": "sess-1"})

        assert cart_service.get_cart_by_session_id("sess-1") is None


class TestCartItems:
    def test_add_item_snapshots_price_and_totals(self, cart_service, make_product):
        product, _ = make_product(price="19.99")
        cart = cart_service.create_guest_cart("sess-1")

        item = cart_service.add_item(cart.id, product.id, 3)

        assert item.price == Decimal("19.99")
        assert item.total == Decimal("59.97")
        cart = cart_service.get_cart(cart.id)
        assert cart.subtotal == Decimal("59.97")
        assert cart.total == Decimal("59.97")

    def test_add_same_product_merges_line(self, cart_service, make_product):
        product, _ = make_product(price="5.00")
        cart = cart_service.create_guest_cart("sess-1")

        cart_service.add_item(cart.id, product.id, 1)
        cart_service.add_item(cart.id, product.id, 2)

        items = cart_service.get_items(cart)
        assert len(items) == 1
        assert items[0].quantity == 3
        assert items[0].total == Decimal("15.00")

    def test_variant_price_used(self, cart_service, make_product):
        product, variant = make_product(price="10.00", inventory=4, variant_price="12.50")
        cart = cart_service.create_guest_cart("sess-1")

        item = cart_service.add_item(cart.id, product.document_id, 2, variant_id=variant.document_id)

        assert item.variant_id == variant.id
        assert item.total == Decimal("25.00")

    def test_invalid_quantity(self, cart_service, make_product):
        product, _ = make_product()
        cart = cart_service.create_guest_cart("sess-1")

        for quantity in (0, -1, 1.5, "2", True):
            with pytest.raises(ValidationError):
                cart_service.add_item(cart.id, product.id, quantity)

    def test_unknown_or_inactive_product(self, cart_service, make_product):
        product, _ = make_product(is_active=False)
        cart = cart_service.create_guest_cart("sess-1")

        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.id, product.id, 1)
        with pytest.raises(NotFoundError):
            cart_service.add_item(cart.id, "missing", 1)

    def test_update_and_remove_item(self, cart_service, make_product, store):
        product_a, _ = make_product(price="10.00")
        product_b, _ = make_product(price="4.00")
        cart = cart_service.create_guest_cart("sess-1")
        item_a = cart_service.add_item(cart.id, product_a.id, 1)
        item_b = cart_service.add_item(cart.id, product_b.id, 1)

        cart_service.update_item_quantity(cart.id, item_a.document_id, 4)
        cart_service.remove_item(cart.id, item_b.document_id)

        cart = cart_service.get_cart(cart.id)
        assert cart.total == Decimal("40.00")
        assert [i.id for i in cart_service.get_items(cart)] == [item_a.id]
        # Soft delete keeps the row
        assert store.get(CartItem, item_b.id).deleted_at is not None

        with pytest.raises(NotFoundError):
            cart_service.remove_item(cart.id, item_b.document_id)

    def test_clear_cart(self, cart_service, make_product):
        product, _ = make_product(price="3.00")
        cart = cart_service.create_guest_cart("sess-1")
        cart_service.add_item(cart.id, product.id, 2)

        cart = cart_service.clear_cart(cart.id)

        assert cart.total == Decimal("0.00")
        assert cart_service.get_items(cart) == []

    def test_total_never_negative(self, cart_service, make_product, store):
        product, _ = make_product(price="10.00")
        cart = cart_service.create_guest_cart("sess-1")
        store.update(Cart, cart.id, {"discount_amount": Decimal("25.00"), "shipping": Decimal("5.00")})

        cart_service.add_item(cart.id, product.id, 1)

        assert cart_service.get_cart(cart.id).total == Decimal("0.00")

    def test_converted_cart_is_read_only(self, cart_service, make_product, store):
        product, _ = make_product()
        cart = cart_service.create_guest_cart("sess-1")
        store.update(Cart, cart.id, {"status": "converted"})

        with pytest.raises(InvalidStateError):
            cart_service.add_item(cart.id, product.id, 1)


class TestGuestToUserMigration:
    def test_guest_cart_becomes_new_user_cart(self, cart_service, make_product, make_user, store):
        """sess-1 holds P1 x2 at 10.00; the user has no cart yet."""
        product, _ = make_product(price="10.00", title="P1")
        user = make_user()
        guest_cart = cart_service.create_guest_cart("sess-1")
        cart_service.add_item(guest_cart.id, product.id, 2)
        assert cart_service.get_cart(guest_cart.id).total == Decimal("20.00")

        user_cart = cart_service.migrate_guest_to_user_cart("sess-1", user.id)

        assert user_cart.id != guest_cart.id
        assert user_cart.user_id == user.id
        items = cart_service.get_items(user_cart)
        assert len(items) == 1
        assert items[0].quantity == 2
        assert items[0].total == Decimal("20.00")
        assert store.get(Cart, guest_cart.id).status == "converted"

    def test_merge_keeps_destination_price(self, cart_service, make_product, make_user):
        """Guest P x2 at 10.00 merged into a user cart holding P x1 at 12.00."""
        product, _ = make_product(price="10.00")
        user = make_user()

        guest_cart = cart_service.create_guest_cart("sess-1")
        cart_service.add_item(guest_cart.id, product.id, 2)

        user_cart = cart_service.create_user_cart(user.id)
        item = cart_service.add_item(user_cart.id, product.id, 1)
        # Price moved between the two adds
        cart_service.store.update(CartItem, item.id, {"price": Decimal("12.00"), "total": Decimal("12.00")})
        cart_service.recalculate_totals(user_cart.id)

        merged = cart_service.migrate_guest_to_user_cart("sess-1", user.id)

        items = cart_service.get_items(merged)
        assert len(items) == 1
        assert items[0].quantity == 3
        assert items[0].price == Decimal("12.00")
        assert items[0].total == Decimal("36.00")
        assert merged.total == Decimal("36.00")
        assert cart_service.store.get(Cart, guest_cart.id).status == "converted"
        assert cart_service.get_cart_by_session_id("sess-1") is None

    def test_copies_lines_into_new_user_cart(self, cart_service, make_product, make_user):
        product_a, _ = make_product(price="2.00")
        product_b, variant_b = make_product(price="3.00", inventory=10)
        user = make_user()
        guest_cart = cart_service.create_guest_cart("sess-1")
        cart_service.add_item(guest_cart.id, product_a.id, 1, notes="gift")
        cart_service.add_item(guest_cart.id, product_b.id, 2, variant_id=variant_b.id)

        user_cart = cart_service.migrate_guest_to_user_cart("sess-1", user.id)

        assert user_cart.user_id == user.id
        items = cart_service.get_items(user_cart)
        assert [(i.product_id, i.variant_id, i.quantity) for i in items] == [
            (product_a.id, None, 1),
            (product_b.id, variant_b.id, 2),
        ]
        assert items[0].notes == "gift"
        assert user_cart.total == Decimal("8.00")

    def test_second_migration_is_noop(self, cart_service, make_product, make_user):
        product, _ = make_product(price="10.00")
        user = make_user()
        guest_cart = cart_service.create_guest_cart("sess-1")
        cart_service.add_item(guest_cart.id, product.id, 2)

        first = cart_service.migrate_guest_to_user_cart("sess-1", user.id)
        second = cart_service.migrate_guest_to_user_cart("sess-1", user.id)

        assert second is None
        cart = cart_service.get_cart(first.id)
        assert cart_service.get_items(cart)[0].quantity == 2
        assert cart.total == Decimal("20.00")

    def test_no_guest_cart(self, cart_service, make_user):
        user = make_user()
        assert cart_service.migrate_guest_to_user_cart("sess-none", user.id) is None
        assert cart_service.get_cart_by_user_id(user.id) is None


class TestExpiry:
    def test_update_cart_expiration(self, cart_service):
        cart = cart_service.create_guest_cart("sess-1")
        new_expiry = (utcnow() + timedelta(days=2)).replace(microsecond=0)

        cart = cart_service.update_cart_expiration(cart.id, new_expiry)

        assert cart.expires_at == new_expiry

    def test_cleanup_deletes_only_expired_active_carts(self, cart_service, make_product, store, make_user):
        product, _ = make_product()
        expired = cart_service.create_guest_cart("sess-old")
        cart_service.add_item(expired.id, product.id, 1)
        fresh = cart_service.create_guest_cart("sess-new")
        converted = cart_service.create_user_cart(make_user().id)

        past = utcnow() - timedelta(days=1)
        store.update(Cart, expired.id, {"expires_at": past})
        store.update(Cart, converted.id, {"expires_at": past, "status": "converted"})

        assert cart_service.cleanup_expired_carts() == 1
        assert store.get(Cart, expired.id) is None
        assert store.count(CartItem, cart_id=expired.id) == 0
        assert store.get(Cart, fresh.id) is not None
        assert store.get(Cart, converted.id) is not None

    def test_cleanup_removes_sessions_and_guest_links(self, cart_service, checkout_service, guest_service,
                                                      make_product, store):
        product, _ = make_product()
        cart = cart_service.create_guest_cart("sess-old")
        cart_service.add_item(cart.id, product.id, 1)
        session = checkout_service.start_checkout(cart.id, SHIPPING_ADDRESS)
        checkout_service.abandon_checkout(session.id)
        guest = guest_service.create_guest({"session_id": "sess-old", "cart_id": cart.document_id})
        assert guest.cart_id == cart.id

        store.update(Cart, cart.id, {"expires_at": utcnow() - timedelta(days=1)})

        assert cart_service.cleanup_expired_carts() == 1
        assert store.get(Cart, cart.id) is None
        assert store.count(CheckoutSession, cart_id=cart.id) == 0
        assert store.get(Guest, guest.id).cart_id is None

    def test_cleanup_continues_past_a_failing_cart(self, cart_service, make_product, store, monkeypatch):
        product, _ = make_product()
        stuck = cart_service.create_guest_cart("sess-stuck")
        cart_service.add_item(stuck.id, product.id, 1)
        gone = cart_service.create_guest_cart("sess-gone")
        cart_service.add_item(gone.id, product.id, 1)
        past = utcnow() - timedelta(days=1)
        store.update(Cart, stuck.id, {"expires_at": past})
        store.update(Cart, gone.id, {"expires_at": past})
        stuck_pk, gone_pk = stuck.id, gone.id

        real_delete = store.delete

        def _failing_delete(model, ident):
            if model is Cart and ident == stuck_pk:
                raise PersistenceError("store unavailable")
            return real_delete(model, ident)

        monkeypatch.setattr(store, "delete", _failing_delete)

        assert cart_service.cleanup_expired_carts() == 1

        monkeypatch.undo()
        assert store.get(Cart, gone_pk) is None
        # The failed cart is left whole, items included
        assert store.get(Cart, stuck_pk) is not None
        assert store.count(CartItem, cart_id=stuck_pk) == 1
