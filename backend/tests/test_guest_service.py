# Overview: Pytest coverage for guest registration and guest-to-user conversion.

"""
Guest Identity Bridge Tests

Covers:
- Guest creation guards (email format, registered email, duplicate session, cart ownership)
- Conversion: user created, guest converted, cart carried across
- Conversion guards fire before any write
- Compensating rollback when cart migration fails
- Funnel analytics
"""

from decimal import Decimal

import pytest

from commerce.errors import (
    AlreadyConvertedError,
    CartOwnershipError,
    ConflictError,
    DuplicateSessionError,
    EmailConflictError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from commerce.models import Cart, Guest, User
from commerce.services.guest_service import verify_password


USER_DATA = {
    "username": "jane",
    "email": "Jane@Example.com",
    "password": "secret1",
    "first_name": "Jane",
    "last_name": "Doe",
}


class TestCreateGuest:
    def test_create_guest_with_own_cart(self, guest_service, cart_service):
        cart = cart_service.create_guest_cart("s1")

        guest = guest_service.create_guest({
            "session_id": "s1",
            "email": "Shopper@Example.com",
            "cart_id": cart.document_id,
            "metadata": {"utm_source": "newsletter"},
        })

        assert guest.status == "active"
        assert guest.email == "shopper@example.com"
        assert guest.cart_id == cart.id
        assert guest.to_dict()["metadata"] == {"utm_source": "newsletter"}

    def test_registered_email_conflicts(self, guest_service, make_user, store):
        make_user("used", email="used@x.com")

        with pytest.raises(EmailConflictError):
            guest_service.create_guest({"session_id": "s1", "email": "used@x.com"})
        assert store.count(Guest) == 0

    def test_bad_email(self, guest_service):
        for email in ("not-an-email", "a@b", "a b@c.d", ""):
            with pytest.raises(ValidationError):
                guest_service.create_guest({"session_id": "s1", "email": email})

    def test_duplicate_session(self, guest_service):
        guest_service.create_guest({"session_id": "s1"})

        with pytest.raises(DuplicateSessionError):
            guest_service.create_guest({"session_id": "s1"})

    def test_cart_checks(self, guest_service, cart_service, make_user):
        other_session_cart = cart_service.create_guest_cart("s2")
        user_cart = cart_service.create_user_cart(make_user().id)

        with pytest.raises(NotFoundError):
            guest_service.create_guest({"session_id": "s1", "cart_id": "missing"})
        with pytest.raises(CartOwnershipError):
            guest_service.create_guest({"session_id": "s1", "cart_id": other_session_cart.id})
        with pytest.raises(CartOwnershipError):
            guest_service.create_guest({"session_id": "s1", "cart_id": user_cart.id})

    def test_metadata_must_be_object(self, guest_service):
        with pytest.raises(ValidationError):
            guest_service.create_guest({"session_id": "s1", "metadata": ["a"]})


class TestGuestCrud:
    def test_update_merges_metadata(self, guest_service):
        guest_service.create_guest({"session_id": "s1", "metadata": {"a": 1}})

        guest = guest_service.update_guest("s1", {"email": "new@example.com", "metadata": {"b": 2}})

        assert guest.email == "new@example.com"
        assert guest.extra == {"a": 1, "b": 2}

    def test_update_rejects_unknown_fields(self, guest_service):
        guest_service.create_guest({"session_id": "s1"})
        with pytest.raises(ValidationError):
            guest_service.update_guest("s1", {"status": "converted"})

    def test_delete(self, guest_service):
        guest_service.create_guest({"session_id": "s1"})
        guest_service.delete_guest("s1")

        with pytest.raises(NotFoundError):
            guest_service.get_guest("s1")


class TestConvertToUser:
    def test_conversion_carries_cart(self, guest_service, cart_service, make_product, store):
        product, _ = make_product(price="10.00")
        cart = cart_service.create_guest_cart("s1")
        cart_service.add_item(cart.id, product.id, 2)
        guest_service.create_guest({"session_id": "s1", "cart_id": cart.id})

        result = guest_service.convert_to_user("s1", USER_DATA)

        assert result.user.username == "jane"
        assert result.user.email == "jane@example.com"
        assert result.user.confirmed is True
        assert verify_password("secret1", result.user.password_hash)
        assert result.guest.status == "converted"
        assert result.guest.converted_to_user_id == result.user.id
        assert result.guest.converted_at is not None
        assert result.cart.user_id == result.user.id
        assert result.cart.total == Decimal("20.00")
        assert store.get(Cart, cart.id).status == "converted"

    def test_conversion_without_cart(self, guest_service):
        guest_service.create_guest({"session_id": "s1"})

        result = guest_service.convert_to_user("s1", USER_DATA)

        assert result.cart is None
        assert result.to_dict()["cart"] is None

    def test_already_converted_fails_before_writes(self, guest_service, store):
        guest_service.create_guest({"session_id": "s1"})
        guest_service.convert_to_user("s1", USER_DATA)

        with pytest.raises(AlreadyConvertedError) as exc_info:
            guest_service.convert_to_user("s1", {**USER_DATA, "username": "jane2", "email": "j2@example.com"})

        assert isinstance(exc_info.value, InvalidStateError)
        assert store.count(User) == 1

    def test_missing_guest(self, guest_service):
        with pytest.raises(NotFoundError):
            guest_service.convert_to_user("nobody", USER_DATA)

    def test_field_validation(self, guest_service, store):
        guest_service.create_guest({"session_id": "s1"})

        with pytest.raises(ValidationError):
            guest_service.convert_to_user("s1", {**USER_DATA, "last_name": ""})
        with pytest.raises(ValidationError):
            guest_service.convert_to_user("s1", {**USER_DATA, "password": "12345"})
        with pytest.raises(ValidationError):
            guest_service.convert_to_user("s1", {**USER_DATA, "email": "nope"})
        assert store.count(User) == 0
        assert guest_service.get_guest("s1").status == "active"

    def test_non_string_fields_rejected(self, guest_service, store):
        guest_service.create_guest({"session_id": "s1"})

        with pytest.raises(ValidationError) as exc_info:
            guest_service.convert_to_user("s1", {**USER_DATA, "password": 1234567})
        assert "password" in exc_info.value.message
        with pytest.raises(ValidationError):
            guest_service.convert_to_user("s1", {**USER_DATA, "username": ["jane"]})
        assert store.count(User) == 0
        assert guest_service.get_guest("s1").status == "active"

    def test_non_string_session_rejected(self, guest_service, store):
        with pytest.raises(ValidationError):
            guest_service.create_guest({"session_id": {"id": "s1"}})
        assert store.count(Guest) == 0

    def test_username_and_email_uniqueness(self, guest_service, make_user, store):
        make_user("jane", email="someone@example.com")
        make_user("other", email="jane@example.com")
        guest_service.create_guest({"session_id": "s1"})

        with pytest.raises(ConflictError) as exc_info:
            guest_service.convert_to_user("s1", USER_DATA)
        assert not isinstance(exc_info.value, EmailConflictError)

        with pytest.raises(EmailConflictError):
            guest_service.convert_to_user("s1", {**USER_DATA, "username": "jane-new"})
        assert store.count(User) == 2

    def test_failed_migration_rolls_back_conversion(self, guest_service, cart_service, make_product, store, monkeypatch):
        product, _ = make_product()
        cart = cart_service.create_guest_cart("s1")
        cart_service.add_item(cart.id, product.id, 1)
        guest_service.create_guest({"session_id": "s1", "cart_id": cart.id})

        def _broken(session_id, user_id):
            raise PersistenceError("store unavailable")

        monkeypatch.setattr(cart_service, "migrate_guest_to_user_cart", _broken)

        with pytest.raises(PersistenceError):
            guest_service.convert_to_user("s1", USER_DATA)

        guest = guest_service.get_guest("s1")
        assert guest.status == "active"
        assert guest.converted_to_user_id is None
        assert store.count(User) == 0
        assert store.get(Cart, cart.id).status == "active"


class TestAnalytics:
    def test_rates(self, guest_service):
        guest_service.create_guest({"session_id": "s1", "email": "a@example.com"})
        guest_service.create_guest({"session_id": "s2"})
        guest_service.create_guest({"session_id": "s3"})
        guest_service.convert_to_user("s1", USER_DATA)

        analytics = guest_service.get_analytics()

        assert analytics["total_guests"] == 3
        assert analytics["active_guests"] == 2
        assert analytics["converted_guests"] == 1
        assert analytics["conversion_rate"] == 33.33
        # The conversion stores the account email on the guest
        assert analytics["completion_rate"] == 33.33

    def test_empty(self, guest_service):
        analytics = guest_service.get_analytics()
        assert analytics["total_guests"] == 0
        assert analytics["conversion_rate"] == 0.0
