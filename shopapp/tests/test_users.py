import pytest

from conftest import make_user
from shopapp.errors import AccountLocked, DuplicateEmail, InvalidCredentials, NotFoundError, PermissionDenied


def test_register_assigns_roles_and_hides_password(services, store):
    admin = make_user(services, email="Admin@Example.com", name="Admin")
    shopper = make_user(services)

    assert admin["role"] == "admin"
    assert admin["email"] == "admin@example.com"
    assert shopper["role"] == "customer"
    assert "password_hash" not in shopper
    stored = store.collection("credentials").get(shopper["uid"])
    assert stored["password_hash"] != "Secret123"


def test_register_rejects_duplicate_email_case_insensitively(services):
    make_user(services)
    assert services.users.email_exists("SHOPPER@example.com")
    with pytest.raises(DuplicateEmail):
        make_user(services, email="Shopper@Example.com")


def test_authenticate_updates_last_login(services, clock):
    user = make_user(services)
    clock.advance(hours=1)

    signed_in = services.users.authenticate("shopper@example.com", "Secret123")

    assert signed_in["uid"] == user["uid"]
    assert signed_in["last_login"] == clock().isoformat()


def test_failed_logins_lock_the_account(services, clock):
    make_user(services)

    with pytest.raises(InvalidCredentials) as first:
        services.users.authenticate("shopper@example.com", "wrong")
    assert first.value.remaining_attempts == 2
    with pytest.raises(InvalidCredentials):
        services.users.authenticate("shopper@example.com", "wrong")
    with pytest.raises(AccountLocked) as locked:
        services.users.authenticate("shopper@example.com", "wrong")
    assert locked.value.remaining_minutes == 15

    clock.advance(minutes=5)
    with pytest.raises(AccountLocked) as still_locked:
        services.users.authenticate("shopper@example.com", "Secret123")
    assert still_locked.value.remaining_minutes == 10

    clock.advance(minutes=11)
    assert services.users.authenticate("shopper@example.com", "Secret123")["email"] == "shopper@example.com"
    assert services.logins.get("shopper@example.com") is None


def test_successful_login_resets_failures(services):
    make_user(services)
    with pytest.raises(InvalidCredentials):
        services.users.authenticate("shopper@example.com", "wrong")

    services.users.authenticate("shopper@example.com", "Secret123")

    assert services.logins.status("shopper@example.com").attempts == 0


def test_inactive_users_cannot_sign_in(services):
    user = make_user(services)
    services.users.update(user["uid"], {"is_active": False})

    with pytest.raises(PermissionDenied):
        services.users.authenticate("shopper@example.com", "Secret123")


def test_role_changes_require_admin_and_block_self_demotion(services):
    admin = make_user(services, email="admin@example.com", name="Admin")
    shopper = make_user(services)

    with pytest.raises(PermissionDenied):
        services.users.update_role(admin["uid"], "customer", shopper["uid"])
    with pytest.raises(PermissionDenied):
        services.users.update_role(admin["uid"], "customer", admin["uid"])

    promoted = services.users.update_role(shopper["uid"], "admin", admin["uid"])
    assert promoted["role"] == "admin"
    assert services.users.is_admin(shopper["uid"])
    assert {u["uid"] for u in services.users.by_role("admin")} == {shopper["uid"], admin["uid"]}


def test_delete_rules(services):
    admin = make_user(services, email="admin@example.com", name="Admin")
    shopper = make_user(services)

    with pytest.raises(PermissionDenied):
        services.users.delete(admin["uid"], admin["uid"])
    with pytest.raises(PermissionDenied):
        services.users.delete(admin["uid"], shopper["uid"])
    with pytest.raises(NotFoundError):
        services.users.delete("ghost", admin["uid"])

    services.users.delete(shopper["uid"], admin["uid"])
    assert services.users.get(shopper["uid"]) is None
    with pytest.raises(InvalidCredentials):
        services.users.authenticate("shopper@example.com", "Secret123")


def test_role_lookups_tolerate_missing_users(services):
    assert services.users.role_of("ghost") is None
    assert services.users.is_admin("ghost") is False
