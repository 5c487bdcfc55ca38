import pytest

from conftest import make_product
from shopapp.errors import NotFoundError


def test_create_defaults_active_and_creates_inventory_row(services):
    product = make_product(services, stock=15)

    assert product["is_active"] is True
    assert product["description"] == ""
    row = services.inventory.by_product_id(product["id"])
    assert row is not None
    assert row["quantity"] == 15
    assert row["min_stock"] == 10
    assert row["max_stock"] == 1000


def test_create_without_stock_skips_inventory(services):
    product = make_product(services, stock=0)
    assert services.inventory.by_product_id(product["id"]) is None


def test_update_syncs_inventory_and_requires_product(services):
    product = make_product(services, stock=5)

    updated = services.catalog.update(product["id"], {"stock": 40, "name": "Jasmine Rice 10kg", "price": None})

    assert updated["price"] == 189.0
    row = services.inventory.by_product_id(product["id"])
    assert row["quantity"] == 40
    assert row["product_name"] == "Jasmine Rice 10kg"

    with pytest.raises(NotFoundError):
        services.catalog.update("missing", {"name": "x"})


def test_delete_removes_inventory_rows(services):
    product = make_product(services)

    services.catalog.delete(product["id"])

    assert services.catalog.get(product["id"]) is None
    assert services.inventory.by_product_id(product["id"]) is None


def test_active_search_and_category(services, clock):
    rice = make_product(services, name="Jasmine Rice", category="Groceries")
    clock.advance(minutes=1)
    make_product(services, name="Fish Sauce", category="Condiments", description="Made from anchovies")
    clock.advance(minutes=1)
    make_product(services, name="Old Rice Cooker", category="Groceries", is_active=False)

    assert [p["name"] for p in services.catalog.all()] == ["Old Rice Cooker", "Fish Sauce", "Jasmine Rice"]
    assert [p["name"] for p in services.catalog.active()] == ["Fish Sauce", "Jasmine Rice"]
    assert {p["name"] for p in services.catalog.search("RICE")} == {"Jasmine Rice", "Old Rice Cooker"}
    assert [p["name"] for p in services.catalog.search("anchov")] == ["Fish Sauce"]
    assert [p["id"] for p in services.catalog.by_category("Groceries")] == [rice["id"]]


def test_reduce_stock_clamps_at_zero_and_skips_unknown(services):
    product = make_product(services, stock=3)

    services.catalog.reduce_stock_for_order(
        [{"product_id": product["id"], "quantity": 5}, {"product_id": "ghost", "quantity": 1}]
    )
    assert services.catalog.get(product["id"])["stock"] == 0

    services.catalog.restore_stock_for_order([{"product_id": product["id"], "quantity": 2}])
    assert services.catalog.get(product["id"])["stock"] == 2
