"""Tests for the product catalog."""

import pytest
from pydantic import ValidationError

import catalog
import orders
from config import load_coupons
from errors import Conflict, InsufficientStock, InvalidSize, NotFound, ValidationFailed
from schemas import ProductCreate, ProductUpdate

NEW_PRODUCT = {
    "name": "Saffron Musk Gold",
    "description": "Kashmiri saffron over white musk.",
    "category": "Musk & Amber",
    "origin": "Kashmir, India",
    "sizes": [{"volume": "3ml", "price": 55, "stock": 40}],
}

COUPONS = load_coupons()


class TestSlugify:
    @pytest.mark.parametrize("name,slug", [
        ("Royal Hind Oud", "royal-hind-oud"),
        ("  Oud & Rose -- No. 7 ", "oud-rose-no-7"),
        ("Mysore Shamama!", "mysore-shamama"),
    ])
    def test_slugs(self, name, slug):
        assert catalog.slugify(name) == slug

    def test_name_without_letters(self):
        with pytest.raises(ValidationFailed):
            catalog.slugify("!!!")


class TestListProducts:
    def test_filters(self, db, make_product):
        make_product("Royal Hind Oud", badge="Bestseller", is_featured=True)
        make_product("Damask Rose Taif", category="Rose & Florals", gender="Feminine")
        make_product("Hidden Oud", is_active=False)

        assert catalog.list_products(db)["total"] == 2
        assert [p["name"] for p in catalog.list_products(db, category="Rose & Florals")["products"]] == [
            "Damask Rose Taif"
        ]
        assert catalog.list_products(db, badge="Bestseller")["total"] == 1
        assert catalog.list_products(db, featured=True)["total"] == 1
        assert catalog.list_products(db, gender="Feminine")["total"] == 1

    def test_search_is_case_insensitive(self, db, make_product):
        make_product("Royal Hind Oud")
        make_product("Damask Rose Taif")
        result = catalog.list_products(db, search="rose")
        assert [p["name"] for p in result["products"]] == ["Damask Rose Taif"]

    def test_search_treats_input_literally(self, db, make_product):
        make_product("Royal Hind Oud")
        assert catalog.list_products(db, search=".*")["total"] == 0

    def test_price_range_matches_any_size(self, db, make_product):
        make_product("Cheap", sizes=[{"volume": "3ml", "price": 20.0, "stock": 1}])
        make_product("Mid", sizes=[{"volume": "3ml", "price": 20.0, "stock": 1}, {"volume": "6ml", "price": 60.0, "stock": 1}])
        make_product("Dear", sizes=[{"volume": "3ml", "price": 150.0, "stock": 1}])
        result = catalog.list_products(db, min_price=50, max_price=100)
        assert [p["name"] for p in result["products"]] == ["Mid"]

    def test_pagination_and_name_sort(self, db, make_product):
        for name in ("Cedar", "Amber", "Basil"):
            make_product(name)
        result = catalog.list_products(db, sort="name", page=2, limit=2)
        assert result["total"] == 3
        assert result["total_pages"] == 2
        assert result["current_page"] == 2
        assert [p["name"] for p in result["products"]] == ["Cedar"]


class TestLookup:
    def test_by_id_and_slug(self, db, make_product):
        product = make_product("Royal Hind Oud")
        assert catalog.get_product(db, str(product["_id"]))["name"] == "Royal Hind Oud"
        found = catalog.get_product_by_slug(db, "royal-hind-oud")
        assert found["_id"] == product["_id"]
        assert found["reviews"] == []

    def test_inactive_is_not_found(self, db, make_product):
        product = make_product(is_active=False)
        with pytest.raises(NotFound):
            catalog.get_product(db, str(product["_id"]))
        with pytest.raises(NotFound):
            catalog.get_product_by_slug(db, product["slug"])

    def test_related_share_the_category(self, db, make_product):
        product = make_product()
        sibling = make_product()
        make_product(category="Gift Sets")
        make_product(is_active=False)
        related = catalog.related_products(db, str(product["_id"]))
        assert [p["_id"] for p in related] == [sibling["_id"]]

    def test_search_suggestions(self, db, make_product):
        make_product("Royal Hind Oud")
        make_product("Black Oud Cambodian")
        make_product("Damask Rose Taif")
        names = {s["name"] for s in catalog.search_suggestions(db, "oud")}
        assert names == {"Royal Hind Oud", "Black Oud Cambodian"}


class TestAdminMaintenance:
    def test_create(self, db):
        product = catalog.create_product(db, ProductCreate(**NEW_PRODUCT))
        assert product["slug"] == "saffron-musk-gold"
        assert product["ratings"] == {"average": 0.0, "count": 0}
        assert product["is_active"] is True
        assert product["gender"] == "Unisex"

    def test_duplicate_name(self, db):
        catalog.create_product(db, ProductCreate(**NEW_PRODUCT))
        with pytest.raises(Conflict):
            catalog.create_product(db, ProductCreate(**NEW_PRODUCT))

    def test_rename_updates_slug(self, db, make_product):
        product = make_product("Old Name")
        updated = catalog.update_product(db, str(product["_id"]), ProductUpdate(name="New Name", is_featured=True))
        assert updated["slug"] == "new-name"
        assert updated["is_featured"] is True

    def test_update_unknown(self, db):
        with pytest.raises(NotFound):
            catalog.update_product(db, "64b7f0c2a1b2c3d4e5f60718", ProductUpdate(name="Nothing"))

    def test_delete_is_soft(self, db, make_product):
        product = make_product()
        catalog.delete_product(db, str(product["_id"]))
        assert db["product"].find_one({"_id": product["_id"]})["is_active"] is False
        assert catalog.list_products(db)["total"] == 0


class TestSizeEditsAndStock:
    def test_price_edit_keeps_stock_taken_by_checkout(self, db, customer, make_product, order_request, stock_of):
        product = make_product()
        loaded_sizes = [dict(size) for size in product["sizes"]]
        orders.place_order(db, customer, order_request((product, "3ml", 3)), COUPONS)

        loaded_sizes[0]["price"] = 45.0
        updated = catalog.update_product(db, str(product["_id"]), ProductUpdate(sizes=loaded_sizes))

        assert [size["price"] for size in updated["sizes"]] == [45.0, 75.0]
        assert stock_of(product, "3ml") == 7
        assert stock_of(product, "6ml") == 5

    def test_new_size_starts_empty_and_dropped_size_goes(self, db, make_product, stock_of):
        product = make_product()
        updated = catalog.update_product(db, str(product["_id"]), ProductUpdate(sizes=[
            {"volume": "6ml", "price": 70.0},
            {"volume": "12ml", "price": 130.0, "stock": 50},
        ]))
        assert [(s["volume"], s["stock"]) for s in updated["sizes"]] == [("6ml", 5), ("12ml", 0)]

    def test_repeated_volume_is_rejected(self):
        with pytest.raises(ValidationError):
            ProductUpdate(sizes=[{"volume": "3ml", "price": 1}, {"volume": "3ml", "price": 2}])

    def test_size_edit_on_unknown_product(self, db):
        with pytest.raises(NotFound):
            catalog.update_product(db, "64b7f0c2a1b2c3d4e5f60718", ProductUpdate(sizes=[{"volume": "3ml", "price": 1}]))

    def test_restock_and_remove(self, db, make_product, stock_of):
        product = make_product()
        catalog.adjust_stock(db, str(product["_id"]), "3ml", 15)
        assert stock_of(product, "3ml") == 25
        updated = catalog.adjust_stock(db, str(product["_id"]), "6ml", -5)
        assert stock_of(product, "6ml") == 0
        assert updated["sizes"][1]["stock"] == 0

    def test_cannot_remove_more_than_held(self, db, make_product, stock_of):
        product = make_product()
        with pytest.raises(InsufficientStock) as exc:
            catalog.adjust_stock(db, str(product["_id"]), "6ml", -6)
        assert exc.value.available == 5
        assert stock_of(product, "6ml") == 5

    def test_adjust_unknown_size_or_product(self, db, make_product):
        product = make_product()
        with pytest.raises(InvalidSize):
            catalog.adjust_stock(db, str(product["_id"]), "50ml", 1)
        with pytest.raises(NotFound):
            catalog.adjust_stock(db, "64b7f0c2a1b2c3d4e5f60718", "3ml", 1)
