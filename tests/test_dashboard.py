"""Tests for admin reporting and user management."""

from datetime import datetime, timezone

import pytest

import dashboard
import orders
import payments
from config import load_coupons
from errors import NotFound
from schemas import AdminUserUpdate

COUPONS = load_coupons()


@pytest.fixture
def sales(db, customer, gateway, make_product, order_request):
    """Two paid card orders and one unpaid one."""
    oud = make_product("Royal Hind Oud")
    rose = make_product("Damask Rose Taif", category="Rose & Florals")
    placed = [
        orders.place_order(db, customer, order_request((oud, "3ml", 2)), COUPONS),
        orders.place_order(db, customer, order_request((rose, "6ml", 1), (oud, "3ml", 1)), COUPONS),
        orders.place_order(db, customer, order_request((rose, "3ml", 1)), COUPONS),
    ]
    for order in placed[:2]:
        intent = payments.create_payment_intent(db, gateway, customer, str(order["_id"]))
        payments.handle_payment_event(
            db, {"type": payments.PAYMENT_SUCCEEDED, "data": {"object": {"id": intent["payment_intent_id"]}}}
        )
    return {"oud": oud, "rose": rose, "orders": placed}


class TestDashboardStats:
    def test_totals(self, db, admin, sales):
        stats = dashboard.dashboard_stats(db)
        assert stats["stats"] == {
            "total_orders": 3,
            "total_revenue": 214.74,
            "total_users": 1,
            "total_products": 2,
            "pending_orders": 1,
        }
        assert len(stats["recent_orders"]) == 3
        assert stats["recent_orders"][0]["user"]["name"] == "Amina Khan"

    def test_top_products(self, db, sales):
        top = dashboard.top_products(db)
        assert top[0]["name"] == "Royal Hind Oud"
        assert top[0]["total_sold"] == 3
        assert top[0]["revenue"] == 120.0

    def test_monthly_revenue(self, db, sales):
        months = dashboard.monthly_revenue(db)
        assert len(months) == 1
        assert months[0]["orders"] == 2
        assert months[0]["month"] == datetime.now(timezone.utc).strftime("%Y-%m")

    def test_months_back_crosses_years(self):
        now = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)
        assert dashboard._months_back(now, 6) == datetime(2023, 9, 1, tzinfo=timezone.utc)
        assert dashboard._months_back(now, 0) == datetime(2024, 3, 1, tzinfo=timezone.utc)


class TestInventory:
    def test_low_and_out_of_stock(self, db, make_product):
        make_product("Black Oud Cambodian", sizes=[
            {"volume": "3ml", "price": 185.0, "stock": 0},
            {"volume": "6ml", "price": 360.0, "stock": 4},
            {"volume": "12ml", "price": 700.0, "stock": 5},
        ])
        make_product(is_active=False, sizes=[{"volume": "3ml", "price": 10.0, "stock": 0}])

        overview = dashboard.inventory_overview(db)
        assert overview["total_products"] == 1
        assert [(e["product"], e["size"]) for e in overview["out_of_stock"]] == [("Black Oud Cambodian", "3ml")]
        assert [(e["size"], e["stock"]) for e in overview["low_stock"]] == [("6ml", 4)]


class TestSalesAnalytics:
    def test_breakdowns(self, db, sales):
        report = dashboard.sales_analytics(db, 30)
        assert report["orders_by_status"] == {"confirmed": 2, "pending": 1}
        by_category = {row["category"]: row for row in report["sales_by_category"]}
        assert by_category["Oud & Agarwood"] == {"category": "Oud & Agarwood", "revenue": 120.0, "units": 3}
        assert by_category["Rose & Florals"]["revenue"] == 75.0
        assert len(report["daily_sales"]) == 1
        assert report["daily_sales"][0]["orders"] == 2


class TestUsers:
    def test_search_and_role_filter(self, db, customer, admin, make_user):
        make_user("Bilal Ahmed", "bilal@example.com")
        assert dashboard.list_users(db, search="bilal")["total"] == 1
        assert dashboard.list_users(db, role="admin")["users"][0]["email"] == "admin@example.com"
        assert all("password_hash" not in u for u in dashboard.list_users(db)["users"])

    def test_update_role_and_active_flag(self, db, customer):
        updated = dashboard.update_user(db, customer.id, AdminUserUpdate(role="admin", is_active=False))
        assert updated["role"] == "admin"
        assert updated["is_active"] is False
        assert "password_hash" not in updated

    def test_update_unknown_user(self, db):
        with pytest.raises(NotFound):
            dashboard.update_user(db, "64b7f0c2a1b2c3d4e5f60718", AdminUserUpdate(is_active=False))
