"""Tests for the shop: products, keys, orders, coupons and memberships."""

import re

import pytest

from conftest import create_product, future, past
from techblog.db import get_session
from techblog.models import Coupon, ProductKey, UserMembership
from techblog.services.coupons import compute_discount
from techblog.services.shop import generate_order_no


def _coupon(code="SAVE10", type="percentage", value=10, min_amount=0, max_discount=None, total_count=-1,
            used_count=0, status=True, start=None, end=None):
    with get_session() as db:
        coupon = Coupon(code=code, name=code, type=type, value=value, min_amount=min_amount,
                        max_discount=max_discount, total_count=total_count, used_count=used_count,
                        start_time=start or past(days=1), end_time=end or future(days=1), status=status)
        db.add(coupon)
        db.flush()
        return coupon.id


class TestPricing:
    """Pure helpers."""

    def test_order_no_format(self):
        assert re.fullmatch(r"ORD\d{8}[A-Z0-9]{8}", generate_order_no())

    @pytest.mark.parametrize("coupon_type,value,amount,cap,expected", [
        ("percentage", 10, 50, None, 5.0),
        ("percentage", 50, 100, 20, 20.0),
        ("fixed", 5, 49, None, 5.0),
        ("fixed", 80, 49, None, 49.0),
    ])
    def test_compute_discount(self, coupon_type, value, amount, cap, expected):
        assert compute_discount(coupon_type, value, amount, cap) == expected


class TestProducts:
    """Catalogue and key management."""

    def test_listing_hides_inactive_and_reports_stock(self, client, admin):
        create_product(name="Keys", stock=3, keys=("A", "B"))
        create_product(name="Unlimited", type="service", stock=-1, keys=())
        create_product(name="Retired", status="inactive", keys=())

        products = {p["name"]: p for p in client.get("/api/shop/products").json()["data"]}
        assert set(products) == {"Keys", "Unlimited"}
        assert products["Keys"]["availableStock"] == 2
        assert products["Unlimited"]["availableStock"] == -1

        everything = client.get("/api/shop/products", params={"status": "all"}, headers=admin["headers"]).json()
        assert len(everything["data"]) == 3

    def test_create_and_update_product(self, client, admin, user):
        payload = {"name": "Pro", "price": 19.9, "type": "membership", "duration": 30, "features": ["a", "b"]}
        assert client.post("/api/shop/products", json=payload, headers=user["headers"]).status_code == 403

        created = client.post("/api/shop/products", json=payload, headers=admin["headers"]).json()["data"]
        assert created["features"] == ["a", "b"]
        assert created["stock"] == -1

        updated = client.put("/api/shop/products", json={**payload, "id": created["id"], "price": 29.9,
                                                           "status": False}, headers=admin["headers"])
        assert updated.json()["data"]["price"] == 29.9
        assert updated.json()["data"]["status"] == "inactive"

    def test_product_validation(self, client, admin):
        bad_type = client.post("/api/shop/products", json={"name": "X", "price": 1, "type": "nft"},
                               headers=admin["headers"])
        no_duration = client.post("/api/shop/products", json={"name": "X", "price": 1, "type": "membership"},
                                  headers=admin["headers"])
        assert bad_type.status_code == 400
        assert no_duration.status_code == 400

    def test_delete_product_with_orders_rejected(self, client, admin, user):
        product_id = create_product()
        client.post("/api/shop/orders", json={"productId": product_id}, headers=user["headers"])

        response = client.delete("/api/shop/products", params={"id": product_id}, headers=admin["headers"])
        assert response.status_code == 400

    def test_delete_product_removes_keys(self, client, admin):
        product_id = create_product()
        assert client.delete("/api/shop/products", params={"id": product_id}, headers=admin["headers"]).status_code == 200
        with get_session() as db:
            assert db.query(ProductKey).count() == 0

    def test_add_keys(self, client, admin):
        product_id = create_product(keys=("EXISTING",))

        added = client.post("/api/shop/keys", json={"productId": product_id, "keys": [" K1 ", "K2", "K1", ""],
                                                    "expiresInDays": 30}, headers=admin["headers"])
        assert added.json()["data"] == {"count": 2}

        duplicate = client.post("/api/shop/keys", json={"productId": product_id, "keys": ["EXISTING", "K3"]},
                                headers=admin["headers"])
        assert duplicate.status_code == 400
        assert "EXISTING" in duplicate.json()["error"]

        keys = client.get("/api/shop/keys", params={"productId": product_id, "status": "available"},
                          headers=admin["headers"]).json()["data"]
        assert sorted(k["key"] for k in keys) == ["EXISTING", "K1", "K2"]

    def test_sold_key_cannot_be_deleted(self, client, admin):
        product_id = create_product(keys=("SOLD",))
        with get_session() as db:
            key = db.query(ProductKey).filter_by(product_id=product_id).first()
            key.status = "sold"
            key_id = key.id

        response = client.delete("/api/shop/keys", params={"id": key_id}, headers=admin["headers"])
        assert response.status_code == 400


class TestOrders:
    """Order creation, cancellation and admin status changes."""

    def test_create_order(self, client, user):
        product_id = create_product(price=49.0)
        response = client.post("/api/shop/orders", json={"productId": product_id, "paymentMethod": "epay"},
                               headers=user["headers"])

        assert response.status_code == 201
        order = response.json()["data"]
        assert order["status"] == "pending"
        assert order["amount"] == 49.0
        assert order["originalAmount"] == 49.0
        assert order["product"]["name"] == "License"

    def test_inactive_or_sold_out(self, client, user):
        inactive = create_product(status="inactive")
        sold_out = create_product(name="Empty", keys=())

        assert client.post("/api/shop/orders", json={"productId": inactive}, headers=user["headers"]).status_code == 400
        response = client.post("/api/shop/orders", json={"productId": sold_out}, headers=user["headers"])
        assert response.status_code == 400
        assert "sold out" in response.json()["error"]

    def test_pending_order_limit(self, client, user):
        product_id = create_product(type="service", stock=-1, keys=())
        for _ in range(3):
            assert client.post("/api/shop/orders", json={"productId": product_id},
                               headers=user["headers"]).status_code == 201
        assert client.post("/api/shop/orders", json={"productId": product_id},
                           headers=user["headers"]).status_code == 400

    def test_coupon_applied_and_released(self, client, user):
        product_id = create_product(price=100.0)
        coupon_id = _coupon(value=10, max_discount=5, total_count=1)

        order = client.post("/api/shop/orders", json={"productId": product_id, "couponCode": "SAVE10"},
                            headers=user["headers"]).json()["data"]
        assert order["discountAmount"] == 5.0
        assert order["amount"] == 95.0
        assert order["couponId"] == coupon_id

        # single-use coupon is now exhausted
        again = client.post("/api/shop/orders", json={"productId": product_id, "couponCode": "SAVE10"},
                            headers=user["headers"])
        assert again.status_code == 400

        cancelled = client.post(f"/api/shop/orders/{order['id']}/cancel", headers=user["headers"])
        assert cancelled.json()["data"]["status"] == "cancelled"
        with get_session() as db:
            assert db.get(Coupon, coupon_id).used_count == 0

    def test_cancel_rules(self, client, user, other_user):
        product_id = create_product()
        order_id = client.post("/api/shop/orders", json={"productId": product_id},
                               headers=user["headers"]).json()["data"]["id"]

        assert client.post(f"/api/shop/orders/{order_id}/cancel", headers=other_user["headers"]).status_code == 403
        assert client.post(f"/api/shop/orders/{order_id}/cancel", headers=user["headers"]).status_code == 200
        assert client.post(f"/api/shop/orders/{order_id}/cancel", headers=user["headers"]).status_code == 400

    def test_listing_own_and_all(self, client, user, other_user, admin):
        product_id = create_product(type="service", stock=-1, keys=())
        client.post("/api/shop/orders", json={"productId": product_id}, headers=user["headers"])
        client.post("/api/shop/orders", json={"productId": product_id}, headers=other_user["headers"])

        own = client.get("/api/shop/orders", headers=user["headers"]).json()["data"]
        assert len(own) == 1
        assert own[0]["user"]["name"] == "alice"

        # admin=true is ignored for non-admins
        assert len(client.get("/api/shop/orders", params={"admin": "true"}, headers=user["headers"]).json()["data"]) == 1
        assert len(client.get("/api/shop/orders", params={"admin": "true"}, headers=admin["headers"]).json()["data"]) == 2

    def test_admin_marks_paid_and_delivers_key(self, client, user, admin):
        product_id = create_product(keys=("KEY-1",))
        order_id = client.post("/api/shop/orders", json={"productId": product_id},
                               headers=user["headers"]).json()["data"]["id"]

        paid = client.put("/api/shop/orders", json={"orderId": order_id, "status": "paid"}, headers=admin["headers"])
        assert paid.status_code == 200
        assert paid.json()["data"]["productKey"] == "KEY-1"

        again = client.put("/api/shop/orders", json={"id": order_id, "status": "paid"}, headers=admin["headers"])
        assert again.status_code == 400

        completed = client.put("/api/shop/orders", json={"id": order_id, "status": "completed"},
                               headers=admin["headers"])
        assert completed.json()["data"]["status"] == "completed"

    def test_admin_refund_only_changes_status(self, client, user, admin):
        product_id = create_product(keys=("KEY-1",))
        order_id = client.post("/api/shop/orders", json={"productId": product_id},
                               headers=user["headers"]).json()["data"]["id"]
        client.put("/api/shop/orders", json={"id": order_id, "status": "paid"}, headers=admin["headers"])

        refunded = client.put("/api/shop/orders", json={"id": order_id, "status": "refunded"}, headers=admin["headers"])
        assert refunded.json()["data"]["status"] == "refunded"
        with get_session() as db:
            assert db.query(ProductKey).filter_by(key_value="KEY-1").one().status == "sold"

    def test_order_status_requires_admin(self, client, user):
        assert client.put("/api/shop/orders", json={"id": 1, "status": "paid"}, headers=user["headers"]).status_code == 403


class TestCoupons:
    """Coupon validation and admin CRUD."""

    def test_validate(self, client):
        _coupon(code="HALF", value=50, max_discount=20, min_amount=10)
        data = client.get("/api/shop/coupons", params={"code": "HALF", "amount": 100}).json()["data"]
        assert data["discountAmount"] == 20.0
        assert data["finalAmount"] == 80.0
        assert data["code"] == "HALF"

    @pytest.mark.parametrize("kwargs,amount,status", [
        ({"code": "OTHER"}, 100, 404),
        ({"status": False}, 100, 400),
        ({"start": future(days=1), "end": future(days=2)}, 100, 400),
        ({"start": past(days=2), "end": past(days=1)}, 100, 400),
        ({"total_count": 2, "used_count": 2}, 100, 400),
        ({"min_amount": 200}, 100, 400),
    ])
    def test_validate_rejections(self, client, kwargs, amount, status):
        _coupon(**kwargs)
        response = client.get("/api/shop/coupons", params={"code": "SAVE10", "amount": amount})
        assert response.status_code == status
        assert response.json()["success"] is False

    def test_admin_crud(self, client, admin, user):
        payload = {"code": "NEW5", "name": "Five off", "type": "fixed", "value": 5,
                   "startTime": "2024-01-01T00:00:00Z", "endTime": "2099-01-01T00:00:00Z"}
        assert client.post("/api/shop/coupons", json=payload, headers=user["headers"]).status_code == 403

        created = client.post("/api/shop/coupons", json=payload, headers=admin["headers"])
        assert created.status_code == 201
        coupon_id = created.json()["data"]["id"]
        assert created.json()["data"]["totalCount"] == -1

        assert client.post("/api/shop/coupons", json=payload, headers=admin["headers"]).status_code == 400
        missing = client.post("/api/shop/coupons", json={"code": "X"}, headers=admin["headers"])
        assert missing.status_code == 400

        updated = client.put("/api/shop/coupons", json={"id": coupon_id, "status": False}, headers=admin["headers"])
        assert updated.json()["data"]["status"] is False

        assert len(client.get("/api/shop/coupons/all", headers=admin["headers"]).json()["data"]) == 1
        assert client.delete("/api/shop/coupons", params={"id": coupon_id}, headers=admin["headers"]).status_code == 200


class TestMembership:
    """Active membership lookup."""

    def test_no_membership(self, client, user):
        assert client.get("/api/shop/membership", headers=user["headers"]).json() == {"success": True, "data": None}

    def test_active_membership(self, client, user):
        with get_session() as db:
            db.add(UserMembership(user_id=user["id"], type="monthly", start_date=past(days=1),
                                  end_date=future(days=29), status="active"))
        data = client.get("/api/shop/membership", headers=user["headers"]).json()["data"]
        assert data["type"] == "monthly"

    def test_lapsed_membership(self, client, user):
        with get_session() as db:
            db.add(UserMembership(user_id=user["id"], type="monthly", start_date=past(days=40),
                                  end_date=past(days=10), status="active"))
        assert client.get("/api/shop/membership", headers=user["headers"]).json()["data"] is None

    def test_requires_login(self, client):
        assert client.get("/api/shop/membership").status_code == 401
