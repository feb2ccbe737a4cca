"""Order creation, visibility and back-office listing"""

import re

import pytest
from sqlalchemy import func, select

from marketplace.application.order_service import OrderService
from marketplace.application.schemas import OrderCreate
from marketplace.domain.errors import InvalidInput, NotFound
from marketplace.domain.models import Order, OrderItem, Transaction

from conftest import auth, order_payload


def count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


class TestCreateOrder:
    def test_campus_order_totals(self, client, seed, db):
        """3 x 3500 + 1000 service + 1000 campus delivery"""
        response = client.post("/orders/", json=order_payload(seed), headers=auth(seed.client))
        assert response.status_code == 201
        body = response.json()
        assert body["subtotal"] == 10500
        assert body["service_fee"] == 1000
        assert body["delivery_fee"] == 1000
        assert body["discount"] == 0
        assert body["total"] == 12500
        assert body["status"] == "pending_confirmation"
        assert body["customer_name"] == "Alice Client"
        assert re.fullmatch(r"ORD-\d{4}-[0-9A-F]{6}", body["code"])
        assert body["items"][0]["unit_price"] == 3500

    def test_merchant_leg_written_with_order(self, client, seed, db):
        response = client.post("/orders/", json=order_payload(seed), headers=auth(seed.client))
        trx = db.execute(select(Transaction).where(Transaction.order_id == response.json()["id"])).scalars().all()
        assert [(t.beneficiary, t.amount, t.commission, t.net_amount, t.status) for t in trx] == [
            ("merchant", 10500, 1050, 9450, "pending")
        ]

    def test_offcampus_order_bills_distance(self, client, seed):
        payload = order_payload(seed, delivery_method="offcampus", distance_km=5)
        body = client.post("/orders/", json=payload, headers=auth(seed.client)).json()
        assert body["delivery_fee"] == 2500
        assert body["total"] == 10500 + 1000 + 2500

    def test_override_price_only_raises(self, client, seed):
        payload = order_payload(seed, items=[
            {"dish_id": seed.fufu.id, "quantity": 1, "override_price": 4000},
            {"dish_id": seed.juice.id, "quantity": 2, "override_price": 1000},
        ])
        body = client.post("/orders/", json=payload, headers=auth(seed.client)).json()
        assert body["subtotal"] == 4000 + 2 * 1500
        prices = {item["name"]: item["override_price"] for item in body["items"]}
        assert prices == {"Fufu": 4000, "Juice": None}

    def test_customer_name_can_be_overridden(self, client, seed):
        body = client.post("/orders/", json=order_payload(seed, customer_name="Ali"), headers=auth(seed.client)).json()
        assert body["customer_name"] == "Ali"

    def test_customer_notified_and_dispatch_texted(self, client, seed, notifications, sms):
        client.post("/orders/", json=order_payload(seed), headers=auth(seed.client))
        assert "order.created" in notifications.types_for(seed.client.id)
        assert "order.pending_confirmation" in notifications.types_for(seed.dispatcher.id)
        assert seed.dispatcher.phone in sms.phones()
        assert seed.admin.phone in sms.phones()
        assert seed.merchant.phone not in sms.phones()

    def test_client_cannot_order_for_someone_else(self, client, seed):
        payload = order_payload(seed, customer_id=seed.other_client.id)
        response = client.post("/orders/", json=payload, headers=auth(seed.client))
        assert response.status_code == 403
        assert response.json()["error"]["status"] == 403

    def test_empty_cart_is_400(self, client, seed):
        response = client.post("/orders/", json=order_payload(seed, items=[]), headers=auth(seed.client))
        assert response.status_code == 400

    def test_requires_token(self, client, seed):
        response = client.post("/orders/", json=order_payload(seed))
        assert response.status_code == 401
        assert response.json() == {"error": {"message": "Missing token", "status": 401}}


class TestOrderValidation:
    def build(self, seed, **overrides):
        return OrderCreate.model_validate(order_payload(seed, **overrides))

    def test_unknown_customer_checked_first(self, db, seed):
        data = self.build(seed, customer_id=999, restaurant_id=999)
        with pytest.raises(NotFound, match="Customer"):
            OrderService(db).create(data)

    def test_unknown_restaurant(self, db, seed):
        with pytest.raises(NotFound, match="Restaurant"):
            OrderService(db).create(self.build(seed, restaurant_id=999))

    def test_dish_from_other_restaurant(self, db, seed):
        data = self.build(seed, items=[{"dish_id": seed.foreign.id, "quantity": 1}])
        with pytest.raises(InvalidInput):
            OrderService(db).create(data)

    def test_missing_dish(self, db, seed):
        data = self.build(seed, items=[{"dish_id": 4242, "quantity": 1}])
        with pytest.raises(InvalidInput):
            OrderService(db).create(data)

    def test_zero_quantity(self, db, seed):
        data = self.build(seed, items=[{"dish_id": seed.fufu.id, "quantity": 0}])
        with pytest.raises(InvalidInput, match="Quantity"):
            OrderService(db).create(data)

    def test_failed_validation_leaves_nothing_behind(self, db, seed):
        data = self.build(seed, items=[
            {"dish_id": seed.fufu.id, "quantity": 1},
            {"dish_id": seed.foreign.id, "quantity": 1},
        ])
        with pytest.raises(InvalidInput):
            OrderService(db).create(data)
        db.rollback()
        assert count(db, Order) == 0
        assert count(db, OrderItem) == 0
        assert count(db, Transaction) == 0

    def test_ledger_failure_rolls_back_order(self, db, seed, monkeypatch):
        def broken_leg(settings, order):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr("marketplace.application.order_service.merchant_leg", broken_leg)
        with pytest.raises(RuntimeError):
            OrderService(db).create(self.build(seed))
        assert count(db, Order) == 0
        assert count(db, OrderItem) == 0


class TestFreeTrialAtCheckout:
    def test_disabled_by_default(self, db, seed):
        order = OrderService(db).create(OrderCreate.model_validate(order_payload(seed)))
        assert order.service_fee == 1000

    def test_first_orders_free_when_enabled(self, db, seed):
        from marketplace.core_settings import get_settings
        config = get_settings().model_copy(update={"FREE_TRIAL_AT_CHECKOUT": True})
        service = OrderService(db, config=config)
        fees = [service.create(OrderCreate.model_validate(order_payload(seed))).delivery_fee for _ in range(4)]
        assert fees == [0, 0, 0, 1000]


class TestOrderVisibility:
    def place(self, client, seed):
        return client.post("/orders/", json=order_payload(seed), headers=auth(seed.client)).json()

    def test_customer_sees_own_orders(self, client, seed):
        order = self.place(client, seed)
        mine = client.get("/orders/me", headers=auth(seed.client)).json()
        assert [o["id"] for o in mine] == [order["id"]]
        assert client.get("/orders/me", headers=auth(seed.other_client)).json() == []

    def test_other_customer_gets_404(self, client, seed):
        order = self.place(client, seed)
        assert client.get(f"/orders/{order['id']}", headers=auth(seed.client)).status_code == 200
        assert client.get(f"/orders/{order['id']}", headers=auth(seed.other_client)).status_code == 404

    def test_merchant_only_sees_confirmed_orders(self, client, seed):
        order = self.place(client, seed)
        assert client.get("/orders/", headers=auth(seed.merchant)).json() == []
        assert client.get(f"/orders/{order['id']}", headers=auth(seed.merchant)).status_code == 404

        client.post(f"/orders/{order['id']}/confirm", headers=auth(seed.dispatcher))
        listed = client.get("/orders/", headers=auth(seed.merchant)).json()
        assert [o["id"] for o in listed] == [order["id"]]
        assert client.get("/orders/", headers=auth(seed.other_merchant)).json() == []

    def test_dispatcher_sees_pending_orders(self, client, seed):
        order = self.place(client, seed)
        listed = client.get("/orders/", params={"status": "pending_confirmation"}, headers=auth(seed.dispatcher))
        assert [o["id"] for o in listed.json()] == [order["id"]]

    def test_clients_cannot_list_all_orders(self, client, seed):
        response = client.get("/orders/", headers=auth(seed.client))
        assert response.status_code == 403
