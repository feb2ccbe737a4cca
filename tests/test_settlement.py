"""Settlement engine and the payout ledger endpoints"""

import pytest
from sqlalchemy import select, delete

from marketplace.application.order_service import OrderService
from marketplace.application.schemas import OrderCreate
from marketplace.application.settlement import SettlementEngine, TransactionService
from marketplace.domain.errors import Conflict, NotFound
from marketplace.domain.models import DeliveryMission, Transaction
from marketplace.infrastructure import settings_store as keys
from marketplace.infrastructure.settings_store import SettingsStore

from conftest import auth, order_payload


@pytest.fixture
def order(db, seed):
    return OrderService(db).create(OrderCreate.model_validate(order_payload(seed)))


@pytest.fixture
def mission(db, seed, order):
    mission = DeliveryMission(
        order_id=order.id,
        restaurant_id=order.restaurant_id,
        courier_user_id=seed.courier.id,
        restaurant_location="Campus block C",
        customer_location="Hostel 4",
        status="delivered",
        earning=2000,
    )
    db.add(mission)
    db.commit()
    return mission


def legs(db, order_id):
    return db.execute(
        select(Transaction).where(Transaction.order_id == order_id).order_by(Transaction.id)
    ).scalars().all()


class TestSettlementEngine:
    def test_creates_both_legs_once(self, db, order, mission):
        engine = SettlementEngine(db)
        engine.ensure_settlement(order.id)
        engine.ensure_settlement(order.id)
        assert [(t.beneficiary, t.amount, t.net_amount) for t in legs(db, order.id)] == [
            ("merchant", 10500, 9450),
            ("courier", 2000, 2000),
        ]

    def test_without_mission_only_merchant_leg(self, db, order):
        result = SettlementEngine(db).ensure_settlement(order.id)
        assert [t.beneficiary for t in result] == ["merchant"]

    def test_recreates_missing_merchant_leg_with_current_rate(self, db, order):
        db.execute(delete(Transaction).where(Transaction.order_id == order.id))
        db.commit()
        SettingsStore(db).set(keys.MERCHANT_COMMISSION_PERCENT, 15)

        (merchant,) = SettlementEngine(db).ensure_settlement(order.id)
        assert (merchant.amount, merchant.commission, merchant.net_amount) == (10500, 1575, 8925)

    def test_stale_existence_check_does_not_duplicate(self, db, order, mission, monkeypatch):
        """A concurrent run already wrote the legs after this run checked for them."""
        SettlementEngine(db).ensure_settlement(order.id)
        monkeypatch.setattr(SettlementEngine, "_leg", lambda self, order_id, beneficiary: None)

        result = SettlementEngine(db).ensure_settlement(order.id)
        assert len(result) == 2
        assert len(legs(db, order.id)) == 2

    def test_unknown_order(self, db):
        with pytest.raises(NotFound):
            SettlementEngine(db).ensure_settlement(999)


class TestTransactionService:
    def test_mark_paid_once(self, db, order):
        (merchant,) = legs(db, order.id)
        assert TransactionService(db).mark_paid(merchant.id).status == "paid"
        with pytest.raises(Conflict):
            TransactionService(db).mark_paid(merchant.id)

    def test_mark_paid_unknown(self, db):
        with pytest.raises(NotFound):
            TransactionService(db).mark_paid(999)


class TestTransactionEndpoints:
    def test_merchant_and_courier_see_their_legs(self, client, db, seed, order, mission):
        SettlementEngine(db).ensure_settlement(order.id)

        merchant_view = client.get("/transactions/", headers=auth(seed.merchant)).json()
        assert [t["beneficiary"] for t in merchant_view] == ["merchant"]
        courier_view = client.get("/transactions/", headers=auth(seed.courier)).json()
        assert [t["beneficiary"] for t in courier_view] == ["courier"]

        assert client.get("/transactions/", headers=auth(seed.other_merchant)).json() == []
        assert client.get("/transactions/", headers=auth(seed.other_courier)).json() == []
        assert len(client.get("/transactions/", headers=auth(seed.admin)).json()) == 2

    def test_status_filter(self, client, db, seed, order):
        (merchant,) = legs(db, order.id)
        client.patch(f"/transactions/{merchant.id}/mark-paid", headers=auth(seed.admin))
        assert client.get("/transactions/", params={"status": "pending"}, headers=auth(seed.admin)).json() == []
        paid = client.get("/transactions/", params={"status": "paid"}, headers=auth(seed.admin)).json()
        assert [t["id"] for t in paid] == [merchant.id]

    def test_mark_paid_is_admin_only(self, client, db, seed, order):
        (merchant,) = legs(db, order.id)
        assert client.patch(f"/transactions/{merchant.id}/mark-paid", headers=auth(seed.merchant)).status_code == 403
        assert client.patch(f"/transactions/{merchant.id}/mark-paid", headers=auth(seed.admin)).status_code == 200
        again = client.patch(f"/transactions/{merchant.id}/mark-paid", headers=auth(seed.admin))
        assert again.status_code == 409

    def test_settle_endpoint_is_idempotent(self, client, seed, order, mission):
        first = client.post(f"/transactions/settle/{order.id}", headers=auth(seed.admin)).json()
        second = client.post(f"/transactions/settle/{order.id}", headers=auth(seed.admin)).json()
        assert [t["id"] for t in first["transactions"]] == [t["id"] for t in second["transactions"]]
        assert len(second["transactions"]) == 2

    def test_clients_have_no_ledger(self, client, seed):
        assert client.get("/transactions/", headers=auth(seed.client)).status_code == 403
