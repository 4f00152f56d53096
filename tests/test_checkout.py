"""Tests for the checkout wizard."""

import json
from unittest import mock

import pytest
from pymongo.errors import PyMongoError

from checkout import CheckoutFlow, CheckoutState, DeliveryMethod, Step
from errors import MissingDataError, NotFoundError, PaymentLinkError, PreconditionError, StorageError


@pytest.fixture
def flow(session, users, carts, orders, catalog, payments):
    f = CheckoutFlow(session, users, carts, orders, catalog, payments)
    f.load_addresses()
    return f


def at_review(flow, *texts):
    """Add addresses, fill the cart and walk the flow to the review step."""
    for text in texts or ("12 Rizal St, Manila",):
        flow.add_address(text)
    flow.select_address(flow.state.addresses[0].id)
    flow.session.cart.add(1, 2)
    flow.proceed_to_delivery()
    flow.proceed_to_review()
    return flow


class TestAddresses:
    def test_load_selects_first(self, flow, users, user_id):
        users.push_address(user_id, {"id": "1", "address": "A"})
        users.push_address(user_id, {"id": "2", "address": "B"})
        fresh = CheckoutFlow(flow.session, users, flow.carts, flow.orders, flow.catalog)
        fresh.load_addresses()
        assert [a.id for a in fresh.state.addresses] == ["1", "2"]
        assert fresh.state.selected_address == "1"

    def test_load_missing_user(self, session, users, carts, orders, catalog):
        session.user_id = "nobody"
        f = CheckoutFlow(session, users, carts, orders, catalog)
        with pytest.raises(NotFoundError):
            f.load_addresses()

    def test_add_persists_in_insertion_order(self, flow, users, user_id):
        a = flow.add_address("A street")
        b = flow.add_address("B street")
        assert [x["address"] for x in users.addresses(user_id)] == ["A street", "B street"]
        assert a.id != b.id
        assert [x.id for x in flow.state.addresses] == [a.id, b.id]

    def test_add_never_duplicates_ids(self, flow):
        with mock.patch("checkout.time.time", return_value=1700000000.0):
            ids = [flow.add_address(f"street {i}").id for i in range(3)]
        assert len(set(ids)) == 3

    def test_add_blank_rejected(self, flow, users, user_id):
        with pytest.raises(PreconditionError) as exc:
            flow.add_address("   ")
        assert exc.value.title == "Address Required"
        assert users.addresses(user_id) == []

    def test_edit_replaces_text(self, flow, users, user_id):
        a = flow.add_address("Old")
        flow.add_address("Other")
        flow.edit_address(a.id, "New")
        assert users.addresses(user_id)[0] == {"id": a.id, "address": "New"}
        assert flow.state.addresses[0].address == "New"

    def test_edit_unknown_id(self, flow):
        with pytest.raises(NotFoundError):
            flow.edit_address("missing", "x")

    def test_remove_selected_clears_selection(self, flow, users, user_id):
        a = flow.add_address("A")
        b = flow.add_address("B")
        flow.select_address(a.id)
        flow.remove_address(a.id)
        assert [x["id"] for x in users.addresses(user_id)] == [b.id]
        assert flow.state.selected_address is None

    def test_remove_other_keeps_selection(self, flow):
        a = flow.add_address("A")
        b = flow.add_address("B")
        flow.select_address(a.id)
        flow.remove_address(b.id)
        assert flow.state.selected_address == a.id

    def test_select_unknown(self, flow):
        with pytest.raises(NotFoundError):
            flow.select_address("nope")

    def test_reload_drops_stale_selection(self, flow, users, user_id):
        a = flow.add_address("A")
        flow.select_address(a.id)
        users.pull_address(user_id, a.id)
        flow.load_addresses()
        assert flow.state.selected_address is None

    def test_concurrent_adds_are_not_lost(self, flow, session, users, carts, orders, catalog, user_id):
        other = CheckoutFlow(session, users, carts, orders, catalog)
        other.load_addresses()
        flow.add_address("From phone")
        other.add_address("From tablet")
        assert {x["address"] for x in users.addresses(user_id)} == {"From phone", "From tablet"}


class TestSteps:
    def test_delivery_requires_address(self, flow):
        with pytest.raises(PreconditionError):
            flow.proceed_to_delivery()
        assert flow.state.step == Step.ADDRESS

    def test_forward_path(self, flow):
        flow.add_address("A")
        flow.select_address(flow.state.addresses[0].id)
        flow.proceed_to_delivery()
        flow.choose_delivery(DeliveryMethod.POINTS)
        flow.proceed_to_review()
        assert flow.state.step == Step.REVIEW
        assert flow.state.delivery_method == DeliveryMethod.POINTS

    def test_review_requires_delivery_step(self, flow):
        with pytest.raises(PreconditionError):
            flow.proceed_to_review()

    def test_back_to_address(self, flow):
        at_review(flow)
        flow.back_to_address()
        assert flow.state.step == Step.ADDRESS

    def test_choose_delivery_accepts_value(self, flow):
        flow.select_address(flow.add_address("A").id)
        flow.proceed_to_delivery()
        flow.choose_delivery("E-Wallet (Gcash)")
        assert flow.state.delivery_method == DeliveryMethod.E_WALLET

    def test_state_round_trips_as_json(self, flow):
        at_review(flow)
        saved = flow.state.model_dump(mode="json")
        assert saved["step"] == 3
        assert CheckoutState(**saved) == flow.state


class TestEWallet:
    def test_requires_confirmation(self, flow, provider):
        at_review(flow)
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        with pytest.raises(PreconditionError) as exc:
            flow.confirm_e_wallet(False)
        assert exc.value.code == "confirmation_required"
        assert provider.requests == []

    def test_creates_link_for_cart_total(self, flow, provider):
        at_review(flow)
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        url = flow.confirm_e_wallet(True)
        assert url == "https://pm.link/shop/test/1"
        assert flow.state.checkout_url == url
        assert json.loads(provider.requests[0].content)["amount"] == 20000

    def test_wrong_method(self, flow):
        at_review(flow)
        with pytest.raises(PreconditionError):
            flow.confirm_e_wallet(True)

    def test_failure_does_not_gate_review(self, flow, provider):
        flow.select_address(flow.add_address("A").id)
        flow.session.cart.add(1)
        flow.proceed_to_delivery()
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        provider.error = "amount is invalid"
        with pytest.raises(PaymentLinkError):
            flow.confirm_e_wallet(True)
        flow.proceed_to_review()
        assert flow.state.step == Step.REVIEW

    def test_switching_method_drops_link(self, flow):
        at_review(flow)
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        flow.confirm_e_wallet(True)
        flow.choose_delivery(DeliveryMethod.CASH_ON_DELIVERY)
        assert flow.state.checkout_url is None

    def test_repeated_confirmation_reuses_link(self, flow, provider):
        at_review(flow)
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        first = flow.confirm_e_wallet(True)
        assert flow.confirm_e_wallet(True) == first
        assert flow.confirm_e_wallet(True) == first
        assert len(provider.requests) == 1

    def test_cart_change_requests_new_link(self, flow, provider):
        at_review(flow)
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        flow.confirm_e_wallet(True)
        flow.session.cart.add(3, 2)
        url = flow.confirm_e_wallet(True)
        assert url == "https://pm.link/shop/test/2"
        assert json.loads(provider.requests[1].content)["amount"] == 1270100
        assert flow.state.link_amount == 1270100


class TestReview:
    def test_review_summary(self, flow):
        at_review(flow, "12 Rizal St")
        summary = flow.review()
        assert summary["total"] == "200.00"
        assert summary["delivery_method"] == "Cash on Delivery"
        assert summary["address"] == "12 Rizal St"
        assert summary["items"][0]["line_total"] == "200.00"


class TestPlaceOrder:
    def test_places_order(self, flow, db, users, carts, user_id):
        at_review(flow, "12 Rizal St")
        result = flow.place_order(True)

        order = db["orders"].find_one()
        assert result["order_id"] == str(order["_id"])
        assert result["route"] == "HomeScreen"
        assert order["total"] == "200.00"
        assert order["status"] == "Pending"
        assert order["user_name"] == "Ana"
        assert order["address"] == "12 Rizal St"
        assert order["delivery"] == order["payment_method"] == "Cash on Delivery"
        assert order["items"] == [{
            "id": 1, "name": "Boxing Gloves", "description": "12oz gloves", "quantity": 2, "price": "Php100.00",
        }]
        assert flow.session.cart.is_empty
        assert carts.load(user_id) == []
        assert flow.state.step == Step.ADDRESS
        assert flow.state.loading is False

    def test_points_credited(self, flow, users, user_id):
        at_review(flow)
        flow.session.cart.clear()
        flow.session.cart.add(2, 2)
        flow.session.cart.add(1, 26)
        # 2 x 4999 + 26 x 100 = 12598 -> 2 points
        result = flow.place_order(True)
        assert result["points_earned"] == 2
        assert users.get(user_id)["points"] == 2

    def test_small_order_earns_no_points(self, flow, users, user_id):
        at_review(flow)
        result = flow.place_order(True)
        assert result["points_earned"] == 0
        assert users.get(user_id)["points"] == 0

    def test_empty_cart_rejected_before_writes(self, flow, db):
        at_review(flow)
        flow.session.cart.clear()
        with pytest.raises(PreconditionError) as exc:
            flow.place_order(True)
        assert exc.value.title == "Cart Empty"
        assert db["orders"].count_documents({}) == 0

    def test_no_address_rejected_before_writes(self, flow, db):
        at_review(flow)
        flow.remove_address(flow.state.selected_address)
        with pytest.raises(PreconditionError) as exc:
            flow.place_order(True)
        assert exc.value.title == "Address Missing"
        assert db["orders"].count_documents({}) == 0

    def test_requires_confirmation(self, flow, db):
        at_review(flow)
        with pytest.raises(PreconditionError):
            flow.place_order(False)
        assert db["orders"].count_documents({}) == 0

    def test_requires_review_step(self, flow, db):
        at_review(flow)
        flow.back_to_address()
        with pytest.raises(PreconditionError):
            flow.place_order(True)
        assert db["orders"].count_documents({}) == 0

    def test_missing_display_name(self, flow, db, users, user_id):
        at_review(flow)
        users.merge_profile(user_id, {"display_name": None})
        with pytest.raises(MissingDataError):
            flow.place_order(True)
        assert db["orders"].count_documents({}) == 0
        assert not flow.session.cart.is_empty

    def test_order_write_failure_leaves_cart(self, flow, orders):
        at_review(flow)
        with mock.patch.object(orders.col, "insert_one", side_effect=PyMongoError("down")):
            with pytest.raises(StorageError):
                flow.place_order(True)
        assert not flow.session.cart.is_empty
        assert flow.state.step == Step.REVIEW
        assert flow.state.loading is False

    def test_e_wallet_order_makes_one_payment_request(self, flow, db, provider):
        at_review(flow)
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        flow.confirm_e_wallet(True)
        result = flow.place_order(True)
        assert len(provider.requests) == 1
        assert result["checkout_url"] == "https://pm.link/shop/test/1"
        assert db["orders"].find_one()["checkout_url"] == result["checkout_url"]

    def test_link_for_old_total_blocks_placement(self, flow, db, provider):
        at_review(flow)
        flow.choose_delivery(DeliveryMethod.E_WALLET)
        flow.confirm_e_wallet(True)
        flow.session.cart.add(3, 2)
        with pytest.raises(PreconditionError) as exc:
            flow.place_order(True)
        assert exc.value.code == "payment_link_stale"
        assert flow.state.checkout_url is None
        assert db["orders"].count_documents({}) == 0

        flow.confirm_e_wallet(True)
        result = flow.place_order(True)
        order = db["orders"].find_one()
        assert order["total"] == "12701.00"
        assert order["checkout_url"] == result["checkout_url"] == "https://pm.link/shop/test/2"

    def test_cash_order_makes_no_payment_request(self, flow, provider):
        at_review(flow)
        flow.place_order(True)
        assert provider.requests == []
