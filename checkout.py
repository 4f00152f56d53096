"""
Checkout wizard: Address -> Delivery -> Review/Place.

CheckoutFlow works on a CheckoutState that the API layer loads from and
saves to the "checkout" collection between requests.
"""
import logging
import time
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel

from catalog import Catalog, format_amount, points_for, to_centavos
from database import now_utc
from errors import MissingDataError, NotFoundError, PreconditionError, ShopError
from payments import PaymentLinkClient
from schemas import Order, OrderItem, SavedAddress
from session import SessionContext
from store import CartStore, OrderStore, UserStore

logger = logging.getLogger(__name__)

HOME_ROUTE = "HomeScreen"


class Step(IntEnum):
    ADDRESS = 1
    DELIVERY = 2
    REVIEW = 3


class DeliveryMethod(str, Enum):
    CASH_ON_DELIVERY = "Cash on Delivery"
    E_WALLET = "E-Wallet (Gcash)"
    POINTS = "Points"


class CheckoutState(BaseModel):
    step: Step = Step.ADDRESS
    addresses: List[SavedAddress] = []
    selected_address: Optional[str] = None
    delivery_method: DeliveryMethod = DeliveryMethod.CASH_ON_DELIVERY
    loading: bool = False
    checkout_url: Optional[str] = None
    link_amount: Optional[int] = None
    loaded: bool = False


class CheckoutFlow:
    def __init__(self, session: SessionContext, users: UserStore, carts: CartStore, orders: OrderStore,
                 catalog: Catalog, payments: Optional[PaymentLinkClient] = None,
                 state: Optional[CheckoutState] = None):
        self.session = session
        self.users = users
        self.carts = carts
        self.orders = orders
        self.catalog = catalog
        self.payments = payments
        self.state = state or CheckoutState()

    @property
    def user_id(self) -> str:
        return self.session.user_id

    # ---------------------- Address step ----------------------

    def load_addresses(self) -> List[SavedAddress]:
        raw = self.users.addresses(self.user_id)
        self._set_addresses(raw)
        if self._find(self.state.selected_address) is None:
            self.state.selected_address = None
        if not self.state.loaded and self.state.addresses:
            self.state.selected_address = self.state.addresses[0].id
        if not self.state.addresses:
            logger.info("No addresses found for %s", self.user_id)
        self.state.loaded = True
        return self.state.addresses

    def select_address(self, address_id: str):
        if self._find(address_id) is None:
            raise NotFoundError("Address Not Found", "That address no longer exists.")
        self.state.selected_address = address_id

    def add_address(self, text: str) -> SavedAddress:
        text = (text or "").strip()
        if not text:
            raise PreconditionError("Address Required", "Please enter an address.")
        existing = {a.id for a in self.state.addresses}
        existing.update(a.get("id") for a in self.users.addresses(self.user_id))
        entry = SavedAddress(id=self._new_address_id(existing), address=text)
        self._set_addresses(self.users.push_address(self.user_id, entry.model_dump()))
        logger.info("Added address %s for %s", entry.id, self.user_id)
        return entry

    def edit_address(self, address_id: str, text: str) -> SavedAddress:
        text = (text or "").strip()
        if not text:
            raise PreconditionError("Address Required", "Please enter an address.")
        self._set_addresses(self.users.set_address(self.user_id, address_id, text))
        logger.info("Updated address %s for %s", address_id, self.user_id)
        return SavedAddress(id=address_id, address=text)

    def remove_address(self, address_id: str):
        self._set_addresses(self.users.pull_address(self.user_id, address_id))
        if self.state.selected_address == address_id:
            self.state.selected_address = None
        logger.info("Removed address %s for %s", address_id, self.user_id)

    def proceed_to_delivery(self):
        self._require_address()
        self.state.step = Step.DELIVERY

    def back_to_address(self):
        self.state.step = Step.ADDRESS

    # ---------------------- Delivery step ----------------------

    def choose_delivery(self, method: DeliveryMethod):
        if self.state.step < Step.DELIVERY:
            raise PreconditionError("Address Missing", "Please choose a delivery address first.")
        method = DeliveryMethod(method)
        if method != self.state.delivery_method:
            self.drop_link()
        self.state.delivery_method = method

    def confirm_e_wallet(self, confirmed: bool) -> str:
        """Create the e-wallet payment link once the shopper confirms.

        A link already made for the current total is reused. A failed link
        does not block moving on to review.
        """
        if self.state.delivery_method != DeliveryMethod.E_WALLET:
            raise PreconditionError("Confirm Payment", "E-Wallet (GCash) is not the selected method.")
        if not confirmed:
            raise PreconditionError("Confirm Payment", "Are you sure you want to proceed with E-Wallet (GCash)?",
                                    code="confirmation_required")
        if self.payments is None:
            raise PreconditionError("Payment Error", "Payments are not available.")
        amount = to_centavos(self.total())
        if self.state.checkout_url and self.state.link_amount == amount:
            return self.state.checkout_url
        self.drop_link()
        link = self.payments.create_link(amount, f"Payment for order of {self.user_id}")
        self.state.checkout_url = link.checkout_url
        self.state.link_amount = link.amount
        return link.checkout_url

    def drop_link(self):
        self.state.checkout_url = None
        self.state.link_amount = None

    def proceed_to_review(self):
        if self.state.step < Step.DELIVERY:
            raise PreconditionError("Address Missing", "Please choose a delivery address first.")
        self.state.step = Step.REVIEW

    # ---------------------- Review & placement ----------------------

    def total(self):
        return self.catalog.total(self.session.cart.items())

    def address_text(self) -> Optional[str]:
        found = self._find(self.state.selected_address)
        return found.address if found else None

    def review(self) -> dict:
        return {
            "total": format_amount(self.total()),
            "delivery_method": self.state.delivery_method.value,
            "address": self.address_text(),
            "items": [self.catalog.line(pid, qty) for pid, qty in self.session.cart.items()],
            "checkout_url": self.state.checkout_url,
        }

    def place_order(self, confirmed: bool) -> dict:
        self._require_address()
        if self.session.cart.is_empty:
            raise PreconditionError(
                "Cart Empty", "Your cart is empty. Please add items to your cart before placing an order.")
        if self.state.step != Step.REVIEW:
            raise PreconditionError("Review Order", "Please review your order before placing it.")
        if not confirmed:
            raise PreconditionError("Confirm Order", "Are you sure you want to place this order?",
                                    code="confirmation_required")
        if self.state.checkout_url and self.state.link_amount != to_centavos(self.total()):
            self.drop_link()
            raise PreconditionError("Confirm Payment", "Your cart changed. Please confirm the E-Wallet payment again.",
                                    code="payment_link_stale")

        self.state.loading = True
        try:
            user_name = self._user_name()
            order = self._build_order(user_name)
            order_doc = order.model_dump()
            order_doc["created_at"] = now_utc()
            order_id = self.orders.insert(order_doc)
            logger.info("Placed order %s for %s, total %s", order_id, self.user_id, order.total)

            points = points_for(order.total)
            if points > 0:
                try:
                    self.users.add_points(self.user_id, points)
                except ShopError:
                    logger.error("Order %s placed but %d points were not credited to %s",
                                 order_id, points, self.user_id)
                    raise
                logger.info("Credited %d points to %s", points, self.user_id)

            self.session.cart.clear()
            self.carts.save(self.user_id, self.session.cart.to_documents())
        finally:
            self.state.loading = False

        self.state = CheckoutState()
        return {
            "order_id": order_id,
            "total": order.total,
            "points_earned": points,
            "checkout_url": order.checkout_url,
            "route": HOME_ROUTE,
        }

    # ---------------------- Helpers ----------------------

    def _user_name(self) -> str:
        user = self.users.get(self.user_id)
        if not user:
            raise NotFoundError("Error", "User document does not exist.")
        name = user.get("display_name")
        if not name:
            raise MissingDataError("Error", "User name not found. Please set a display name in your profile.")
        return name

    def _build_order(self, user_name: str) -> Order:
        items = []
        for pid, qty in self.session.cart.items():
            line = self.catalog.line(pid, qty)
            items.append(OrderItem(id=pid, name=line["name"], description=line["description"],
                                   quantity=qty, price=line["price"]))
        method = self.state.delivery_method.value
        return Order(
            items=items,
            total=format_amount(self.total()),
            delivery=method,
            payment_method=method,
            address=self.address_text() or "",
            user_id=self.user_id,
            user_name=user_name,
            checkout_url=self.state.checkout_url if self.state.delivery_method == DeliveryMethod.E_WALLET else None,
        )

    def _require_address(self):
        if not self.state.selected_address or self._find(self.state.selected_address) is None:
            raise PreconditionError("Address Missing", "Please select an address before placing your order.")

    def _find(self, address_id: Optional[str]) -> Optional[SavedAddress]:
        for a in self.state.addresses:
            if a.id == address_id:
                return a
        return None

    def _set_addresses(self, raw):
        self.state.addresses = [SavedAddress(**{"id": str(a["id"]), "address": a["address"]}) for a in raw]

    @staticmethod
    def _new_address_id(existing) -> str:
        candidate = int(time.time() * 1000)
        while str(candidate) in existing:
            candidate += 1
        return str(candidate)
