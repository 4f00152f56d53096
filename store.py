"""
Collection access for users, carts, orders, checkout state and sessions.

Counters and address lists are only ever changed with single atomic update
operators ($inc, $push, $pull, positional $set), never by writing back a
value read earlier.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, now_utc
from errors import NotFoundError, StorageError
from schemas import Account, Session

logger = logging.getLogger(__name__)


def doc_key(user_id: str):
    """User documents are keyed by the account ObjectId."""
    if isinstance(user_id, ObjectId):
        return user_id
    return ObjectId(user_id) if ObjectId.is_valid(user_id) else user_id


@contextmanager
def remote_call(action: str):
    """Log and convert driver failures into StorageError."""
    try:
        yield
    except PyMongoError as e:
        logger.exception("Error %s", action)
        raise StorageError() from e


# ---------------------- Users ----------------------

class Subscription:
    """Handle for a live user-document listener. close() stops it."""

    def __init__(self, stream=None):
        self._stream = stream
        self._thread: Optional[threading.Thread] = None
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self, timeout: float = 2.0):
        if self._closed.is_set():
            return
        self._closed.set()
        if self._stream is not None:
            try:
                self._stream.close()
            except PyMongoError:
                logger.exception("Error closing change stream")
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)


class UserStore:
    collection = "user"

    def __init__(self, db: Database):
        self.db = db
        self.col = db[self.collection]

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        with remote_call(f"fetching user {user_id}"):
            return self.col.find_one({"_id": doc_key(user_id)})

    def require(self, user_id: str) -> Dict[str, Any]:
        user = self.get(user_id)
        if not user:
            raise NotFoundError("No Document", "No profile found for this user.")
        return user

    def create(self, user_id: str, email: Optional[str] = None, display_name: Optional[str] = None):
        with remote_call(f"creating user {user_id}"):
            self.col.update_one(
                {"_id": doc_key(user_id)},
                {"$setOnInsert": {
                    "display_name": display_name,
                    "photo_url": None,
                    "email": email,
                    "phone": None,
                    "address": None,
                    "points": 0,
                    "addresses": [],
                    "created_at": now_utc(),
                }},
                upsert=True,
            )

    # addresses

    def addresses(self, user_id: str) -> List[Dict[str, str]]:
        return list(self.require(user_id).get("addresses") or [])

    def push_address(self, user_id: str, entry: Dict[str, str]) -> List[Dict[str, str]]:
        with remote_call(f"adding address for {user_id}"):
            doc = self.col.find_one_and_update(
                {"_id": doc_key(user_id)},
                {"$push": {"addresses": entry}, "$set": {"updated_at": now_utc()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("No Document", "No profile found for this user.")
        return doc.get("addresses") or []

    def set_address(self, user_id: str, address_id: str, text: str) -> List[Dict[str, str]]:
        with remote_call(f"updating address {address_id} for {user_id}"):
            doc = self.col.find_one_and_update(
                {"_id": doc_key(user_id), "addresses.id": address_id},
                {"$set": {"addresses.$.address": text, "updated_at": now_utc()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("Address Not Found", "That address no longer exists.")
        return doc.get("addresses") or []

    def pull_address(self, user_id: str, address_id: str) -> List[Dict[str, str]]:
        with remote_call(f"removing address {address_id} for {user_id}"):
            doc = self.col.find_one_and_update(
                {"_id": doc_key(user_id)},
                {"$pull": {"addresses": {"id": address_id}}, "$set": {"updated_at": now_utc()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("No Document", "No profile found for this user.")
        return doc.get("addresses") or []

    # points

    def add_points(self, user_id: str, amount: int) -> int:
        """Atomically add points and return the new balance."""
        with remote_call(f"adding {amount} points for {user_id}"):
            doc = self.col.find_one_and_update(
                {"_id": doc_key(user_id)},
                {"$inc": {"points": amount}, "$set": {"updated_at": now_utc()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("No Document", "No profile found for this user.")
        return int(doc.get("points") or 0)

    def take_points(self, user_id: str, amount: int) -> Optional[int]:
        """Atomically subtract points if the balance covers it.

        Returns the new balance, or None when the balance is too low.
        """
        with remote_call(f"redeeming {amount} points for {user_id}"):
            doc = self.col.find_one_and_update(
                {"_id": doc_key(user_id), "points": {"$gte": amount}},
                {"$inc": {"points": -amount}, "$set": {"updated_at": now_utc()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            return None
        return int(doc.get("points") or 0)

    # profile fields

    def merge_profile(self, user_id: str, fields: Dict[str, Any]):
        with remote_call(f"saving profile for {user_id}"):
            self.col.update_one(
                {"_id": doc_key(user_id)},
                {"$set": {**fields, "updated_at": now_utc()}},
                upsert=True,
            )

    def watch(self, user_id: str, callback: Callable[[Optional[Dict[str, Any]]], None]) -> Subscription:
        """Deliver the current document, then every later version, to callback.

        Uses a change stream on a background thread, so the deployment must be
        a replica set. The stream is opened before the first read so no write
        falls between the two.
        """
        key = doc_key(user_id)
        with remote_call(f"subscribing to user {user_id}"):
            stream = self.col.watch(
                [{"$match": {"documentKey._id": key}}],
                full_document="updateLookup",
            )

        sub = Subscription(stream)
        try:
            callback(self.get(user_id))
        except Exception:
            sub.close()
            raise

        def run():
            try:
                for change in stream:
                    if sub.closed:
                        break
                    if change.get("operationType") == "delete":
                        callback(None)
                    else:
                        callback(change.get("fullDocument"))
            except PyMongoError:
                if not sub.closed:
                    logger.exception("Profile listener for %s stopped", user_id)

        thread = threading.Thread(target=run, name=f"user-watch-{user_id}", daemon=True)
        sub._thread = thread
        thread.start()
        return sub


# ---------------------- Carts ----------------------

class CartStore:
    collection = "cart"

    def __init__(self, db: Database):
        self.col = db[self.collection]

    def load(self, user_id: str) -> List[Dict[str, int]]:
        with remote_call(f"fetching cart for {user_id}"):
            cart = self.col.find_one({"user_id": user_id}) or {}
        return cart.get("items", [])

    def save(self, user_id: str, items: List[Dict[str, int]]):
        with remote_call(f"saving cart for {user_id}"):
            self.col.update_one(
                {"user_id": user_id},
                {"$set": {"items": items, "updated_at": now_utc()}},
                upsert=True,
            )


# ---------------------- Orders ----------------------

class OrderStore:
    collection = "orders"

    def __init__(self, db: Database):
        self.col = db[self.collection]

    def insert(self, order: Dict[str, Any]) -> str:
        with remote_call("placing order"):
            res = self.col.insert_one(order)
        return str(res.inserted_id)

    def for_user(self, user_id: str) -> List[Dict[str, Any]]:
        with remote_call(f"listing orders for {user_id}"):
            return list(self.col.find({"user_id": user_id}).sort("created_at", -1))

    def get(self, user_id: str, order_id: str) -> Dict[str, Any]:
        if not ObjectId.is_valid(order_id):
            raise NotFoundError("Order Not Found", "Order not found.")
        with remote_call(f"fetching order {order_id}"):
            order = self.col.find_one({"_id": ObjectId(order_id), "user_id": user_id})
        if not order:
            raise NotFoundError("Order Not Found", "Order not found.")
        return order


# ---------------------- Checkout state ----------------------

class CheckoutStore:
    collection = "checkout"

    def __init__(self, db: Database):
        self.col = db[self.collection]

    def load(self, user_id: str) -> Optional[Dict[str, Any]]:
        with remote_call(f"fetching checkout for {user_id}"):
            doc = self.col.find_one({"user_id": user_id})
        if doc:
            doc.pop("_id", None)
        return doc

    def save(self, user_id: str, state: Dict[str, Any]):
        with remote_call(f"saving checkout for {user_id}"):
            self.col.update_one(
                {"user_id": user_id},
                {"$set": {**state, "user_id": user_id, "updated_at": now_utc()}},
                upsert=True,
            )

    def drop_link(self, user_id: str):
        """Forget the payment link; it was made for a cart that has since changed."""
        with remote_call(f"dropping payment link for {user_id}"):
            self.col.update_one({"user_id": user_id}, {"$set": {"checkout_url": None, "link_amount": None}})

    def clear(self, user_id: str):
        with remote_call(f"clearing checkout for {user_id}"):
            self.col.delete_one({"user_id": user_id})


# ---------------------- Accounts & sessions ----------------------

class AccountStore:
    collection = "account"

    def __init__(self, db: Database):
        self.col = db[self.collection]
        self.sessions = db["session"]

    def by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with remote_call("fetching account"):
            return self.col.find_one({"email": email})

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        with remote_call(f"fetching account {user_id}"):
            return self.col.find_one({"_id": doc_key(user_id)})

    def create(self, account: Account) -> str:
        with remote_call("creating account"):
            return create_document(self.collection, account, database=self.col.database)

    def update_identity(self, user_id: str, display_name: Optional[str], photo_url: Optional[str]):
        with remote_call(f"updating account {user_id}"):
            self.col.update_one(
                {"_id": doc_key(user_id)},
                {"$set": {"display_name": display_name, "photo_url": photo_url, "updated_at": now_utc()}},
            )

    def open_session(self, user_id: str, token: str):
        with remote_call("opening session"):
            self.sessions.insert_one(Session(token=token, user_id=user_id, created_at=now_utc()).model_dump())

    def session_user(self, token: str) -> Optional[str]:
        with remote_call("resolving session"):
            s = self.sessions.find_one({"token": token})
        return s["user_id"] if s else None

    def close_session(self, token: str) -> bool:
        with remote_call("closing session"):
            res = self.sessions.delete_one({"token": token})
        return res.deleted_count > 0
