"""
Profile screen controller.

ProfileManager mirrors the signed-in user's profile document into local
fields and writes edits back. Snapshots arriving from the live listener
while an edit is open are held back until the edit is saved or cancelled.
"""
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

import config
from catalog import points_for
from errors import PreconditionError
from storage import PhotoStore, is_local, read_local
from store import AccountStore, Subscription, UserStore

logger = logging.getLogger(__name__)

HISTORY_ROUTE = "HistoryScreen"
WELCOME_ROUTE = "WelcomeScreen"


@dataclass
class ProfileFields:
    display_name: str = ""
    photo_url: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    points: int = 0


@dataclass
class PendingPhoto:
    data: bytes
    content_type: str = "image/jpeg"


class ProfileManager:
    def __init__(self, users: UserStore, accounts: AccountStore, photos: PhotoStore,
                 subscribe: Optional[Callable[[str, Callable], Subscription]] = None):
        self.users = users
        self.accounts = accounts
        self.photos = photos
        self._subscribe = subscribe if subscribe is not None else users.watch
        self._subscription: Optional[Subscription] = None
        self._lock = threading.RLock()
        self._buffered: Optional[Dict[str, Any]] = None
        self._pending_photo: Optional[PendingPhoto] = None

        self.user_id: Optional[str] = None
        self.account_email: str = ""
        self.fields = ProfileFields()
        self.is_editing = False
        self.loading = False

    # ---------------------- Auth & live updates ----------------------

    def attach(self, user_id: Optional[str]):
        """Follow the given user's profile; None means signed out."""
        self.detach()
        if not user_id:
            return
        with self._lock:
            self.user_id = user_id
            account = self.accounts.get(user_id) or {}
            self.account_email = account.get("email") or ""
        self._subscription = self._subscribe(user_id, self.apply_snapshot)

    def detach(self):
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        with self._lock:
            self.user_id = None
            self.account_email = ""
            self.fields = ProfileFields()
            self.is_editing = False
            self._buffered = None
            self._pending_photo = None

    close = detach

    def load(self, user_id: str):
        """One-shot load without a live listener."""
        with self._lock:
            self.user_id = user_id
            account = self.accounts.get(user_id) or {}
            self.account_email = account.get("email") or ""
        self.apply_snapshot(self.users.require(user_id))

    def apply_snapshot(self, doc: Optional[Dict[str, Any]]):
        if not doc:
            return
        with self._lock:
            if self.is_editing:
                self._buffered = doc
                return
            self._apply(doc)

    def _apply(self, doc: Dict[str, Any]):
        self.fields = ProfileFields(
            display_name=doc.get("display_name") or "",
            photo_url=doc.get("photo_url") or "",
            email=doc.get("email") or self.account_email or "",
            phone=doc.get("phone") or "",
            address=doc.get("address") or "",
            points=int(doc.get("points") or 0),
        )

    # ---------------------- Editing ----------------------

    def begin_edit(self):
        with self._lock:
            self.is_editing = True

    def update_fields(self, display_name: Optional[str] = None, email: Optional[str] = None,
                      phone: Optional[str] = None, address: Optional[str] = None):
        with self._lock:
            if not self.is_editing:
                raise PreconditionError("Edit Profile", "Tap Edit Profile before changing your details.")
            for name, value in (("display_name", display_name), ("email", email),
                                ("phone", phone), ("address", address)):
                if value is not None:
                    setattr(self.fields, name, value)

    def pick_photo(self, uri: str):
        """Remember a photo chosen on the device; uploaded on save."""
        with self._lock:
            self.is_editing = True
            self.fields.photo_url = uri
            self._pending_photo = None

    def pick_photo_data(self, data: bytes, content_type: str = "image/jpeg"):
        with self._lock:
            self.is_editing = True
            self.fields.photo_url = "file:upload"
            self._pending_photo = PendingPhoto(data, content_type)

    def cancel_edit(self):
        with self._lock:
            self.is_editing = False
            self._pending_photo = None
            if self._buffered is not None:
                self._apply(self._buffered)
                self._buffered = None
            elif self.user_id:
                self._apply(self.users.require(self.user_id))

    def save(self) -> ProfileFields:
        """Upload a pending photo, then write the account and the profile document.

        The two writes are independent; a failure between them leaves the
        account and the profile out of step until the next save.
        """
        with self._lock:
            if not self.user_id:
                raise PreconditionError("Error", "Please sign in to update your profile.")
            user_id = self.user_id
            fields = ProfileFields(**asdict(self.fields))
            pending = self._pending_photo
            self.loading = True
        try:
            photo_url = fields.photo_url
            if is_local(photo_url):
                if pending is not None:
                    data, content_type = pending.data, pending.content_type
                else:
                    data, content_type = read_local(photo_url)
                photo_url = self.photos.upload(user_id, data, content_type)

            account = self.accounts.get(user_id) or {}
            photo_url = photo_url or account.get("photo_url") or ""
            self.accounts.update_identity(user_id, fields.display_name, photo_url or None)
            self.users.merge_profile(user_id, {
                "display_name": fields.display_name,
                "photo_url": photo_url or None,
                "email": fields.email,
                "phone": fields.phone,
                "address": fields.address,
            })
        finally:
            with self._lock:
                self.loading = False

        with self._lock:
            self.fields.photo_url = photo_url
            self._pending_photo = None
            self._buffered = None
            self.is_editing = False
        logger.info("Profile updated for %s", user_id)
        return self.fields

    # ---------------------- Points ----------------------

    def purchase_points(self, amount) -> Dict[str, int]:
        earned = points_for(amount)
        if earned < 1:
            raise PreconditionError(
                "Purchase Too Small", f"Purchases of at least {config.POINTS_RATE} earn points.")
        total = self.users.add_points(self._require_user(), earned)
        with self._lock:
            self.fields.points = total
        logger.info("User %s earned %d points, total %d", self.user_id, earned, total)
        return {"earned": earned, "points": total}

    def redeem_points(self) -> int:
        user_id = self._require_user()
        remaining = self.users.take_points(user_id, config.REDEEM_COST)
        if remaining is None:
            current = int(self.users.require(user_id).get("points") or 0)
            with self._lock:
                self.fields.points = current
            raise PreconditionError(
                "Not Enough Points", f"You need at least {config.REDEEM_COST} points to redeem.",
                code="not_enough_points")
        with self._lock:
            self.fields.points = remaining
        logger.info("User %s redeemed %d points, %d left", user_id, config.REDEEM_COST, remaining)
        return remaining

    def history_route(self) -> Dict[str, Any]:
        return {"route": HISTORY_ROUTE, "points": self.fields.points}

    # ---------------------- Logout ----------------------

    def logout(self, token: str, confirmed: bool) -> Dict[str, str]:
        if not confirmed:
            raise PreconditionError("Logout Confirmation", "Are you sure you want to log out?",
                                    code="confirmation_required")
        user_id = self.user_id
        self.accounts.close_session(token)
        self.detach()
        logger.info("User %s logged out", user_id)
        return {"route": WELCOME_ROUTE}

    def _require_user(self) -> str:
        if not self.user_id:
            raise PreconditionError("Error", "Please sign in first.")
        return self.user_id
