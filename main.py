import hashlib
import logging
import os
import secrets
from dataclasses import asdict
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, EmailStr, Field

import config
import database
from catalog import Catalog, catalog as default_catalog, format_amount
from checkout import CheckoutFlow, CheckoutState, DeliveryMethod
from errors import AuthError, PreconditionError, ShopError
from payments import PaymentLinkClient
from profiles import ProfileManager
from schemas import Account
from session import Cart, SessionContext
from storage import PhotoStore, is_local
from store import AccountStore, CartStore, CheckoutStore, OrderStore, UserStore

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Shop Checkout & Profile API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------- Utilities ----------------------

def hash_password(pw: str) -> str:
    return hashlib.sha256(pw.encode()).hexdigest()


def serialize_doc(doc):
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id"))
    return doc


# ---------------------- Dependencies ----------------------

def get_db():
    if database.db is None:
        raise HTTPException(503, "Database not available")
    return database.db


def get_catalog() -> Catalog:
    return default_catalog


_payments: Optional[PaymentLinkClient] = None


def get_payments() -> PaymentLinkClient:
    global _payments
    if _payments is None:
        _payments = PaymentLinkClient()
    return _payments


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization:
        raise AuthError("Missing Authorization header")
    return authorization.replace("Bearer ", "").strip()


def get_session(token: str = Depends(bearer_token), db=Depends(get_db)) -> SessionContext:
    user_id = AccountStore(db).session_user(token)
    if not user_id:
        raise AuthError("Invalid or expired session")
    return SessionContext(user_id=user_id, cart=Cart(CartStore(db).load(user_id)), token=token)


def get_flow(session: SessionContext = Depends(get_session), db=Depends(get_db),
             catalog: Catalog = Depends(get_catalog),
             payments: PaymentLinkClient = Depends(get_payments)) -> CheckoutFlow:
    saved = CheckoutStore(db).load(session.user_id)
    state = CheckoutState(**saved) if saved else CheckoutState()
    flow = CheckoutFlow(session, UserStore(db), CartStore(db), OrderStore(db), catalog, payments, state)
    flow.load_addresses()
    return flow


def get_profile(session: SessionContext = Depends(get_session), db=Depends(get_db)) -> ProfileManager:
    manager = ProfileManager(UserStore(db), AccountStore(db), PhotoStore(db))
    manager.load(session.user_id)
    return manager


def save_flow(flow: CheckoutFlow, db) -> dict:
    CheckoutStore(db).save(flow.user_id, flow.state.model_dump(mode="json"))
    return checkout_view(flow)


def checkout_view(flow: CheckoutFlow) -> dict:
    state = flow.state.model_dump(mode="json", exclude={"loaded"})
    state["total"] = format_amount(flow.total())
    return state


# ---------------------- Models ----------------------

class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ConfirmBody(BaseModel):
    confirm: bool = False


class CartBody(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class AddressBody(BaseModel):
    address: str


class DeliveryBody(BaseModel):
    method: DeliveryMethod


class ProfileBody(BaseModel):
    display_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    photo_uri: Optional[str] = None


class PurchaseBody(BaseModel):
    amount: Decimal = Field(..., gt=0)


# ---------------------- Root & Health ----------------------

@app.get("/")
def read_root():
    return {"message": "Shop API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "payments": "✅ Configured" if config.PAYMONGO_SECRET_KEY else "❌ Not Configured",
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = database.db.name
            response["connection_status"] = "Connected"
            try:
                response["collections"] = database.db.list_collection_names()
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ---------------------- Schemas Endpoint ----------------------

@app.get("/schema")
def get_schema():
    import schemas as s

    def model_fields(m):
        return {k: str(v.annotation) for k, v in m.model_fields.items()}

    return {
        "models": {
            "account": model_fields(s.Account),
            "session": model_fields(s.Session),
            "user": model_fields(s.User),
            "cart": model_fields(s.Cart),
            "orders": model_fields(s.Order),
            "photo": model_fields(s.Photo),
        }
    }


# ---------------------- Auth ----------------------

@app.post("/auth/register")
def register(body: RegisterBody, db=Depends(get_db)):
    accounts = AccountStore(db)
    if accounts.by_email(body.email):
        raise HTTPException(400, "Email already registered")
    user_id = accounts.create(Account(
        email=body.email,
        password_hash=hash_password(body.password),
        display_name=body.name,
    ))
    users = UserStore(db)
    users.create(user_id, email=body.email, display_name=body.name)
    if body.phone:
        users.merge_profile(user_id, {"phone": body.phone})
    token = secrets.token_urlsafe(32)
    accounts.open_session(user_id, token)
    logger.info("Registered user %s", user_id)
    return {"token": token, "user_id": user_id, "name": body.name}


@app.post("/auth/login")
def login(body: LoginBody, db=Depends(get_db)):
    accounts = AccountStore(db)
    account = accounts.by_email(body.email)
    if not account or account.get("password_hash") != hash_password(body.password):
        raise HTTPException(401, "Invalid credentials")
    user_id = str(account["_id"])
    token = secrets.token_urlsafe(32)
    accounts.open_session(user_id, token)
    return {"token": token, "user_id": user_id, "name": account.get("display_name")}


@app.post("/auth/logout")
def logout(body: ConfirmBody, session: SessionContext = Depends(get_session),
           profile: ProfileManager = Depends(get_profile)):
    return profile.logout(session.token, body.confirm)


# ---------------------- Products ----------------------

@app.get("/products")
def list_products(catalog: Catalog = Depends(get_catalog)):
    return [catalog.line(p.id, 1) for p in catalog.all()]


@app.get("/products/{pid}")
def get_product(pid: int, catalog: Catalog = Depends(get_catalog)):
    if pid not in catalog:
        raise HTTPException(404, "Product not found")
    return catalog.line(pid, 1)


# ---------------------- Cart ----------------------

def cart_view(session: SessionContext, catalog: Catalog) -> dict:
    return {
        "user_id": session.user_id,
        "items": [catalog.line(pid, qty) for pid, qty in session.cart.items()],
        "total": format_amount(catalog.total(session.cart.items())),
    }


@app.get("/cart")
def get_cart(session: SessionContext = Depends(get_session), catalog: Catalog = Depends(get_catalog)):
    return cart_view(session, catalog)


@app.post("/cart/add")
def add_to_cart(item: CartBody, session: SessionContext = Depends(get_session), db=Depends(get_db),
                catalog: Catalog = Depends(get_catalog)):
    if item.product_id not in catalog:
        raise HTTPException(404, "Product not found")
    session.cart.add(item.product_id, item.quantity)
    CartStore(db).save(session.user_id, session.cart.to_documents())
    CheckoutStore(db).drop_link(session.user_id)
    return cart_view(session, catalog)


@app.post("/cart/remove")
def remove_from_cart(item: CartBody, session: SessionContext = Depends(get_session), db=Depends(get_db),
                     catalog: Catalog = Depends(get_catalog)):
    session.cart.remove(item.product_id)
    CartStore(db).save(session.user_id, session.cart.to_documents())
    CheckoutStore(db).drop_link(session.user_id)
    return cart_view(session, catalog)


# ---------------------- Checkout ----------------------

@app.get("/checkout")
def get_checkout(flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    return save_flow(flow, db)


@app.post("/checkout/addresses")
def add_address(body: AddressBody, flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.add_address(body.address)
    return save_flow(flow, db)


@app.put("/checkout/addresses/{aid}")
def edit_address(aid: str, body: AddressBody, flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.edit_address(aid, body.address)
    return save_flow(flow, db)


@app.delete("/checkout/addresses/{aid}")
def remove_address(aid: str, flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.remove_address(aid)
    return save_flow(flow, db)


@app.post("/checkout/addresses/{aid}/select")
def select_address(aid: str, flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.select_address(aid)
    return save_flow(flow, db)


@app.post("/checkout/delivery")
def proceed_to_delivery(flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.proceed_to_delivery()
    return save_flow(flow, db)


@app.put("/checkout/delivery")
def choose_delivery(body: DeliveryBody, flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.choose_delivery(body.method)
    return save_flow(flow, db)


@app.post("/checkout/e-wallet")
def confirm_e_wallet(body: ConfirmBody, flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    url = flow.confirm_e_wallet(body.confirm)
    view = save_flow(flow, db)
    view["checkout_url"] = url
    return view


@app.post("/checkout/review")
def proceed_to_review(flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.proceed_to_review()
    return save_flow(flow, db)


@app.get("/checkout/review")
def review_order(flow: CheckoutFlow = Depends(get_flow)):
    return flow.review()


@app.post("/checkout/back")
def back_to_address(flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    flow.back_to_address()
    return save_flow(flow, db)


@app.post("/checkout/place")
def place_order(body: ConfirmBody, flow: CheckoutFlow = Depends(get_flow), db=Depends(get_db)):
    result = flow.place_order(body.confirm)
    CheckoutStore(db).clear(flow.user_id)
    return result


# ---------------------- Profile ----------------------

def profile_view(profile: ProfileManager) -> dict:
    return {"user_id": profile.user_id, **asdict(profile.fields)}


@app.get("/profile")
def read_profile(profile: ProfileManager = Depends(get_profile)):
    return profile_view(profile)


@app.put("/profile")
def update_profile(body: ProfileBody, profile: ProfileManager = Depends(get_profile)):
    if is_local(body.photo_uri):
        raise PreconditionError("Photo Upload", "Upload the photo itself with PUT /profile/photo.",
                                code="local_photo")
    profile.begin_edit()
    profile.update_fields(display_name=body.display_name, email=body.email,
                          phone=body.phone, address=body.address)
    if body.photo_uri:
        profile.pick_photo(body.photo_uri)
    profile.save()
    return profile_view(profile)


@app.put("/profile/photo")
async def upload_photo(request: Request, profile: ProfileManager = Depends(get_profile)):
    data = await request.body()
    profile.pick_photo_data(data, request.headers.get("content-type") or "image/jpeg")
    profile.save()
    return profile_view(profile)


@app.get("/photos/{user_id}")
def get_photo(user_id: str, db=Depends(get_db)):
    data, content_type = PhotoStore(db).download(user_id)
    return Response(content=data, media_type=content_type)


@app.post("/profile/points/purchase")
def purchase_points(body: PurchaseBody, profile: ProfileManager = Depends(get_profile)):
    result = profile.purchase_points(body.amount)
    return {**result, "message": f"You've earned {result['earned']} points! Your total points: {result['points']}"}


@app.post("/profile/points/redeem")
def redeem_points(profile: ProfileManager = Depends(get_profile)):
    points = profile.redeem_points()
    return {"points": points, "message": f"You have successfully redeemed {config.REDEEM_COST} points!"}


@app.get("/profile/history")
def view_history(profile: ProfileManager = Depends(get_profile)):
    return profile.history_route()


# ---------------------- Orders ----------------------

@app.get("/orders")
def list_orders(session: SessionContext = Depends(get_session), db=Depends(get_db)):
    return [serialize_doc(o) for o in OrderStore(db).for_user(session.user_id)]


@app.get("/orders/{order_id}")
def get_order(order_id: str, session: SessionContext = Depends(get_session), db=Depends(get_db)):
    return serialize_doc(OrderStore(db).get(session.user_id, order_id))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
