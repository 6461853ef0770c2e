import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import admin
from auth import AuthError, authenticate_admin
from checkout import CheckoutError, create_checkout_session
from config import Settings
from database import db
from downloads import InvalidDownloadToken, read_download_token
from notifications import (
    ProviderNotConfigured,
    SmsSender,
    SmtpMailer,
    flush_mail_queue,
    send_email_blast,
    send_sms_blast,
)
from payments import StripeGateway
from reconcile import WebhookReconciler, WebhookSignatureError
from schemas import StoreSettings
from store import BaseStore, MemoryStore, MongoStore, NotFound

logger = logging.getLogger(__name__)

settings = Settings.from_env()
store: BaseStore = MongoStore(db) if db is not None else MemoryStore()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if isinstance(store, MongoStore):
        store.ensure_indexes()
    else:
        logger.warning("DATABASE_URL not set, using the in-memory store")
    yield


app = FastAPI(title="Ethereal Balance Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def error_body(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def invalid_body(request: Request, exc: RequestValidationError):
    logger.info("rejected request to %s: %s", request.url.path, exc.errors()[:1])
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


# ---------- Dependencies ----------

def get_settings() -> Settings:
    return settings


def get_store() -> BaseStore:
    return store


def get_gateway(cfg: Settings = Depends(get_settings)) -> StripeGateway:
    return StripeGateway(cfg.stripe_secret_key, cfg.stripe_webhook_secret)


def get_mailer(cfg: Settings = Depends(get_settings)) -> SmtpMailer:
    return SmtpMailer(cfg)


def get_sms(cfg: Settings = Depends(get_settings)) -> SmsSender:
    return SmsSender(cfg)


def require_admin(
    authorization: Optional[str] = Header(default=None),
    cfg: Settings = Depends(get_settings),
) -> dict:
    try:
        return authenticate_admin(authorization, cfg)
    except AuthError as e:
        logger.warning("admin auth rejected: %s", e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ---------- Models for requests ----------

class StatusIn(BaseModel):
    status: str


class TrackingIn(BaseModel):
    tracking_number: str = ""
    tracking_carrier: str = ""


class NotesIn(BaseModel):
    notes: str = ""


class SmsBlastIn(BaseModel):
    message: Optional[str] = None


class EmailBlastIn(BaseModel):
    subject: Optional[str] = None
    htmlBody: Optional[str] = None


# ---------- Routes ----------

@app.get("/")
def root():
    return {"message": "Ethereal Balance Storefront API running"}


@app.get("/test")
def test_database(current_store: BaseStore = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if isinstance(current_store, MongoStore):
        try:
            response["collections"] = current_store.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    else:
        response["database"] = "⚠️ In-memory store"
    return response


@app.get("/api/products")
def list_products(current_store: BaseStore = Depends(get_store)):
    return {"products": current_store.list_products(active_only=True)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, current_store: BaseStore = Depends(get_store)):
    product = current_store.get_product(product_id)
    if not product or not product.get("is_active"):
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/api/checkout/create-session")
def create_session(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    current_store: BaseStore = Depends(get_store),
    gateway: StripeGateway = Depends(get_gateway),
    cfg: Settings = Depends(get_settings),
):
    try:
        session_url = create_checkout_session(payload, current_store, gateway, cfg)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception:
        logger.exception("checkout session error")
        raise HTTPException(status_code=500, detail="Failed to create checkout session")
    return {"sessionUrl": session_url}


@app.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    current_store: BaseStore = Depends(get_store),
    gateway: StripeGateway = Depends(get_gateway),
    cfg: Settings = Depends(get_settings),
):
    payload = await request.body()
    reconciler = WebhookReconciler(current_store, gateway, cfg)
    try:
        await run_in_threadpool(reconciler.handle, payload, stripe_signature)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")
    except Exception:
        logger.exception("webhook processing failed")
        raise HTTPException(status_code=500, detail="Webhook processing failed")
    return {"received": True}


@app.get("/api/downloads/{token}")
def download(token: str, current_store: BaseStore = Depends(get_store), cfg: Settings = Depends(get_settings)):
    try:
        claims = read_download_token(token, cfg.download_token_secret)
    except InvalidDownloadToken:
        raise HTTPException(status_code=410, detail="This download link has expired")
    product = current_store.get_product(claims["sub"])
    if not product or not product.get("digital_file_url"):
        raise HTTPException(status_code=404, detail="File not found")
    return RedirectResponse(product["digital_file_url"], status_code=302)


# ---------- Blasts ----------

@app.post("/api/blast/sms")
def sms_blast(
    payload: SmsBlastIn,
    _admin: dict = Depends(require_admin),
    current_store: BaseStore = Depends(get_store),
    sms: SmsSender = Depends(get_sms),
):
    if not payload.message or not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    try:
        result = send_sms_blast(current_store, sms, payload.message)
    except ProviderNotConfigured as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception:
        logger.exception("SMS blast error")
        raise HTTPException(status_code=500, detail="Failed to send SMS blast")
    return result.as_dict()


@app.post("/api/blast/email")
def email_blast(
    payload: EmailBlastIn,
    _admin: dict = Depends(require_admin),
    current_store: BaseStore = Depends(get_store),
    mailer: SmtpMailer = Depends(get_mailer),
):
    if not mailer.configured:
        raise HTTPException(status_code=500, detail="Mail is not configured. Set SMTP_HOST, SMTP_USER and SMTP_PASSWORD.")
    if not payload.subject or not payload.htmlBody:
        raise HTTPException(status_code=400, detail="Subject and body are required")
    try:
        result = send_email_blast(current_store, mailer, payload.subject, payload.htmlBody)
    except Exception:
        logger.exception("email blast error")
        raise HTTPException(status_code=500, detail="Failed to send email blast")
    return result.as_dict()


# ---------- Admin ----------

def _admin_call(fn, *args):
    try:
        return fn(*args)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except admin.InvalidAdminRequest as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/admin/stats")
def admin_stats(_admin: dict = Depends(require_admin), current_store: BaseStore = Depends(get_store)):
    return admin.dashboard_stats(current_store)


@app.get("/api/admin/orders")
def admin_list_orders(
    status: Optional[str] = None,
    _admin: dict = Depends(require_admin),
    current_store: BaseStore = Depends(get_store),
):
    return {"orders": _admin_call(admin.list_orders, current_store, status)}


@app.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, _admin: dict = Depends(require_admin),
                    current_store: BaseStore = Depends(get_store)):
    return _admin_call(admin.get_order, current_store, order_id)


@app.patch("/api/admin/orders/{order_id}/status")
def admin_update_status(order_id: str, payload: StatusIn, _admin: dict = Depends(require_admin),
                        current_store: BaseStore = Depends(get_store)):
    return _admin_call(admin.update_order_status, current_store, order_id, payload.status)


@app.patch("/api/admin/orders/{order_id}/tracking")
def admin_save_tracking(order_id: str, payload: TrackingIn, _admin: dict = Depends(require_admin),
                        current_store: BaseStore = Depends(get_store)):
    return _admin_call(admin.save_tracking, current_store, order_id, payload.tracking_number, payload.tracking_carrier)


@app.patch("/api/admin/orders/{order_id}/notes")
def admin_save_notes(order_id: str, payload: NotesIn, _admin: dict = Depends(require_admin),
                     current_store: BaseStore = Depends(get_store)):
    return _admin_call(admin.save_notes, current_store, order_id, payload.notes)


@app.post("/api/admin/mail/flush")
def admin_flush_mail(
    _admin: dict = Depends(require_admin),
    current_store: BaseStore = Depends(get_store),
    mailer: SmtpMailer = Depends(get_mailer),
):
    try:
        return flush_mail_queue(current_store, mailer).as_dict()
    except ProviderNotConfigured as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/settings")
def admin_get_settings(_admin: dict = Depends(require_admin), current_store: BaseStore = Depends(get_store)):
    return current_store.get_settings().model_dump()


@app.put("/api/admin/settings")
def admin_save_settings(payload: StoreSettings, _admin: dict = Depends(require_admin),
                        current_store: BaseStore = Depends(get_store)):
    return current_store.save_settings(payload).model_dump()


@app.get("/api/admin/{collection}")
def admin_list(collection: str, _admin: dict = Depends(require_admin), current_store: BaseStore = Depends(get_store)):
    return {"items": _admin_call(admin.list_items, current_store, collection)}


@app.post("/api/admin/{collection}")
def admin_create(collection: str, payload: Dict[str, Any] = Body(...), _admin: dict = Depends(require_admin),
                 current_store: BaseStore = Depends(get_store)):
    return _admin_call(admin.create_item, current_store, collection, payload)


@app.put("/api/admin/{collection}/{doc_id}")
def admin_update(collection: str, doc_id: str, payload: Dict[str, Any] = Body(...),
                 _admin: dict = Depends(require_admin), current_store: BaseStore = Depends(get_store)):
    return _admin_call(admin.update_item, current_store, collection, doc_id, payload)


@app.delete("/api/admin/{collection}/{doc_id}")
def admin_delete(collection: str, doc_id: str, _admin: dict = Depends(require_admin),
                 current_store: BaseStore = Depends(get_store)):
    _admin_call(admin.delete_item, current_store, collection, doc_id)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
