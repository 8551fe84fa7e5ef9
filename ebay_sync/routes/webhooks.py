# ebay_sync/routes/webhooks.py
import json

from flask import Blueprint, current_app, request

from ..services.relay import relay_product_update
from ..utils.security import verify_webhook_hmac
from ..utils.logger import info, warn, error
from . import get_ebay, get_shopify, get_storage

bp = Blueprint("webhooks", __name__)


@bp.post("/products-update")
def products_update():
    raw = verify_webhook_hmac(current_app.config["SHOPIFY"]["api_secret"])
    shop = request.headers.get("X-Shopify-Shop-Domain", "")
    webhook_id = request.headers.get("X-Shopify-Webhook-Id", "")
    storage = get_storage()

    token = storage.get_token(shop)
    if not token:
        info(f"[webhook] products/update for {shop or 'unknown shop'} without token, ignored")
        return "No token (ignored)", 200

    # redeliveries of an event we already handled are acknowledged without side effects
    if webhook_id and storage.is_processed(webhook_id):
        info(f"[webhook] {shop} duplicate delivery {webhook_id}, skipped")
        return "OK", 200

    try:
        payload = json.loads(raw.decode("utf-8")) if raw else {}
    except ValueError as e:
        warn(f"[webhook] {shop} unparseable payload {webhook_id}: {e}")
        return "OK", 200

    try:
        result = relay_product_update(storage, get_shopify(), get_ebay(), shop, token, payload, "webhook")
    except Exception as e:
        # already recorded on the run; 200 keeps Shopify from redelivering forever
        error(f"[webhook] {shop} products/update PID={payload.get('id')}: {e}")
        return "OK", 200

    if webhook_id:
        storage.mark_processed(webhook_id)
    info(f"[webhook] {shop} PID={payload.get('id')} updated={result['updated']} failed={result['failed']}")
    return "OK", 200
