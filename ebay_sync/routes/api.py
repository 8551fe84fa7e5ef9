# ebay_sync/routes/api.py
from functools import wraps

import requests
from flask import Blueprint, g, jsonify, request

from ..clients.ebay import EbayError
from ..clients.shopify import ShopifyError
from ..services.relay import PublishError, publish_variant, resync_links
from ..services.runs import error_text, run_payload
from ..utils.logger import error
from . import get_ebay, get_shopify, get_storage, int_arg, json_error

bp = Blueprint("api", __name__)

DOWNSTREAM_ERRORS = (ShopifyError, EbayError, PublishError, requests.RequestException)


def installed_shop(view):
    """Resolve ``shop`` from the query string or JSON body and require a stored token."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        body = request.get_json(silent=True) or {}
        shop = request.args.get("shop") or body.get("shop")
        if not shop:
            return json_error("Missing shop", 400)
        token = get_storage().get_token(shop)
        if not token:
            return json_error("App not installed on this shop", 401)
        g.shop, g.token, g.body = shop, token, body
        return view(*args, **kwargs)
    return wrapper


@bp.get("/products")
@installed_shop
def products():
    storage = get_storage()
    try:
        items = get_shopify().list_products(g.shop, g.token, int_arg("limit", 50, hi=250))
    except DOWNSTREAM_ERRORS as e:
        error(f"[api] products {g.shop}: {e}")
        return json_error(str(e), 502)

    rows = []
    for p in items:
        v = (p.get("variants") or [None])[0]
        if not v:
            continue
        sku = (v.get("sku") or "").strip()
        link = storage.get_link_by_sku(g.shop, sku) if sku else None
        rows.append({
            "productId": p.get("id"),
            "variantId": v.get("id"),
            "title": p.get("title"),
            "sku": sku,
            "price": v.get("price"),
            "link": link.to_dict() if link else None,
        })
    return jsonify({"rows": rows})


@bp.get("/links")
@installed_shop
def links():
    rows = get_storage().list_links(g.shop, int_arg("limit", 200))
    return jsonify({"rows": [l.to_dict() for l in rows]})


@bp.get("/runs")
@installed_shop
def runs():
    rows = get_storage().list_runs(g.shop, int_arg("limit", 20, hi=200))
    return jsonify({"rows": [run_payload(r) for r in rows]})


@bp.get("/runs/<run_id>")
@installed_shop
def run_detail(run_id):
    found = get_storage().get_run_with_logs(g.shop, run_id, int_arg("log_limit", 200))
    if not found:
        return json_error("Run not found", 404)
    run, logs = found
    return jsonify(run_payload(run, logs))


@bp.post("/ebay/publish")
@installed_shop
def publish():
    product_id, variant_id = g.body.get("productId"), g.body.get("variantId")
    if not product_id or not variant_id:
        return json_error("Missing shop/productId/variantId", 400)
    try:
        result = publish_variant(get_storage(), get_shopify(), get_ebay(), g.shop, g.token, product_id, variant_id)
    except Exception as e:
        # already recorded on the run; the caller gets the same text as JSON
        msg = error_text(e)
        error(f"[publish] {g.shop} product={product_id} variant={variant_id}: {msg}")
        return json_error(msg, 500)
    return jsonify(result)


@bp.post("/ebay/resync")
@installed_shop
def resync():
    try:
        result = resync_links(get_storage(), get_shopify(), get_ebay(), g.shop, g.token, int_arg("limit", 200))
    except Exception as e:
        msg = error_text(e)
        error(f"[resync] {g.shop}: {msg}")
        return json_error(msg, 500)
    return jsonify(result)
