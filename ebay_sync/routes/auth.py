# ebay_sync/routes/auth.py
import secrets

import requests
from flask import Blueprint, jsonify, redirect, request, session

from ..clients.shopify import ShopifyError, valid_shop_domain
from ..utils.logger import info, error
from . import get_shopify, get_storage, json_error

bp = Blueprint("auth", __name__)


@bp.get("")
def begin():
    shop = request.args.get("shop", "")
    if not valid_shop_domain(shop):
        return json_error("Missing or invalid shop", 400)
    state = secrets.token_urlsafe(24)
    session["oauth_state"] = state
    session["oauth_shop"] = shop
    return redirect(get_shopify().authorize_url(shop, state))


@bp.get("/callback")
def callback():
    params = request.args.to_dict()
    shop = params.get("shop", "")
    shopify = get_shopify()

    if not valid_shop_domain(shop):
        return json_error("Missing or invalid shop", 400)
    if not params.get("state") or params.get("state") != session.pop("oauth_state", None) \
            or shop != session.pop("oauth_shop", None):
        return json_error("OAuth state mismatch", 403)
    if not shopify.valid_oauth_hmac(params):
        return json_error("Invalid HMAC", 401)
    if not params.get("code"):
        return json_error("Missing code", 400)

    try:
        token = shopify.exchange_code(shop, params["code"])
    except (ShopifyError, requests.RequestException) as e:
        error(f"[auth] token exchange failed for {shop}: {e}")
        return json_error(f"Callback error: {e}", 502)

    get_storage().set_token(shop, token)
    info(f"[auth] installed on {shop}")
    webhooks = shopify.register_webhooks(shop, token)
    return jsonify({"ok": True, "shop": shop, "webhooks": webhooks})
