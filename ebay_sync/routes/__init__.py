from flask import current_app, jsonify, request

from ..clients.ebay import EbayClient
from ..clients.shopify import ShopifyClient
from ..storage import Storage


def get_storage() -> Storage:
    return current_app.extensions["storage"]


def get_shopify() -> ShopifyClient:
    return current_app.extensions["shopify"]


def get_ebay() -> EbayClient:
    return current_app.extensions["ebay"]


def json_error(message: str, status: int):
    return jsonify({"error": message}), status


def int_arg(name: str, default: int, lo: int = 1, hi: int = 1000) -> int:
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        value = default
    return max(lo, min(hi, value))
