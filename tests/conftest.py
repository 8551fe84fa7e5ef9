"""Shared fixtures: both storage backends, fake API clients and a Flask test client."""
import base64
import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest

from ebay_sync import create_app
from ebay_sync.clients.ebay import EbayClient
from ebay_sync.clients.shopify import ShopifyClient
from ebay_sync.storage import MemoryStorage
from ebay_sync.storage.sql import SqlStorage

SHOP = "demo-store.myshopify.com"
OTHER_SHOP = "other-store.myshopify.com"
API_SECRET = "shpss_test_secret"

TEST_CONFIG = {
    "DATABASE_URL": None,
    "SECRET_KEY": "test-secret-key",
    "LOG_LEVEL": "DEBUG",
    "SHOPIFY": {
        "api_key": "test-api-key",
        "api_secret": API_SECRET,
        "scopes": ["read_products", "read_inventory"],
        "app_url": "https://relay.example.com",
        "api_version": "2025-04",
    },
    "EBAY": {
        "env": "sandbox",
        "client_id": "ebay-client",
        "client_secret": "ebay-secret",
        "refresh_token": "ebay-refresh",
        "currency": "EUR",
    },
}

PRODUCT = {
    "id": 1001,
    "title": "Camino a bioetanolo",
    "body_html": "<p>Camino <b>moderno</b></p>",
    "images": [{"src": "https://cdn.example.com/a.jpg"}, {"src": None}],
    "variants": [
        {"id": 2001, "sku": "SKU-1", "price": "19.90", "inventory_item_id": 3001},
        {"id": 2002, "sku": "SKU-2", "price": "29.90", "inventory_item_id": 3002},
        {"id": 2003, "sku": "", "price": "9.90", "inventory_item_id": 3003},
    ],
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Every storage test runs against both backends."""
    if request.param == "memory":
        s = MemoryStorage()
    else:
        s = SqlStorage(f"sqlite:///{tmp_path / 'ledger.db'}")
    yield s
    s.close()


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def fake_shopify():
    shopify = MagicMock(spec=ShopifyClient)
    shopify.get_product.return_value = json.loads(json.dumps(PRODUCT))
    shopify.get_variant.return_value = dict(PRODUCT["variants"][0])
    shopify.main_location_id.return_value = "55"
    shopify.inventory_level.return_value = 7
    shopify.list_products.return_value = [json.loads(json.dumps(PRODUCT))]
    return shopify


@pytest.fixture
def fake_ebay():
    ebay = MagicMock(spec=EbayClient)
    ebay.create_offer.return_value = "OFFER-1"
    ebay.publish_offer.return_value = "LISTING-1"
    return ebay


@pytest.fixture
def app(fake_shopify, fake_ebay):
    app = create_app(TEST_CONFIG)
    app.config["TESTING"] = True
    app.extensions["shopify"] = fake_shopify
    app.extensions["ebay"] = fake_ebay
    return app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def app_storage(app):
    return app.extensions["storage"]


def sign(body: bytes, secret: str = API_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()
