import threading
import time
from typing import Optional
from urllib.parse import quote

import requests

from ..utils.logger import debug

EBAY_BASE = {
    "production": "https://api.ebay.com",
    "sandbox": "https://api.sandbox.ebay.com",
}
INVENTORY = "/sell/inventory/v1"

TOKEN_SKEW_SEC = 60     # refresh a little before eBay says the token expires
MAX_IMAGES = 12


class EbayError(RuntimeError):
    def __init__(self, method: str, path: str, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"eBay {method} {path} {status}: {body}")


def money(value) -> str:
    return f"{float(value):.2f}"


class EbayClient:
    """Sell Inventory API calls on behalf of the single seller account in config."""

    def __init__(self, cfg: dict, http: Optional[requests.Session] = None):
        self.cfg = cfg
        self.http = http or requests.Session()
        self.base = EBAY_BASE["production" if cfg.get("env") == "production" else "sandbox"]
        self._token: Optional[str] = None
        self._token_expires = 0.0
        self._token_lock = threading.Lock()

    # =========================================================
    # Auth
    # =========================================================

    def access_token(self) -> str:
        with self._token_lock:
            if self._token and time.time() < self._token_expires:
                return self._token
            path = "/identity/v1/oauth2/token"
            r = self.http.post(
                f"{self.base}{path}",
                auth=(self.cfg.get("client_id") or "", self.cfg.get("client_secret") or ""),
                data={"grant_type": "refresh_token", "refresh_token": self.cfg.get("refresh_token") or ""},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=20,
            )
            if not r.ok:
                raise EbayError("POST", path, r.status_code, r.text)
            try:
                data = r.json()
            except ValueError:
                data = None
            if not (data or {}).get("access_token"):
                raise EbayError("POST", path, r.status_code, f"no access_token in response: {r.text}")
            self._token = data["access_token"]
            self._token_expires = time.time() + int(data.get("expires_in", 7200)) - TOKEN_SKEW_SEC
            debug("[ebay] access token refreshed")
            return self._token

    def _call(self, method: str, path: str, body: Optional[dict] = None) -> Optional[dict]:
        headers = {
            "Authorization": f"Bearer {self.access_token()}",
            "Content-Type": "application/json",
            "Content-Language": self.cfg.get("content_language", "it-IT"),
        }
        r = self.http.request(method, f"{self.base}{path}", headers=headers, json=body, timeout=40)
        if not r.ok:
            raise EbayError(method, path, r.status_code, r.text)
        return r.json() if r.text else None

    # =========================================================
    # Inventory items
    # =========================================================

    def create_or_replace_inventory_item(self, sku: str, title: str, description: str,
                                         images: list[str], quantity: int = 0):
        payload = {
            "availability": {"shipToLocationAvailability": {"quantity": int(quantity)}},
            "condition": "NEW",
            "product": {
                "title": title,
                "description": description,
                "imageUrls": (images or [])[:MAX_IMAGES],
            },
        }
        self._call("PUT", f"{INVENTORY}/inventory_item/{quote(sku, safe='')}", payload)

    def _bulk_price_quantity(self, item: dict):
        path = f"{INVENTORY}/bulk_update_price_quantity"
        res = self._call("POST", path, {"requests": [item]}) or {}
        for resp in res.get("responses", []) or []:
            if int(resp.get("statusCode") or 200) >= 400:
                raise EbayError("POST", path, int(resp["statusCode"]), str(resp.get("errors") or resp))

    # =========================================================
    # Offers
    # =========================================================

    def create_offer(self, sku: str, price, quantity: int) -> str:
        payload = {
            "sku": sku,
            "marketplaceId": self.cfg.get("marketplace_id", "EBAY_IT"),
            "format": "FIXED_PRICE",
            "availableQuantity": int(quantity),
            "categoryId": self.cfg.get("category_id"),
            "merchantLocationKey": self.cfg.get("merchant_location_key", "default"),
            "pricingSummary": {
                "price": {"value": money(price), "currency": self.cfg.get("currency", "EUR")},
            },
            "listingPolicies": {
                "paymentPolicyId": self.cfg.get("payment_policy_id"),
                "fulfillmentPolicyId": self.cfg.get("fulfillment_policy_id"),
                "returnPolicyId": self.cfg.get("return_policy_id"),
            },
        }
        res = self._call("POST", f"{INVENTORY}/offer", payload) or {}
        offer_id = res.get("offerId")
        if not offer_id:
            raise EbayError("POST", f"{INVENTORY}/offer", 200, f"no offerId in response: {res}")
        return str(offer_id)

    def update_offer_price_quantity(self, sku: str, offer_id: str, price, quantity: int):
        self._bulk_price_quantity({
            "sku": sku,
            "shipToLocationAvailability": {"quantity": int(quantity)},
            "offers": [{
                "offerId": str(offer_id),
                "availableQuantity": int(quantity),
                "price": {"value": money(price), "currency": self.cfg.get("currency", "EUR")},
            }],
        })

    def publish_offer(self, offer_id: str) -> Optional[str]:
        res = self._call("POST", f"{INVENTORY}/offer/{offer_id}/publish") or {}
        listing_id = res.get("listingId")
        return str(listing_id) if listing_id else None
