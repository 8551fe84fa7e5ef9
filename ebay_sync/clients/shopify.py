import hashlib
import hmac
import json
import re
from typing import Optional
from urllib.parse import urlencode

import requests

from ..utils.logger import info, warn

SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]*\.myshopify\.com$")

WEBHOOK_TOPICS = [
    ("products/update", "/webhooks/products-update"),
]


class ShopifyError(RuntimeError):
    def __init__(self, method: str, path: str, status: int, detail):
        self.status = status
        super().__init__(f"Shopify REST {method} {path} -> {status}: {json.dumps(detail)}")


def valid_shop_domain(shop: Optional[str]) -> bool:
    return bool(shop and SHOP_DOMAIN_RE.match(shop))


def rest_headers(token: str) -> dict:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "X-Shopify-Access-Token": token,
    }


def _error_detail(r: requests.Response, body):
    if isinstance(body, dict):
        for key in ("errors", "error", "message"):
            if body.get(key):
                return body[key]
    return r.text or f"HTTP {r.status_code}"


class ShopifyClient:
    """Admin REST + OAuth calls for one app installation (many shops)."""

    def __init__(self, cfg: dict, http: Optional[requests.Session] = None):
        self.cfg = cfg
        self.http = http or requests.Session()

    def admin_base(self, shop: str) -> str:
        return f"https://{shop}/admin/api/{self.cfg['api_version']}"

    def _rest(self, shop: str, token: str, method: str, path: str, params=None, body=None, timeout=25):
        r = self.http.request(method, f"{self.admin_base(shop)}{path}",
                              headers=rest_headers(token), params=params, json=body, timeout=timeout)
        try:
            data = r.json() if r.text else None
        except ValueError:
            data = {"raw": r.text}
        if not r.ok:
            raise ShopifyError(method, path, r.status_code, _error_detail(r, data))
        return data or {}

    # =========================================================
    # Products / inventory
    # =========================================================

    def list_products(self, shop: str, token: str, limit: int = 50) -> list[dict]:
        return self._rest(shop, token, "GET", "/products.json", params={"limit": limit}).get("products", [])

    def get_product(self, shop: str, token: str, product_id) -> dict:
        return self._rest(shop, token, "GET", f"/products/{product_id}.json").get("product") or {}

    def get_variant(self, shop: str, token: str, variant_id) -> dict:
        return self._rest(shop, token, "GET", f"/variants/{variant_id}.json").get("variant") or {}

    def main_location_id(self, shop: str, token: str) -> str:
        locations = self._rest(shop, token, "GET", "/locations.json").get("locations", []) or []
        loc = next((l for l in locations if l.get("active")), None) or (locations[0] if locations else None)
        if not loc or not loc.get("id"):
            raise ShopifyError("GET", "/locations.json", 200, "no location found on shop")
        return str(loc["id"])

    def inventory_level(self, shop: str, token: str, inventory_item_id, location_id) -> int:
        params = {"inventory_item_ids": inventory_item_id, "location_ids": location_id}
        levels = self._rest(shop, token, "GET", "/inventory_levels.json", params=params).get("inventory_levels", []) or []
        if not levels:
            return 0
        try:
            return int(levels[0].get("available") or 0)
        except (TypeError, ValueError):
            return 0

    # =========================================================
    # Webhook registration
    # =========================================================

    def register_webhooks(self, shop: str, token: str) -> list[str]:
        """Create or repoint our webhook subscriptions. Failures are reported, not raised."""
        base = self.cfg.get("app_url")
        if not base:
            warn("[webhooks] SHOPIFY_APP_URL missing, skipping webhook registration")
            return []

        try:
            existing = self._rest(shop, token, "GET", "/webhooks.json").get("webhooks", [])
        except (ShopifyError, requests.RequestException) as e:
            warn(f"[webhooks] failed to read existing webhooks on {shop}: {e}")
            return [f"FAIL read {e}"]

        out = []
        for topic, path in WEBHOOK_TOPICS:
            address = f"{base}{path}"
            found = [w for w in existing if w.get("topic") == topic]
            try:
                if any(w.get("address") == address for w in found):
                    out.append(f"OK {topic}")
                elif found:
                    # repoint instead of duplicating when the app URL changes
                    wid = found[0].get("id")
                    self._rest(shop, token, "PUT", f"/webhooks/{wid}.json",
                               body={"webhook": {"id": wid, "address": address, "format": "json"}})
                    out.append(f"UPDATED {topic}")
                else:
                    self._rest(shop, token, "POST", "/webhooks.json",
                               body={"webhook": {"topic": topic, "address": address, "format": "json"}})
                    out.append(f"CREATED {topic}")
            except (ShopifyError, requests.RequestException) as e:
                out.append(f"FAIL {topic} {e}")
        info(f"[webhooks] {shop}: {'; '.join(out)}")
        return out

    # =========================================================
    # OAuth install
    # =========================================================

    def authorize_url(self, shop: str, state: str) -> str:
        query = urlencode({
            "client_id": self.cfg["api_key"],
            "scope": ",".join(self.cfg.get("scopes") or []),
            "redirect_uri": f"{self.cfg.get('app_url')}/auth/callback",
            "state": state,
        })
        return f"https://{shop}/admin/oauth/authorize?{query}"

    def valid_oauth_hmac(self, params: dict) -> bool:
        their_hmac = params.get("hmac") or ""
        message = "&".join(f"{k}={v}" for k, v in sorted(params.items()) if k not in ("hmac", "signature"))
        digest = hmac.new(self.cfg["api_secret"].encode(), message.encode(), hashlib.sha256).hexdigest()
        return bool(their_hmac) and hmac.compare_digest(digest, their_hmac)

    def exchange_code(self, shop: str, code: str) -> str:
        path = "/admin/oauth/access_token"
        r = self.http.post(f"https://{shop}{path}", json={
            "client_id": self.cfg["api_key"],
            "client_secret": self.cfg["api_secret"],
            "code": code,
        }, timeout=20)
        try:
            data = r.json()
        except ValueError:
            data = None
        if not r.ok or not (data or {}).get("access_token"):
            raise ShopifyError("POST", path, r.status_code, _error_detail(r, data))
        return data["access_token"]
