import base64, hashlib, hmac
from flask import request, abort


def valid_webhook_hmac(secret: str, raw: bytes, their_hmac: str) -> bool:
    if not secret or not their_hmac:
        return False
    digest = hmac.new(secret.encode(), raw, hashlib.sha256).digest()
    return hmac.compare_digest(base64.b64encode(digest).decode(), their_hmac)


def verify_webhook_hmac(secret: str):
    raw = request.get_data()
    their_hmac = request.headers.get("X-Shopify-Hmac-Sha256", "")
    if not valid_webhook_hmac(secret, raw, their_hmac):
        abort(401)
    return raw
