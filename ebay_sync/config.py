import os


class ConfigError(RuntimeError):
    pass


REQUIRED = [
    ("SHOPIFY", "api_key"),
    ("SHOPIFY", "api_secret"),
]


def _csv(value: str | None) -> list[str]:
    return [s.strip() for s in (value or "").split(",") if s.strip()]


def load_config() -> dict:
    """Read settings from the environment (call after load_dotenv)."""
    return {
        "DATABASE_URL": os.getenv("DATABASE_URL") or None,
        "SECRET_KEY": os.getenv("SECRET_KEY", "dev-only-change-me"),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        "SHOPIFY": {
            "api_key": os.getenv("SHOPIFY_API_KEY"),
            "api_secret": os.getenv("SHOPIFY_API_SECRET"),
            "scopes": _csv(os.getenv("SHOPIFY_SCOPES", "read_products,read_inventory,read_locations")),
            "app_url": (os.getenv("SHOPIFY_APP_URL") or "").rstrip("/"),
            "api_version": os.getenv("SHOPIFY_API_VERSION", "2025-04"),
        },
        "EBAY": {
            "env": os.getenv("EBAY_ENV", "sandbox"),
            "client_id": os.getenv("EBAY_CLIENT_ID"),
            "client_secret": os.getenv("EBAY_CLIENT_SECRET"),
            "refresh_token": os.getenv("EBAY_REFRESH_TOKEN"),
            "marketplace_id": os.getenv("EBAY_MARKETPLACE_ID", "EBAY_IT"),
            "currency": os.getenv("EBAY_CURRENCY", "EUR"),
            "content_language": os.getenv("EBAY_CONTENT_LANGUAGE", "it-IT"),
            "category_id": os.getenv("EBAY_DEFAULT_CATEGORY_ID"),
            "merchant_location_key": os.getenv("EBAY_MERCHANT_LOCATION_KEY", "default"),
            "payment_policy_id": os.getenv("EBAY_PAYMENT_POLICY_ID"),
            "fulfillment_policy_id": os.getenv("EBAY_FULFILLMENT_POLICY_ID"),
            "return_policy_id": os.getenv("EBAY_RETURN_POLICY_ID"),
        },
    }


def merge(base: dict, overrides: dict | None) -> dict:
    """Shallow merge, one level deeper for the SHOPIFY / EBAY sections."""
    out = dict(base)
    for k, v in (overrides or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = {**out[k], **v}
        else:
            out[k] = v
    return out


def validate(cfg: dict):
    missing = [f"{section}.{key}" for section, key in REQUIRED if not (cfg.get(section) or {}).get(key)]
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")
