import sys
import logging
from flask import Flask
from dotenv import load_dotenv

from .config import load_config, merge, validate
from .utils.logger import get_logger, set_level


def _configure_logging(level: str):
    log = get_logger()
    set_level(level)
    if getattr(log, "_configured", False):
        return

    # Reuse gunicorn's handlers when running under it so logs land in the same stream
    gunicorn_error = logging.getLogger("gunicorn.error")
    for h in gunicorn_error.handlers:
        log.addHandler(h)

    # Also add a stdout handler (for safety)
    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(logging.Formatter("[%(asctime)s][%(levelname)s] %(message)s", "%H:%M:%S"))
    log.addHandler(sh)
    log._configured = True


def create_app(overrides: dict | None = None):
    """
    Build the app. Raises ConfigError / StorageUnavailable on a bad setup so
    the process never starts half-configured.
    """
    load_dotenv()
    cfg = merge(load_config(), overrides)
    validate(cfg)

    app = Flask(__name__)
    app.config.update(cfg)
    _configure_logging(cfg.get("LOG_LEVEL"))
    app.logger.handlers = get_logger().handlers
    app.logger.setLevel(get_logger().level)

    # =========================================================
    # Storage + API clients, created once per process
    # =========================================================
    from .storage import init_storage
    from .clients.shopify import ShopifyClient
    from .clients.ebay import EbayClient

    app.extensions["storage"] = init_storage(cfg.get("DATABASE_URL"))
    app.extensions["shopify"] = ShopifyClient(cfg["SHOPIFY"])
    app.extensions["ebay"] = EbayClient(cfg["EBAY"])

    # =========================================================
    # Blueprints
    # =========================================================
    from .routes.auth import bp as auth_bp
    from .routes.api import bp as api_bp
    from .routes.webhooks import bp as webhooks_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # =========================================================
    # Health check
    # =========================================================
    @app.get("/health")
    def health():
        return {"ok": True, "storage": app.extensions["storage"].kind}, 200

    return app
