# ebay_sync/services/relay.py
import re
from typing import Optional

from ..clients.ebay import EbayClient
from ..clients.shopify import ShopifyClient
from ..storage import Storage
from .runs import RunRecorder, tracked_run, error_text

DESCRIPTION_MAX = 4000

# =========================================================
# Utilities
# =========================================================


class PublishError(RuntimeError):
    pass


def plain_description(body_html: Optional[str]) -> str:
    text = re.sub(r"<[^>]+>", " ", body_html or "")
    text = re.sub(r"\s+", " ", text).strip()
    return text[:DESCRIPTION_MAX]


def product_images(product: dict) -> list[str]:
    return [img.get("src") for img in (product.get("images") or []) if img.get("src")]


def _sku(variant: dict) -> str:
    return (variant.get("sku") or "").strip()


def _id(value) -> Optional[str]:
    return None if value in (None, "") else str(value)


# =========================================================
# Manual publish (one variant -> one eBay offer)
# =========================================================

def publish_variant(storage: Storage, shopify: ShopifyClient, ebay: EbayClient,
                    shop: str, token: str, product_id, variant_id) -> dict:
    """
    Push one Shopify variant to eBay: inventory item, offer, publish.

    A variant whose link already carries an offer id gets that offer updated
    and re-published instead of a second offer being created.
    """
    with tracked_run(storage, shop, "manual",
                     {"product_id": _id(product_id), "variant_id": _id(variant_id)}) as run:
        product = shopify.get_product(shop, token, product_id)
        variant = shopify.get_variant(shop, token, variant_id)
        sku = _sku(variant)
        if not sku:
            raise PublishError(f"Shopify variant {variant_id} has no SKU")
        run.summary["sku"] = sku

        location_id = shopify.main_location_id(shop, token)
        qty = shopify.inventory_level(shop, token, variant.get("inventory_item_id"), location_id)
        price = variant.get("price")
        run.info(f"read {sku} from Shopify: price={price} qty={qty}", location_id=location_id)

        pid, vid = _id(product.get("id")) or _id(product_id), _id(variant.get("id")) or _id(variant_id)
        existing = storage.get_link_by_sku(shop, sku)
        storage.upsert_link(shop, sku, pid, vid, status=None if existing else "linked")

        offer_id = existing.ebay_offer_id if existing else None
        try:
            ebay.create_or_replace_inventory_item(
                sku, product.get("title") or sku, plain_description(product.get("body_html")),
                product_images(product), qty,
            )
            run.info(f"eBay inventory item saved for {sku}")

            if offer_id:
                ebay.update_offer_price_quantity(sku, offer_id, price, qty)
                run.info(f"existing offer {offer_id} updated", offer_id=offer_id)
            else:
                offer_id = ebay.create_offer(sku, price, qty)
                run.info(f"offer {offer_id} created", offer_id=offer_id)

            listing_id = ebay.publish_offer(offer_id)
            run.info(f"offer {offer_id} published, listing {listing_id}", listing_id=listing_id)
        except Exception as e:
            storage.upsert_link(shop, sku, pid, vid, ebay_offer_id=offer_id,
                                status="error", last_error=error_text(e))
            raise

        storage.upsert_link(shop, sku, pid, vid, ebay_offer_id=offer_id,
                            ebay_listing_id=listing_id, status="published", last_error=None)
        run.summary.update({"offer_id": offer_id, "listing_id": listing_id})
        return {"ok": True, "runId": run.id, "sku": sku, "offerId": offer_id, "listingId": listing_id}


# =========================================================
# Inventory / price relay (webhook + periodic resync)
# =========================================================

def _relay_variants(storage: Storage, shopify: ShopifyClient, ebay: EbayClient,
                    run: RunRecorder, shop: str, token: str, product_id, variants: list[dict],
                    location_id: Optional[str]) -> Optional[str]:
    """
    Update price + quantity of every linked variant. One SKU failing does not
    stop the others; the failure lands in the run log, the summary and the
    link's last_error. Returns the location id so callers can reuse it.
    """
    s = run.summary
    for v in variants:
        sku = _sku(v)
        link = storage.get_link_by_sku(shop, sku) if sku else None
        if not link or not link.ebay_offer_id:
            s["skipped"] += 1
            continue

        pid = _id(product_id) or link.shopify_product_id
        vid = _id(v.get("id")) or link.shopify_variant_id
        try:
            if location_id is None:
                location_id = shopify.main_location_id(shop, token)
            qty = shopify.inventory_level(shop, token, v.get("inventory_item_id"), location_id)
            price = v.get("price")
            ebay.update_offer_price_quantity(sku, link.ebay_offer_id, price, qty)
        except Exception as e:
            msg = error_text(e)
            s["failed"] += 1
            s["errors"][sku] = msg
            run.error(f"{sku}: eBay update failed: {msg}", sku=sku, offer_id=link.ebay_offer_id)
            storage.upsert_link(shop, sku, pid, vid, last_error=msg)
            continue

        s["updated"] += 1
        run.info(f"{sku}: offer {link.ebay_offer_id} -> price={price} qty={qty}", sku=sku)
        storage.upsert_link(shop, sku, pid, vid, last_error=None)
    return location_id


def _counters(extra: Optional[dict] = None) -> dict:
    return {**(extra or {}), "updated": 0, "skipped": 0, "failed": 0, "errors": {}}


def relay_product_update(storage: Storage, shopify: ShopifyClient, ebay: EbayClient,
                         shop: str, token: str, payload: dict, trigger: str = "webhook") -> dict:
    """Relay a products/update payload to the eBay offers linked to its variants."""
    product_id = payload.get("id")
    with tracked_run(storage, shop, trigger, _counters({"product_id": _id(product_id)})) as run:
        variants = payload.get("variants") or []
        run.info(f"product {product_id}: {len(variants)} variants received")
        _relay_variants(storage, shopify, ebay, run, shop, token, product_id, variants, None)
        if run.summary["failed"]:
            run.fail()
        return {"runId": run.id, **run.summary}


def resync_links(storage: Storage, shopify: ShopifyClient, ebay: EbayClient,
                 shop: str, token: str, limit: int = 200) -> dict:
    """
    Re-read every linked product from Shopify and relay it. This is what an
    external periodic trigger calls.
    """
    with tracked_run(storage, shop, "cron", _counters()) as run:
        by_product: dict[str, list[str]] = {}
        for link in storage.list_links(shop, limit):
            if link.ebay_offer_id and link.shopify_product_id:
                by_product.setdefault(link.shopify_product_id, []).append(link.sku)
        run.info(f"{sum(len(v) for v in by_product.values())} linked SKUs across {len(by_product)} products")

        location_id = None
        for product_id, skus in by_product.items():
            try:
                product = shopify.get_product(shop, token, product_id)
            except Exception as e:
                msg = error_text(e)
                run.error(f"product {product_id}: Shopify read failed: {msg}", product_id=product_id)
                run.summary["failed"] += len(skus)
                for sku in skus:
                    run.summary["errors"][sku] = msg
                continue
            variants = [v for v in (product.get("variants") or []) if _sku(v) in skus]
            missing = set(skus) - {_sku(v) for v in variants}
            for sku in sorted(missing):
                run.warn(f"{sku}: no longer on Shopify product {product_id}", sku=sku)
                run.summary["skipped"] += 1
            location_id = _relay_variants(storage, shopify, ebay, run, shop, token,
                                          product_id, variants, location_id)

        if run.summary["failed"]:
            run.fail()
        return {"runId": run.id, **run.summary}
