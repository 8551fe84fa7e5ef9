import pytest

from ebay_sync.clients.ebay import EbayError
from ebay_sync.clients.shopify import ShopifyError
from ebay_sync.services.relay import (
    PublishError, plain_description, publish_variant, relay_product_update, resync_links,
)
from tests.conftest import PRODUCT, SHOP

TOKEN = "shpat_token"


# =========================================================
# publish_variant
# =========================================================

def test_publish_creates_offer_and_records_link(storage, fake_shopify, fake_ebay):
    result = publish_variant(storage, fake_shopify, fake_ebay, SHOP, TOKEN, 1001, 2001)

    assert result == {"ok": True, "runId": result["runId"], "sku": "SKU-1",
                      "offerId": "OFFER-1", "listingId": "LISTING-1"}
    fake_ebay.create_or_replace_inventory_item.assert_called_once_with(
        "SKU-1", "Camino a bioetanolo", "Camino moderno", ["https://cdn.example.com/a.jpg"], 7,
    )
    fake_ebay.create_offer.assert_called_once_with("SKU-1", "19.90", 7)
    fake_ebay.publish_offer.assert_called_once_with("OFFER-1")

    link = storage.get_link_by_sku(SHOP, "SKU-1")
    assert (link.status, link.ebay_offer_id, link.ebay_listing_id) == ("published", "OFFER-1", "LISTING-1")
    assert (link.shopify_product_id, link.shopify_variant_id) == ("1001", "2001")

    run, logs = storage.get_run_with_logs(SHOP, result["runId"], 50)
    assert run.status == "success"
    assert run.trigger == "manual"
    assert run.summary["listing_id"] == "LISTING-1"
    assert logs and all(l.level == "info" for l in logs)


def test_publish_reuses_existing_offer(storage, fake_shopify, fake_ebay):
    storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="OLD-OFFER", status="published")

    result = publish_variant(storage, fake_shopify, fake_ebay, SHOP, TOKEN, 1001, 2001)

    fake_ebay.create_offer.assert_not_called()
    fake_ebay.update_offer_price_quantity.assert_called_once_with("SKU-1", "OLD-OFFER", "19.90", 7)
    fake_ebay.publish_offer.assert_called_once_with("OLD-OFFER")
    assert result["offerId"] == "OLD-OFFER"


def test_publish_without_sku_fails_run(storage, fake_shopify, fake_ebay):
    fake_shopify.get_variant.return_value = {"id": 2003, "sku": "  ", "price": "9.90"}

    with pytest.raises(PublishError, match="has no SKU"):
        publish_variant(storage, fake_shopify, fake_ebay, SHOP, TOKEN, 1001, 2003)

    (run,) = storage.list_runs(SHOP, 5)
    assert run.status == "error"
    assert "has no SKU" in run.summary["error"]
    fake_ebay.create_offer.assert_not_called()


def test_publish_ebay_failure_marks_link_and_run(storage, fake_shopify, fake_ebay):
    fake_ebay.publish_offer.side_effect = EbayError("POST", "/offer/OFFER-1/publish", 400, "Missing category")

    with pytest.raises(EbayError):
        publish_variant(storage, fake_shopify, fake_ebay, SHOP, TOKEN, 1001, 2001)

    link = storage.get_link_by_sku(SHOP, "SKU-1")
    assert link.status == "error"
    assert link.ebay_offer_id == "OFFER-1"
    assert "Missing category" in link.last_error

    (run,) = storage.list_runs(SHOP, 5)
    found, logs = storage.get_run_with_logs(SHOP, run.id, 50)
    assert found.status == "error"
    assert found.summary["error"] == "eBay POST /offer/OFFER-1/publish 400: Missing category"
    assert logs[-1].level == "error"
    assert logs[-1].message == found.summary["error"]


# =========================================================
# relay_product_update
# =========================================================

def test_relay_updates_only_linked_variants(storage, fake_shopify, fake_ebay):
    storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1", status="published")
    storage.upsert_link(SHOP, "SKU-2", "1001", "2002")  # linked but never offered

    result = relay_product_update(storage, fake_shopify, fake_ebay, SHOP, TOKEN, PRODUCT)

    fake_ebay.update_offer_price_quantity.assert_called_once_with("SKU-1", "O1", "19.90", 7)
    fake_shopify.inventory_level.assert_called_once_with(SHOP, TOKEN, 3001, "55")
    assert (result["updated"], result["skipped"], result["failed"]) == (1, 2, 0)

    run, _ = storage.get_run_with_logs(SHOP, result["runId"], 50)
    assert run.status == "success"
    assert run.trigger == "webhook"


def test_relay_with_nothing_linked_does_not_touch_apis(storage, fake_shopify, fake_ebay):
    result = relay_product_update(storage, fake_shopify, fake_ebay, SHOP, TOKEN, PRODUCT)

    fake_shopify.main_location_id.assert_not_called()
    fake_ebay.update_offer_price_quantity.assert_not_called()
    assert result["skipped"] == 3


def test_relay_isolates_per_sku_failures(storage, fake_shopify, fake_ebay):
    storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1")
    storage.upsert_link(SHOP, "SKU-2", "1001", "2002", ebay_offer_id="O2", last_error="stale")

    def update(sku, offer_id, price, qty):
        if sku == "SKU-1":
            raise EbayError("POST", "/bulk_update_price_quantity", 500, "upstream timeout")

    fake_ebay.update_offer_price_quantity.side_effect = update

    result = relay_product_update(storage, fake_shopify, fake_ebay, SHOP, TOKEN, PRODUCT)

    assert (result["updated"], result["failed"]) == (1, 1)
    assert "upstream timeout" in result["errors"]["SKU-1"]
    assert "upstream timeout" in storage.get_link_by_sku(SHOP, "SKU-1").last_error
    assert storage.get_link_by_sku(SHOP, "SKU-2").last_error is None

    run, logs = storage.get_run_with_logs(SHOP, result["runId"], 50)
    assert run.status == "error"
    assert any(l.level == "error" and "SKU-1" in l.message for l in logs)


def test_relay_location_failure_is_per_sku(storage, fake_shopify, fake_ebay):
    storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1")
    fake_shopify.main_location_id.side_effect = ShopifyError("GET", "/locations.json", 403, "forbidden")

    result = relay_product_update(storage, fake_shopify, fake_ebay, SHOP, TOKEN, PRODUCT)

    assert result["failed"] == 1
    assert "403" in result["errors"]["SKU-1"]


# =========================================================
# resync_links
# =========================================================

def test_resync_relays_every_offered_link(storage, fake_shopify, fake_ebay):
    storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1")
    storage.upsert_link(SHOP, "SKU-2", "1001", "2002", ebay_offer_id="O2")
    storage.upsert_link(SHOP, "GONE", "1001", "2009", ebay_offer_id="O9")

    result = resync_links(storage, fake_shopify, fake_ebay, SHOP, TOKEN)

    fake_shopify.get_product.assert_called_once_with(SHOP, TOKEN, "1001")
    assert fake_ebay.update_offer_price_quantity.call_count == 2
    assert (result["updated"], result["skipped"], result["failed"]) == (2, 1, 0)

    run, _ = storage.get_run_with_logs(SHOP, result["runId"], 50)
    assert (run.trigger, run.status) == ("cron", "success")


def test_resync_records_product_read_failures(storage, fake_shopify, fake_ebay):
    storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1")
    fake_shopify.get_product.side_effect = ShopifyError("GET", "/products/1001.json", 404, "Not Found")

    result = resync_links(storage, fake_shopify, fake_ebay, SHOP, TOKEN)

    assert result["failed"] == 1
    assert "404" in result["errors"]["SKU-1"]
    run, _ = storage.get_run_with_logs(SHOP, result["runId"], 50)
    assert run.status == "error"


def test_plain_description_strips_tags_and_caps_length():
    assert plain_description("<p>Hello <b>world</b></p>") == "Hello world"
    assert plain_description(None) == ""
    assert len(plain_description("x" * 5000)) == 4000
