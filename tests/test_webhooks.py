import json

from tests.conftest import PRODUCT, SHOP, sign

URL = "/webhooks/products-update"


def _post(client, body: bytes, webhook_id="wh-1", shop=SHOP, hmac_header=None):
    return client.post(URL, data=body, content_type="application/json", headers={
        "X-Shopify-Hmac-Sha256": hmac_header if hmac_header is not None else sign(body),
        "X-Shopify-Shop-Domain": shop,
        "X-Shopify-Webhook-Id": webhook_id,
    })


def test_bad_signature_is_rejected(client, fake_ebay):
    body = json.dumps(PRODUCT).encode()
    res = _post(client, body, hmac_header="not-the-right-hmac")
    assert res.status_code == 401
    fake_ebay.update_offer_price_quantity.assert_not_called()


def test_unknown_shop_is_acknowledged_and_ignored(client, app_storage, fake_ebay):
    res = _post(client, json.dumps(PRODUCT).encode(), shop="unknown.myshopify.com")
    assert res.status_code == 200
    assert app_storage.list_runs("unknown.myshopify.com", 10) == []
    fake_ebay.update_offer_price_quantity.assert_not_called()


def test_update_is_relayed_once_per_webhook_id(client, app_storage, fake_ebay):
    app_storage.set_token(SHOP, "shpat_token")
    app_storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1", status="published")
    body = json.dumps(PRODUCT).encode()

    assert _post(client, body).status_code == 200
    assert _post(client, body).status_code == 200

    fake_ebay.update_offer_price_quantity.assert_called_once_with("SKU-1", "O1", "19.90", 7)
    assert app_storage.is_processed("wh-1")
    (run,) = app_storage.list_runs(SHOP, 10)
    assert (run.trigger, run.status) == ("webhook", "success")


def test_new_webhook_id_is_relayed_again(client, app_storage, fake_ebay):
    app_storage.set_token(SHOP, "shpat_token")
    app_storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1")
    body = json.dumps(PRODUCT).encode()

    _post(client, body, webhook_id="wh-1")
    _post(client, body, webhook_id="wh-2")
    assert fake_ebay.update_offer_price_quantity.call_count == 2


def test_downstream_failure_still_returns_200_and_records_run(client, app_storage, fake_shopify):
    app_storage.set_token(SHOP, "shpat_token")
    app_storage.upsert_link(SHOP, "SKU-1", "1001", "2001", ebay_offer_id="O1")
    fake_shopify.inventory_level.side_effect = RuntimeError("connection reset")

    res = _post(client, json.dumps(PRODUCT).encode())

    assert res.status_code == 200
    (run,) = app_storage.list_runs(SHOP, 10)
    assert run.status == "error"
    assert run.summary["errors"] == {"SKU-1": "connection reset"}


def test_unparseable_payload_is_acknowledged(client, app_storage):
    app_storage.set_token(SHOP, "shpat_token")
    res = _post(client, b"{not json")
    assert res.status_code == 200
    assert app_storage.list_runs(SHOP, 10) == []


def test_relay_that_raises_is_acknowledged_but_not_marked(client, app_storage):
    app_storage.set_token(SHOP, "shpat_token")
    body = json.dumps({"id": 1001, "variants": 5}).encode()

    res = _post(client, body, webhook_id="wh-9")

    assert res.status_code == 200
    assert not app_storage.is_processed("wh-9")
    (run,) = app_storage.list_runs(SHOP, 10)
    assert run.status == "error"
    assert "error" in run.summary
