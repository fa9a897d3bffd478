import json

import pytest
import responses

from sienge_transfer.client import BASE_PATH, Client
from sienge_transfer.purchases import get_purchase_request_items, parse_purchase_request_items

HOST = "https://example.com"
BASE = HOST + BASE_PATH
ITEMS_URL = BASE + "/purchase-requests/all/items"


def make_client():
    password = "password"
    return Client(BASE, "usuario", password)


def test_get_purchase_request_items_builds_url_parses_and_deduplicates():
    body = json.dumps(
        {
            "results": [
                {"resourceId": 1001, "resourceName": "Cimento", "detailId": 5, "trademarkId": 8, "quantity": 3},
                {"resourceId": 1001, "resourceName": "Cimento", "detailId": 5, "trademarkId": 8, "quantity": 3},
            ]
        }
    )
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, ITEMS_URL, body=body)
        items = get_purchase_request_items(make_client(), 2291, 125)
        calls = list(rsps.calls)
    assert len(calls) == 1
    assert calls[0].request.url == (
        BASE + "/purchase-requests/all/items?purchaseRequestId=2291&buildingId=125&limit=100&offset=0"
    )
    assert len(items) == 1
    assert (items[0].resource_id, items[0].detail_id, items[0].brand_id) == (1001, 5, 8)


def test_get_purchase_request_items_pages_until_short_page():
    full_page = json.dumps({"results": [{"resourceId": n} for n in range(1, 101)]})
    last_page = json.dumps({"results": [{"resourceId": 500}]})
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, ITEMS_URL, body=full_page)
        rsps.add(responses.GET, ITEMS_URL, body=last_page)
        items = get_purchase_request_items(make_client(), 1, 2)
        urls = [c.request.url for c in rsps.calls]
    assert len(urls) == 2
    assert urls[1].endswith("offset=100")
    assert len(items) == 101
    assert items[-1].resource_id == 500


def test_get_purchase_request_items_rejects_invalid_ids():
    client = make_client()
    with pytest.raises(ValueError, match="solicitacao de compra"):
        get_purchase_request_items(client, 0, 1)
    with pytest.raises(ValueError, match="obra da solicitacao"):
        get_purchase_request_items(client, 1, 0)


def test_parse_purchase_request_items_parses_array_response():
    items = parse_purchase_request_items('[{"supplyId":"1001","supplyName":"Cimento"}]', 1, 2)
    assert len(items) == 1
    assert (items[0].resource_id, items[0].purchase_request_id, items[0].building_id) == (1001, 1, 2)
    assert items[0].resource_name == "Cimento"


def test_parse_purchase_request_items_accepts_resultados_wrapper():
    items = parse_purchase_request_items(
        '{"resultados":[{"productId":1001,"productDescription":"Cimento"}]}', 2339, 111
    )
    assert len(items) == 1
    assert items[0].resource_id == 1001


def test_parse_purchase_request_items_maps_product_fields():
    items = parse_purchase_request_items(
        '{"resultados":[{"purchaseRequestId":2339,"itemNumber":1,"productId":1001,"productDescription":"Cimento",'
        '"detailId":3,"detailDescription":"CPIII","trademarkId":456,"trademarkDescription":"Votoran",'
        '"quantity":12,"unitSymbol":"sc"}]}',
        2339,
        111,
    )
    item = items[0]
    assert (
        item.resource_id,
        item.resource_name,
        item.detail_id,
        item.detail,
        item.brand_id,
        item.brand,
        item.unit,
        item.quantity,
    ) == (1001, "Cimento", 3, "CPIII", 456, "Votoran", "sc", 12)


def test_parse_purchase_request_items_handles_null_trademark_id():
    items = parse_purchase_request_items(
        '{"resultados":[{"productId":1001,"detailId":3,"trademarkId":null,"quantity":12}]}', 2339, 111
    )
    assert items[0].brand_id == 0


def test_parse_purchase_request_items_accepts_portuguese_fields():
    items = parse_purchase_request_items(
        '{"resultados":[{"productId":1001,"quantidade":7,"unidade":"kg"}]}', 2339, 111
    )
    assert items[0].quantity == 7
    assert items[0].unit == "kg"


def test_parse_purchase_request_items_reads_nested_resource_id():
    items = parse_purchase_request_items('[{"resourceId":{"id":42},"name":"Brita"}]', 1, 2)
    assert items[0].resource_id == 42


def test_parse_purchase_request_items_skips_items_without_resource():
    items = parse_purchase_request_items('[{"name":"Sem ID"},{"resourceId":7}]', 1, 2)
    assert [item.resource_id for item in items] == [7]


def test_parse_purchase_request_items_sanitizes_original_json():
    items = parse_purchase_request_items(
        json.dumps(
            {
                "results": [
                    {
                        "resourceId": 3421,
                        "resourceName": "Cimento",
                        "password": "secret",
                        "nested": {"authorization": "Bearer token"},
                    }
                ]
            }
        ),
        99,
        121,
    )
    assert len(items) == 1
    original = json.loads(items[0].original_json)
    assert original["password"] == "[removido]"
    assert original["nested"]["authorization"] == "[removido]"
    assert "Bearer" not in items[0].original_json
    assert original["resourceName"] == "Cimento"