"""Purchase request item queries."""

from __future__ import annotations

import json

from sienge_transfer.client import Body, Client, sanitize_json_value
from sienge_transfer.fields import decode_object_list, get_float, get_int_flexible, get_string
from sienge_transfer.models import PurchaseRequestItem

_PAGE_LIMIT = 100


def parse_purchase_request_items(
    body: Body, purchase_request_id: int, building_id: int
) -> list[PurchaseRequestItem]:
    """Items of a purchase request page; entries without a resource ID are skipped."""
    items = []
    for obj in decode_object_list(body):
        resource_id = get_int_flexible(obj, "resourceId", "productId", "supplyId", "itemId", "id") or 0
        if resource_id <= 0:
            continue
        items.append(
            PurchaseRequestItem(
                purchase_request_id=purchase_request_id,
                building_id=building_id,
                resource_id=resource_id,
                resource_name=get_string(
                    obj,
                    "resourceName",
                    "productDescription",
                    "supplyName",
                    "itemName",
                    "name",
                    "description",
                ),
                detail=get_string(obj, "detailDescription", "detail", "detailName", "specification"),
                detail_id=get_int_flexible(obj, "detailId", "resourceDetailId") or 0,
                brand=get_string(
                    obj,
                    "trademarkDescription",
                    "brandDescription",
                    "marca",
                    "brand",
                    "brandName",
                    "trademark",
                ),
                brand_id=get_int_flexible(obj, "brandId", "trademarkId", "resourceBrandId") or 0,
                unit=get_string(obj, "unitSymbol", "unitOfMeasure", "unidade", "unit", "measureUnit"),
                quantity=get_float(
                    obj, "quantity", "quantidade", "requestedQuantity", "purchaseQuantity"
                )
                or 0.0,
                original_json=json.dumps(
                    sanitize_json_value(obj),
                    sort_keys=True,
                    separators=(",", ":"),
                    ensure_ascii=False,
                ),
            )
        )
    return items


def get_purchase_request_items(
    client: Client, purchase_request_id: int, building_id: int
) -> list[PurchaseRequestItem]:
    """All items of a purchase request, paging through results and removing duplicates."""
    if purchase_request_id <= 0:
        raise ValueError("ID da solicitacao de compra deve ser numerico positivo")
    if building_id <= 0:
        raise ValueError("ID da obra da solicitacao deve ser numerico positivo")

    items: dict[tuple[int, int, int], PurchaseRequestItem] = {}
    offset = 0
    while True:
        path = (
            f"/purchase-requests/all/items?purchaseRequestId={purchase_request_id}"
            f"&buildingId={building_id}&limit={_PAGE_LIMIT}&offset={offset}"
        )
        page = parse_purchase_request_items(
            client.request("GET", path).body, purchase_request_id, building_id
        )
        for item in page:
            items.setdefault((item.resource_id, item.detail_id, item.brand_id), item)
        if len(page) < _PAGE_LIMIT:
            break
        offset += _PAGE_LIMIT
    return list(items.values())