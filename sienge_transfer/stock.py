"""Stock inventory and building appropriation queries."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlencode

from sienge_transfer.client import (
    Body,
    Client,
    InvalidCostCenterError,
    sanitize_json_value,
)
from sienge_transfer.fields import (
    ResponseFormatError,
    decode_object_list,
    get_bool,
    get_float,
    get_int,
    get_string,
)
from sienge_transfer.models import Apropriacao, Insumo, InsumoIDsRequiredError

_DEBUG_ENV = "SIENGE_TRANSFER_DEBUG_APPROPRIATIONS"
_QUANTITY_KEYS = ("quantity", "availableQuantity", "balance", "stockQuantity")


@dataclass(frozen=True)
class BuildingAppropriationQuery:
    cost_center_id: int
    resource_id: int
    detail_id: Optional[int] = None
    trademark_id: Optional[int] = None


@dataclass(frozen=True)
class StockItemKey:
    cost_center_id: int
    resource_id: int
    detail_id: int
    trademark_id: int


@dataclass(frozen=True)
class _SheetItem:
    id: int
    reference: str
    description: str


def _original_json(obj: dict) -> str:
    return json.dumps(
        sanitize_json_value(obj), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _positive_or_none(value: int) -> Optional[int]:
    return value if value > 0 else None


def parse_stock_items(body: Body) -> list[Insumo]:
    """Stock items from an inventory response."""
    items = []
    for obj in decode_object_list(body):
        item_id = get_int(obj, "resourceId", "supplyId", "id")
        if item_id is None or item_id <= 0:
            raise ResponseFormatError("resposta de estoque sem ID de insumo valido")
        items.append(
            Insumo(
                id=item_id,
                nome=get_string(obj, "resourceName", "supplyName", "name", "description"),
                detalhe=get_string(obj, "detailDescription", "detail", "detailName", "specification"),
                detalhe_id=get_int(obj, "detailId", "resourceDetailId") or 0,
                marca=get_string(obj, "trademarkDescription", "brand", "brandName", "trademark"),
                marca_id=get_int(
                    obj, "trademarkId", "brandId", "resourceTrademarkId", "resourceBrandId"
                )
                or 0,
                unidade=get_string(obj, "unitOfMeasure", "unit", "measureUnit"),
                quantidade=get_float(obj, *_QUANTITY_KEYS) or 0.0,
                preco_medio=get_float(obj, "averagePrice", "unitPrice") or 0.0,
                original_json=_original_json(obj),
            )
        )
    return items


def parse_appropriations(body: Body) -> list[Apropriacao]:
    """Building appropriations from an appropriation response."""
    result = []
    for obj in decode_object_list(body):
        sheet_item_id = get_int(obj, "sheetItemId", "sheetItemID", "itemId") or 0
        reference = get_string(obj, "costEstimationItemReference", "reference")
        code = get_string(
            obj,
            "appropriationCode",
            "buildingAppropriationCode",
            "costEstimationItemReference",
            "code",
            "id",
        )
        if not code and sheet_item_id > 0:
            code = str(sheet_item_id)
        description = get_string(
            obj,
            "appropriationDescription",
            "buildingAppropriationDescription",
            "description",
            "name",
        ) or reference
        blocked = get_bool(
            obj,
            "blocked",
            "locked",
            "isBlocked",
            "isLocked",
            "bloqueado",
            "blockedForAppropriation",
            "blockedForAppropriations",
            "budgetItemBlocked",
            "isBudgetItemBlocked",
        )
        result.append(
            Apropriacao(
                codigo=code,
                descricao=description,
                referencia=reference,
                building_unit_id=get_int(obj, "buildingUnitId", "buildingUnitID", "unitId") or 0,
                sheet_item_id=sheet_item_id,
                quantidade=get_float(obj, *_QUANTITY_KEYS) or 0.0,
                bloqueado=bool(blocked),
            )
        )
    return result


def _parse_sheet_items(body: Body) -> list[_SheetItem]:
    return [
        _SheetItem(
            id=get_int(obj, "id", "itemId", "sheetItemId") or 0,
            reference=get_string(
                obj, "reference", "code", "itemReference", "costEstimationItemReference"
            ),
            description=get_string(obj, "description", "name", "itemDescription"),
        )
        for obj in decode_object_list(body)
    ]


def _find_sheet_item(appropriation: Apropriacao, items: list[_SheetItem]) -> Optional[_SheetItem]:
    for item in items:
        if item.id != appropriation.sheet_item_id:
            continue
        if appropriation.referencia and item.reference and appropriation.referencia != item.reference:
            continue
        return item
    return next((item for item in items if item.id == appropriation.sheet_item_id), None)


def get_stock_items(client: Client, cost_center_id: int) -> list[Insumo]:
    """All stock items of a work."""
    if cost_center_id <= 0:
        raise InvalidCostCenterError()
    body = client.request("GET", f"/stock-inventories/{cost_center_id}/items").body
    return parse_stock_items(body)


def get_stock_items_by_ids(client: Client, cost_center_id: int, ids: Iterable[int]) -> list[Insumo]:
    """Stock items of a work whose supply ID is among the given ones."""
    wanted = set()
    for item_id in ids or ():
        if item_id <= 0:
            raise ValueError("IDs de insumo devem conter apenas numeros positivos")
        wanted.add(item_id)
    if not wanted:
        raise InsumoIDsRequiredError()
    return [item for item in get_stock_items(client, cost_center_id) if item.id in wanted]


def build_building_appropriation_path(query: BuildingAppropriationQuery) -> str:
    """Relative path, with query string, of the building appropriation endpoint."""
    path = (
        f"/stock-inventories/{query.cost_center_id}/items/{query.resource_id}"
        "/building-appropriation"
    )
    params = {"offset": "0", "limit": "100"}
    if query.detail_id is not None:
        params["detailId"] = str(query.detail_id)
    if query.trademark_id is not None:
        params["trademarkId"] = str(query.trademark_id)
    return path + "?" + urlencode(sorted(params.items()))


def stock_item_cache_key(cost_center_id: int, item: Insumo) -> StockItemKey:
    return StockItemKey(cost_center_id, item.id, item.detalhe_id, item.marca_id)


def get_building_appropriations_by_query(
    client: Client, query: BuildingAppropriationQuery
) -> list[Apropriacao]:
    """Building appropriations of a stock item."""
    if query.cost_center_id <= 0:
        raise InvalidCostCenterError()
    if query.resource_id <= 0:
        raise ValueError("ID do insumo deve ser numerico positivo")
    body = client.request("GET", build_building_appropriation_path(query)).body
    return parse_appropriations(body)


def get_building_appropriations(
    client: Client, cost_center_id: int, resource_id: int
) -> list[Apropriacao]:
    return get_building_appropriations_by_query(
        client, BuildingAppropriationQuery(cost_center_id, resource_id)
    )


def _debug_appropriations(query: BuildingAppropriationQuery, appropriations: list[Apropriacao]) -> None:
    if os.environ.get(_DEBUG_ENV, "").strip().lower() != "1":
        return
    total = sum((a.quantidade for a in appropriations), 0.0)
    print(
        f"DEBUG Apropriacoes: url={build_building_appropriation_path(query)} "
        f"sumAppropriations={total:.4f} count={len(appropriations)}"
    )


def get_stock_appropriations_with_descriptions_by_query(
    client: Client, query: BuildingAppropriationQuery
) -> list[Apropriacao]:
    """Building appropriations with descriptions taken from the cost estimation sheets."""
    appropriations = get_building_appropriations_by_query(client, query)
    if not appropriations:
        return appropriations

    _debug_appropriations(query, appropriations)
    sheets: dict[int, list[_SheetItem]] = {}
    for appropriation in appropriations:
        unit_id = appropriation.building_unit_id
        if unit_id <= 0 or appropriation.sheet_item_id <= 0:
            continue
        if unit_id not in sheets:
            body = client.request(
                "GET",
                f"/building-cost-estimations/{query.cost_center_id}/sheets/{unit_id}/items",
            ).body
            sheets[unit_id] = _parse_sheet_items(body)
        item = _find_sheet_item(appropriation, sheets[unit_id])
        if item is not None and item.description.strip():
            appropriation.descricao = item.description
            if not appropriation.referencia.strip():
                appropriation.referencia = item.reference
    return appropriations


def get_stock_appropriations_with_descriptions(
    client: Client, cost_center_id: int, resource_id: int
) -> list[Apropriacao]:
    return get_stock_appropriations_with_descriptions_by_query(
        client, BuildingAppropriationQuery(cost_center_id, resource_id)
    )


def get_stock_appropriations_with_descriptions_for_item(
    client: Client, cost_center_id: int, item: Insumo
) -> list[Apropriacao]:
    """Appropriations for a stock item, filtered by its detail and trademark when known."""
    return get_stock_appropriations_with_descriptions_by_query(
        client,
        BuildingAppropriationQuery(
            cost_center_id=cost_center_id,
            resource_id=item.id,
            detail_id=_positive_or_none(item.detalhe_id),
            trademark_id=_positive_or_none(item.marca_id),
        ),
    )