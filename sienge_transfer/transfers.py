"""Stock transfer validation, payload building and submission."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from sienge_transfer.client import (
    APIError,
    APIErrorKind,
    Client,
    stock_transfer_circuit_breaker,
    stock_transfer_post_gate,
)
from sienge_transfer.models import Transferencia, format_quantidade

STOCK_TRANSFERS_ENDPOINT = "/stock-movements/transfer"
TRANSFER_DRY_RUN_ENV = "TRANSFER_DRY_RUN"

_MOVEMENT_ID_KEYS = ("id", "movementId", "stockMovementId", "documentNumber", "movementNumber")
_BLOCKING_STATUSES = frozenset({401, 403, 429, 500, 502, 503})
_BLOCKING_KINDS = (APIErrorKind.HTML, APIErrorKind.REDIRECT, APIErrorKind.TIMEOUT)
_SEPARATOR = "=====================================================\n"
_ZERO_TIME_NOTE = "01/01/0001 00:00:00"


class TransferValidationError(ValueError):
    """Raised when a transfer fails validation; holds every problem found."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("transferencia invalida: " + "; ".join(self.errors))


class TransferBlockedError(RuntimeError):
    """Raised when transfer submission is disabled by the dry-run switch."""


def _num(value: float) -> Union[int, float]:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


@dataclass(frozen=True)
class StockTransferBuildingAppropriation:
    building_unit_id: int
    sheet_item_id: int
    percentage: float = 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "buildingUnitId": self.building_unit_id,
            "sheetItemId": self.sheet_item_id,
            "percentage": _num(self.percentage),
        }


@dataclass(frozen=True)
class StockTransferItemSidePayload:
    resource_id: int
    detail_id: int = 0
    trademark_id: int = 0
    quantity: float = 0.0
    unit_of_measure: str = ""
    unit_price: float = 0.0
    building_appropriations: list[StockTransferBuildingAppropriation] = field(
        default_factory=list
    )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"resourceId": self.resource_id}
        if self.detail_id:
            data["detailId"] = self.detail_id
        if self.trademark_id:
            data["trademarkId"] = self.trademark_id
        if self.quantity:
            data["quantity"] = _num(self.quantity)
        if self.unit_of_measure:
            data["unitOfMeasure"] = self.unit_of_measure
        if self.unit_price:
            data["unitPrice"] = _num(self.unit_price)
        if self.building_appropriations:
            data["buildingAppropriations"] = [a.to_dict() for a in self.building_appropriations]
        return data


@dataclass(frozen=True)
class StockTransferItemPayload:
    source: StockTransferItemSidePayload
    destination: StockTransferItemSidePayload

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source.to_dict(), "destination": self.destination.to_dict()}


@dataclass(frozen=True)
class StockTransferPayload:
    source_cost_center_id: int
    destination_cost_center_id: int
    document_id: str
    movement_type_id: int
    movement_date: str
    notes: str
    items: list[StockTransferItemPayload]
    source_department_id: int = 0
    destination_department_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON document expected by the stock transfer endpoint."""
        data: dict[str, Any] = {
            "sourceCostCenterId": self.source_cost_center_id,
            "destinationCostCenterId": self.destination_cost_center_id,
        }
        if self.source_department_id:
            data["sourceDepartmentId"] = self.source_department_id
        if self.destination_department_id:
            data["destinationDepartmentId"] = self.destination_department_id
        data.update(
            {
                "documentId": self.document_id,
                "movementTypeId": self.movement_type_id,
                "movementDate": self.movement_date,
                "notes": self.notes,
                "items": [item.to_dict() for item in self.items],
            }
        )
        return data


def validate_transferencia(transfer: Transferencia) -> list[str]:
    """Every validation problem of the transfer; empty when it is valid."""
    problems: list[str] = []
    if transfer.obra_origem_id <= 0:
        problems.append("obra de origem obrigatoria")
    if transfer.obra_destino_id <= 0:
        problems.append("obra de destino obrigatoria")
    if 0 < transfer.obra_origem_id == transfer.obra_destino_id:
        problems.append("obra de origem deve ser diferente da obra de destino")
    if not transfer.solicitante.strip():
        problems.append("solicitante obrigatorio")
    if not transfer.codigo_tipo_documento.strip():
        problems.append("codigo do tipo de documento obrigatorio")
    if transfer.codigo_tipo_movimento <= 0:
        problems.append("codigo do tipo de movimento deve ser numerico positivo")
    if transfer.data_hora is None:
        problems.append("data e hora da transferencia obrigatoria")
    if not transfer.insumos:
        problems.append("adicione pelo menos um insumo")

    for number, item in enumerate(transfer.insumos, start=1):
        prefix = f"insumo {number}"
        if item.id <= 0:
            problems.append(f"{prefix}: ID do insumo deve ser numerico positivo")
        if item.apropriacao_origem_obrigatoria and not item.apropriacao.strip():
            problems.append(f"{prefix}: apropriacao de origem obrigatoria")
        if item.apropriacao_destino_obrigatoria and not item.apropriacao_destino.strip():
            problems.append(f"{prefix}: apropriacao de destino obrigatoria")
        if item.apropriacao_origem_obrigatoria and (
            item.apropriacao_origem_building_unit_id <= 0
            or item.apropriacao_origem_sheet_item_id <= 0
        ):
            problems.append(f"{prefix}: identificadores da apropriacao de origem obrigatorios")
        if item.apropriacao_destino_obrigatoria and (
            item.apropriacao_destino_building_unit_id <= 0
            or item.apropriacao_destino_sheet_item_id <= 0
        ):
            problems.append(f"{prefix}: identificadores da apropriacao de destino obrigatorios")
        if not item.unidade.strip():
            problems.append(f"{prefix}: unidade de medida obrigatoria")
        if item.preco_unitario <= 0:
            problems.append(f"{prefix}: preco unitario obrigatorio")
        if item.quantidade <= 0:
            problems.append(f"{prefix}: quantidade deve ser maior que zero")
        if 0 < item.quantidade_disponivel < item.quantidade:
            problems.append(f"{prefix}: quantidade a transferir maior que a disponivel")
    return problems


def _appropriations(
    building_unit_id: int, sheet_item_id: int
) -> list[StockTransferBuildingAppropriation]:
    if building_unit_id <= 0 or sheet_item_id <= 0:
        return []
    return [StockTransferBuildingAppropriation(building_unit_id, sheet_item_id, 100.0)]


def _appropriation_text(code: str, description: str) -> str:
    if not description.strip():
        return code.strip()
    return f"{code.strip()} - {description.strip()}"


def _note_time(value: Optional[datetime]) -> str:
    if value is None:
        return _ZERO_TIME_NOTE
    return value.strftime("%d/%m/%Y %H:%M:%S")


def build_transfer_note(transfer: Transferencia) -> str:
    """Human-readable note recorded with the stock movement."""
    parts = [
        _SEPARATOR,
        "TRANSFERENCIA DE ESTOQUE VIA API\n",
        _SEPARATOR,
        f"Transferencia realizada por {transfer.usuario.strip()} ({transfer.cargo.strip()})\n",
        f"Solicitante: {transfer.solicitante.strip()}\n",
        f"Data/hora: {_note_time(transfer.data_hora)}\n",
        _SEPARATOR,
        f"Origem: {transfer.obra_origem_id} - {transfer.obra_origem_nome.strip()}\n",
        f"Destino: {transfer.obra_destino_id} - {transfer.obra_destino_nome.strip()}\n",
        _SEPARATOR.rstrip("\n"),
    ]
    observation = transfer.observacao.strip()
    if observation:
        parts.append(f"Observacao: {observation}\n")

    item_parts = [
        f"\n{item.id} - {item.nome.strip()} {item.detalhe.strip()} - {item.marca.strip()}\n"
        f" Apropriacao origem {_appropriation_text(item.apropriacao, item.apropriacao_descricao)}\n"
        " Apropriacao destino "
        f"{_appropriation_text(item.apropriacao_destino, item.apropriacao_destino_descricao)}\n"
        f" Quantidade transferida {format_quantidade(item.quantidade, '')}\n"
        for item in transfer.insumos
    ]
    if item_parts:
        parts.append("Insumos: " + "; ".join(item_parts) + ".")
    return " ".join(parts)


def build_stock_transfer_payload(transfer: Transferencia) -> StockTransferPayload:
    """Payload for the transfer; raise TransferValidationError if it is invalid."""
    problems = validate_transferencia(transfer)
    if problems:
        raise TransferValidationError(problems)

    items = [
        StockTransferItemPayload(
            source=StockTransferItemSidePayload(
                resource_id=item.id,
                detail_id=item.detalhe_id,
                trademark_id=item.marca_id,
                quantity=item.quantidade,
                unit_of_measure=item.unidade.strip(),
                building_appropriations=_appropriations(
                    item.apropriacao_origem_building_unit_id,
                    item.apropriacao_origem_sheet_item_id,
                ),
            ),
            destination=StockTransferItemSidePayload(
                resource_id=item.id,
                detail_id=item.detalhe_id,
                trademark_id=item.marca_id,
                unit_price=item.preco_unitario,
                building_appropriations=_appropriations(
                    item.apropriacao_destino_building_unit_id,
                    item.apropriacao_destino_sheet_item_id,
                ),
            ),
        )
        for item in transfer.insumos
    ]
    first = transfer.insumos[0]
    return StockTransferPayload(
        source_cost_center_id=transfer.obra_origem_id,
        destination_cost_center_id=transfer.obra_destino_id,
        source_department_id=first.apropriacao_origem_building_unit_id,
        destination_department_id=first.apropriacao_destino_building_unit_id,
        document_id=transfer.codigo_tipo_documento.strip(),
        movement_type_id=transfer.codigo_tipo_movimento,
        movement_date=transfer.data_hora.strftime("%Y-%m-%d"),
        notes=build_transfer_note(transfer),
        items=items,
    )


def transfer_dry_run_enabled() -> bool:
    """Whether the dry-run switch in the environment forbids posting transfers."""
    value = os.environ.get(TRANSFER_DRY_RUN_ENV, "").strip().lower()
    return value in ("1", "true", "sim", "yes")


def _should_block(error: APIError) -> bool:
    return error.kind in _BLOCKING_KINDS or error.status_code in _BLOCKING_STATUSES


def _block_reason(error: APIError) -> str:
    if error.kind is APIErrorKind.HTML:
        return "resposta HTML inesperada do Sienge"
    if error.kind is APIErrorKind.REDIRECT:
        return "redirecionamento inesperado do Sienge"
    if error.kind is APIErrorKind.TIMEOUT:
        return "timeout ao comunicar com o Sienge"
    if error.status_code > 0:
        return f"HTTP {error.status_code} retornado pelo Sienge"
    return "resposta anormal do Sienge"


def create_stock_transfer(client: Client, transfer: Transferencia) -> str:
    """Post the transfer and return the movement ID reported by Sienge (may be empty)."""
    payload = build_stock_transfer_payload(transfer)
    if transfer_dry_run_enabled():
        raise TransferBlockedError(
            "Envio de transferencia temporariamente bloqueado por seguranca. "
            "TRANSFER_DRY_RUN=true; nenhum POST foi enviado ao Sienge."
        )
    stock_transfer_circuit_breaker.check(client.base_url)
    with stock_transfer_post_gate.begin(client.base_url):
        body = json.dumps(
            payload.to_dict(), separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
        try:
            response = client.request("POST", STOCK_TRANSFERS_ENDPOINT, body)
        except APIError as exc:
            if _should_block(exc):
                stock_transfer_circuit_breaker.block(client.base_url, _block_reason(exc), "")
            raise
    return extract_movement_id(response.headers, response.body)


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return json.dumps(value, ensure_ascii=False)


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value or ""
    return ""


def extract_movement_id(
    headers: Optional[Mapping[str, str]], body: Union[bytes, str, None]
) -> str:
    """Movement ID from the response body, else the last segment of the Location header."""
    if body:
        text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            for key in _MOVEMENT_ID_KEYS:
                value = data.get(key)
                if value is not None:
                    found = _format_value(value).strip()
                    if found:
                        return found

    location = _header(headers, "Location").strip()
    if location:
        return location.rstrip("/").split("/")[-1]
    return ""


def new_transferencia_base() -> Transferencia:
    """Blank transfer with the default document and movement types, dated now."""
    return Transferencia(
        codigo_tipo_documento="TR",
        codigo_tipo_movimento=3,
        data_hora=datetime.now(),
    )