"""Stock balance arithmetic for transfers and appropriation checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from sienge_transfer.models import Apropriacao

_RECONCILIATION_TOLERANCE = 0.0001


@dataclass(frozen=True)
class ReconciliationResult:
    ok: bool
    stock_quantity: float
    appropriations_quantity: float
    difference: float


def reconcile_stock_and_appropriations(
    stock_qty: float, appropriations: Iterable[Apropriacao]
) -> ReconciliationResult:
    """Compare a stock quantity with the sum of its appropriations."""
    total = sum((a.quantidade for a in appropriations), 0.0)
    difference = total - stock_qty
    return ReconciliationResult(
        ok=abs(difference) <= _RECONCILIATION_TOLERANCE,
        stock_quantity=stock_qty,
        appropriations_quantity=total,
        difference=difference,
    )


@dataclass(frozen=True)
class TransferBalanceInput:
    origin_total_stock: float = 0.0
    destination_total_stock: float = 0.0
    origin_appropriation_stock: Optional[float] = None
    destination_appropriation_stock: Optional[float] = None
    quantity_to_transfer: float = 0.0


@dataclass(frozen=True)
class TransferBalanceOutput:
    origin_current_stock: float
    destination_current_stock: float
    origin_after_transfer: float
    destination_after_transfer: float
    uses_origin_appropriation: bool
    uses_destination_appropriation: bool


def calculate_transfer_balances(data: TransferBalanceInput) -> TransferBalanceOutput:
    """Balances before and after a transfer, preferring appropriation stock when given."""
    if data.quantity_to_transfer <= 0:
        raise ValueError("quantidade deve ser maior que zero")
    uses_origin = data.origin_appropriation_stock is not None
    origin_current = data.origin_appropriation_stock if uses_origin else data.origin_total_stock
    uses_destination = data.destination_appropriation_stock is not None
    destination_current = (
        data.destination_appropriation_stock if uses_destination else data.destination_total_stock
    )
    origin_after = origin_current - data.quantity_to_transfer
    if origin_after < 0:
        raise ValueError("saldo de origem ficaria negativo")
    return TransferBalanceOutput(
        origin_current_stock=origin_current,
        destination_current_stock=destination_current,
        origin_after_transfer=origin_after,
        destination_after_transfer=destination_current + data.quantity_to_transfer,
        uses_origin_appropriation=uses_origin,
        uses_destination_appropriation=uses_destination,
    )


@dataclass(frozen=True)
class TransferStockSnapshotInput:
    estoque_origem_antes: float = 0.0
    estoque_destino_antes: float = 0.0
    apropriacao_origem_antes: Optional[float] = None
    apropriacao_destino_antes: Optional[float] = None
    quantidade: float = 0.0


@dataclass(frozen=True)
class TransferStockSnapshot:
    estoque_origem_antes: float
    estoque_origem_depois: float
    estoque_destino_antes: float
    estoque_destino_depois: float
    apropriacao_origem_antes: Optional[float]
    apropriacao_origem_depois: Optional[float]
    apropriacao_destino_antes: Optional[float]
    apropriacao_destino_depois: Optional[float]
    quantidade_enviada: float
    quantidade_recebida: float


def calculate_transfer_stock_snapshot(data: TransferStockSnapshotInput) -> TransferStockSnapshot:
    """Record stock and appropriation balances around a transfer."""
    qty = data.quantidade
    if qty <= 0:
        raise ValueError("quantidade deve ser maior que zero")
    if qty > data.estoque_origem_antes:
        raise ValueError("quantidade maior que o estoque de origem")
    if data.apropriacao_origem_antes is not None and qty > data.apropriacao_origem_antes:
        raise ValueError("quantidade maior que o saldo da apropriacao de origem")

    origin_after = None if data.apropriacao_origem_antes is None else data.apropriacao_origem_antes - qty
    destination_after = (
        None if data.apropriacao_destino_antes is None else data.apropriacao_destino_antes + qty
    )
    return TransferStockSnapshot(
        estoque_origem_antes=data.estoque_origem_antes,
        estoque_origem_depois=data.estoque_origem_antes - qty,
        estoque_destino_antes=data.estoque_destino_antes,
        estoque_destino_depois=data.estoque_destino_antes + qty,
        apropriacao_origem_antes=data.apropriacao_origem_antes,
        apropriacao_origem_depois=origin_after,
        apropriacao_destino_antes=data.apropriacao_destino_antes,
        apropriacao_destino_depois=destination_after,
        quantidade_enviada=qty,
        quantidade_recebida=qty,
    )