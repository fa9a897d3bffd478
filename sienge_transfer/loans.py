"""Loan tracking for transfers that are expected to come back."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

from sienge_transfer.models import ItemTransferido, LoanStatus, Transferencia, TransferKind

_QUANTITY_EPSILON = 0.0001
_LOAN_ID_PREFIX = "EM"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INTEGER = re.compile(r"[+-]?[0-9]+")
_MAX_INT64 = 2**63 - 1
_MIN_INT64 = -(2**63)


class LoanNotFoundError(LookupError):
    """Raised when a referenced loan does not exist."""

    def __init__(self) -> None:
        super().__init__("emprestimo nao encontrado")


@dataclass
class LoanItem:
    resource_id: int = 0
    resource_name: str = ""
    detail_id: Optional[int] = None
    detail_name: str = ""
    brand_id: Optional[int] = None
    brand_name: str = ""
    unit: str = ""
    unit_price: float = 0.0
    loaned_quantity: float = 0.0
    returned_quantity: float = 0.0
    origin_appropriation_code: str = ""
    origin_appropriation_description: str = ""
    origin_building_unit_id: Optional[int] = None
    origin_sheet_item_id: Optional[int] = None
    destination_appropriation_code: str = ""
    destination_appropriation_description: str = ""
    destination_building_unit_id: Optional[int] = None
    destination_sheet_item_id: Optional[int] = None

    def pending_quantity(self) -> float:
        """Quantity still to be returned, treating tiny remainders as zero."""
        pending = self.loaned_quantity - self.returned_quantity
        return 0.0 if pending < _QUANTITY_EPSILON else pending


@dataclass
class LoanRecord:
    id: str = ""
    original_transfer_id: str = ""
    original_movement_id: str = ""
    return_transfer_ids: list[str] = field(default_factory=list)
    return_movement_ids: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    loan_date: Optional[datetime] = None
    last_return_date: Optional[datetime] = None
    origin_work_id: int = 0
    origin_work_name: str = ""
    destination_work_id: int = 0
    destination_work_name: str = ""
    solicitor: str = ""
    user: str = ""
    role: str = ""
    observation: str = ""
    type: Optional[TransferKind] = None
    status: LoanStatus = LoanStatus.PENDING
    items: list[LoanItem] = field(default_factory=list)
    total_loaned_quantity: float = 0.0
    total_returned_quantity: float = 0.0
    item_count: int = 0

    def recalculate(self) -> None:
        """Refresh totals, item count and status from the items."""
        self.total_loaned_quantity = sum((i.loaned_quantity for i in self.items), 0.0)
        self.total_returned_quantity = sum((i.returned_quantity for i in self.items), 0.0)
        self.item_count = len(self.items)
        any_returned = any(i.returned_quantity > _QUANTITY_EPSILON for i in self.items)
        any_pending = any(i.pending_quantity() > _QUANTITY_EPSILON for i in self.items)
        if not any_pending and self.items:
            self.status = LoanStatus.RETURNED
        elif any_returned:
            self.status = LoanStatus.PARTIALLY_RETURNED
        else:
            self.status = LoanStatus.PENDING

    def pending_items(self) -> list[LoanItem]:
        """Items that still have something to be returned."""
        return [i for i in self.items if i.pending_quantity() > _QUANTITY_EPSILON]


def effective_transfer_kind(kind: Union[TransferKind, str, None]) -> TransferKind:
    """Known kinds pass through; anything else means "not applicable"."""
    try:
        return TransferKind(kind)
    except ValueError:
        return TransferKind.NOT_APPLICABLE


def transfer_kind_label(kind: Union[TransferKind, str, None]) -> str:
    effective = effective_transfer_kind(kind)
    if effective is TransferKind.LOAN:
        return "Emprestimo"
    if effective is TransferKind.RETURN:
        return "Devolucao"
    return "Nao se aplica"


def transfer_kind_from_label(label: str) -> TransferKind:
    normalized = label.strip().lower()
    if normalized == "emprestimo":
        return TransferKind.LOAN
    if normalized == "devolucao":
        return TransferKind.RETURN
    return TransferKind.NOT_APPLICABLE


def loan_status_label(status: Union[LoanStatus, str, None]) -> str:
    if status == LoanStatus.PARTIALLY_RETURNED:
        return "Parcialmente devolvido"
    if status == LoanStatus.RETURNED:
        return "Devolvido"
    return "Pendente"


def can_return_loan(status: Union[LoanStatus, str, None]) -> bool:
    return status in (LoanStatus.PENDING, LoanStatus.PARTIALLY_RETURNED)


def mark_loan_returned_manually(loan: LoanRecord, returned_at: datetime) -> LoanRecord:
    """Return a copy of the loan with every pending item fully returned."""
    updated = copy.deepcopy(loan)
    for item in updated.items:
        if item.pending_quantity() > _QUANTITY_EPSILON:
            item.returned_quantity = item.loaned_quantity
    updated.last_return_date = returned_at
    updated.recalculate()
    return updated


def _unix_nano(value: Optional[datetime]) -> int:
    if value is None:
        return 0
    if value.tzinfo is None:
        value = value.astimezone()
    delta = value - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000


def build_loan_id(transfer: Transferencia, sequence: int) -> str:
    """Loan identifier built from the transfer time and a sequence number."""
    if sequence <= 0:
        sequence = 1
    return f"{_LOAN_ID_PREFIX}-{_unix_nano(transfer.data_hora)}-{sequence}"


def _loan_id_sequence(loan_id: str) -> Optional[int]:
    parts = loan_id.strip().split("-")
    if len(parts) != 3 or parts[0] != _LOAN_ID_PREFIX:
        return None
    stamp, seq = parts[1], parts[2]
    if not _INTEGER.fullmatch(stamp) or not _MIN_INT64 <= int(stamp) <= _MAX_INT64:
        return None
    if not _INTEGER.fullmatch(seq):
        return None
    sequence = int(seq)
    if sequence <= 0 or sequence > _MAX_INT64:
        return None
    return sequence


def next_loan_sequence(loans: Iterable[LoanRecord]) -> int:
    """One more than the highest sequence among well-formed loan IDs."""
    sequences = (_loan_id_sequence(loan.id) for loan in loans)
    return max((s for s in sequences if s is not None), default=0) + 1


def _positive_or_none(value: int) -> Optional[int]:
    return value if value > 0 else None


def _first_non_empty(*values: str) -> str:
    return next((v.strip() for v in values if v.strip()), "")


def _quantity_or_fallback(value: float, fallback: float) -> float:
    return fallback if value == 0 else value


def loan_item_from_transfer_item(item: ItemTransferido) -> LoanItem:
    return LoanItem(
        resource_id=item.id,
        resource_name=item.nome,
        detail_id=_positive_or_none(item.detalhe_id),
        detail_name=item.detalhe,
        brand_id=_positive_or_none(item.marca_id),
        brand_name=item.marca,
        unit=item.unidade,
        unit_price=item.preco_unitario,
        loaned_quantity=_quantity_or_fallback(item.quantidade_enviada, item.quantidade),
        origin_appropriation_code=_first_non_empty(item.apropriacao_origem_codigo, item.apropriacao),
        origin_appropriation_description=_first_non_empty(
            item.apropriacao_origem_descricao, item.apropriacao_descricao
        ),
        origin_building_unit_id=_positive_or_none(item.apropriacao_origem_building_unit_id),
        origin_sheet_item_id=_positive_or_none(item.apropriacao_origem_sheet_item_id),
        destination_appropriation_code=_first_non_empty(
            item.apropriacao_destino_codigo, item.apropriacao_destino
        ),
        destination_appropriation_description=_first_non_empty(
            item.apropriacao_destino_descricao_snapshot, item.apropriacao_destino_descricao
        ),
        destination_building_unit_id=_positive_or_none(item.apropriacao_destino_building_unit_id),
        destination_sheet_item_id=_positive_or_none(item.apropriacao_destino_sheet_item_id),
    )


def create_loan_record_from_transfer(transfer: Transferencia, sequence: int) -> LoanRecord:
    """New pending loan mirroring the given transfer."""
    record = LoanRecord(
        id=build_loan_id(transfer, sequence),
        original_movement_id=transfer.id_movimento,
        created_at=datetime.now(),
        loan_date=transfer.data_hora,
        origin_work_id=transfer.obra_origem_id,
        origin_work_name=transfer.obra_origem_nome,
        destination_work_id=transfer.obra_destino_id,
        destination_work_name=transfer.obra_destino_nome,
        solicitor=transfer.solicitante,
        user=transfer.usuario,
        role=transfer.cargo,
        observation=transfer.observacao,
        type=TransferKind.LOAN,
        status=LoanStatus.PENDING,
        items=[loan_item_from_transfer_item(item) for item in transfer.insumos],
    )
    record.recalculate()
    return record


def _matches(loan_item: LoanItem, transfer_item: ItemTransferido) -> bool:
    return (
        loan_item.resource_id == transfer_item.id
        and (loan_item.detail_id or 0) == transfer_item.detalhe_id
        and (loan_item.brand_id or 0) == transfer_item.marca_id
    )


def _append_if_missing(values: list[str], value: str) -> None:
    value = value.strip()
    if value and value not in values:
        values.append(value)


def apply_return_to_loan(loan: LoanRecord, transfer: Transferencia) -> LoanRecord:
    """Return a copy of the loan with the transfer's items counted as returned."""
    updated = copy.deepcopy(loan)
    for returned in transfer.insumos:
        target = next((i for i in updated.items if _matches(i, returned)), None)
        if target is None:
            raise ValueError(f"insumo {returned.id} nao pertence ao emprestimo vinculado")
        quantity = _quantity_or_fallback(returned.quantidade_recebida, returned.quantidade)
        if quantity <= _QUANTITY_EPSILON:
            raise ValueError(
                f"a quantidade de devolucao do item {returned.id} deve ser maior que zero"
            )
        pending = target.pending_quantity()
        if quantity - pending > _QUANTITY_EPSILON:
            raise ValueError(
                f"a quantidade de devolucao do item {returned.id} e maior que a quantidade "
                f"pendente do emprestimo. Quantidade pendente: {pending:.4f}. "
                f"Quantidade informada: {quantity:.4f}"
            )
        target.returned_quantity += quantity
    updated.last_return_date = transfer.data_hora
    _append_if_missing(updated.return_transfer_ids, transfer.linked_loan_id)
    _append_if_missing(updated.return_movement_ids, transfer.id_movimento)
    updated.recalculate()
    return updated


def validate_return_against_loan(loan: LoanRecord, transfer: Transferencia) -> None:
    """Raise ValueError if a linked return does not fit the loan."""
    if effective_transfer_kind(transfer.transfer_kind) is not TransferKind.RETURN:
        return
    if not transfer.linked_loan_id.strip():
        return
    apply_return_to_loan(loan, transfer)