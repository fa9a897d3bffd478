from datetime import datetime, timezone

import pytest

from sienge_transfer.loans import (
    LoanItem,
    LoanRecord,
    apply_return_to_loan,
    build_loan_id,
    can_return_loan,
    create_loan_record_from_transfer,
    effective_transfer_kind,
    loan_item_from_transfer_item,
    loan_status_label,
    mark_loan_returned_manually,
    next_loan_sequence,
    transfer_kind_from_label,
    transfer_kind_label,
    validate_return_against_loan,
)
from sienge_transfer.models import ItemTransferido, LoanStatus, Transferencia, TransferKind


def make_loan() -> LoanRecord:
    loan = LoanRecord(
        id="loan-1",
        original_movement_id="MOV-1",
        loan_date=datetime(2024, 7, 15, 10, 0),
        origin_work_id=121,
        origin_work_name="Origem",
        destination_work_id=205,
        destination_work_name="Destino",
        solicitor="Maria",
        user="Joao",
        type=TransferKind.LOAN,
        items=[
            LoanItem(resource_id=3421, resource_name="Cimento", detail_id=10, brand_id=5,
                     unit="SC", loaned_quantity=10, returned_quantity=5),
            LoanItem(resource_id=9876, resource_name="Areia", unit="M3", loaned_quantity=20),
        ],
    )
    loan.recalculate()
    return loan


def make_transfer(when=None) -> Transferencia:
    return Transferencia(
        id_movimento="MOV-1",
        data_hora=when or datetime(2024, 7, 15, 10, 0),
        usuario="Joao",
        cargo="Engenheiro",
        solicitante="Maria",
        obra_origem_id=121,
        obra_origem_nome="Origem",
        obra_destino_id=205,
        obra_destino_nome="Destino",
        transfer_kind=TransferKind.LOAN,
        codigo_tipo_documento="TR",
        codigo_tipo_movimento=3,
        insumos=[ItemTransferido(id=3421, nome="Cimento", detalhe_id=10, marca_id=5,
                                 unidade="SC", quantidade=10, preco_unitario=1)],
    )


def make_return(quantity: float) -> Transferencia:
    return Transferencia(
        id_movimento="RET-1",
        data_hora=datetime(2024, 7, 16, 10, 0),
        transfer_kind=TransferKind.RETURN,
        linked_loan_id="loan-1",
        insumos=[ItemTransferido(id=3421, detalhe_id=10, marca_id=5, quantidade=quantity)],
    )


def test_pending_quantity():
    assert LoanItem(loaned_quantity=10, returned_quantity=4).pending_quantity() == 6


def test_pending_quantity_ignores_tiny_remainder():
    assert LoanItem(loaned_quantity=10, returned_quantity=9.99995).pending_quantity() == 0


def test_calculates_totals():
    loan = make_loan()
    assert (loan.total_loaned_quantity, loan.total_returned_quantity, loan.item_count) == (30, 5, 2)


def test_status_pending_when_no_return():
    loan = make_loan()
    loan.items[0].returned_quantity = 0
    loan.recalculate()
    assert loan.status is LoanStatus.PENDING


def test_status_partially_returned():
    assert make_loan().status is LoanStatus.PARTIALLY_RETURNED


def test_status_returned():
    loan = make_loan()
    loan.items[0].returned_quantity = 10
    loan.items[1].returned_quantity = 20
    loan.recalculate()
    assert loan.status is LoanStatus.RETURNED


def test_pending_items():
    loan = make_loan()
    loan.items[0].returned_quantity = 10
    assert [i.resource_id for i in loan.pending_items()] == [9876]


def test_mark_returned_manually_marks_all_pending_items():
    returned_at = datetime(2024, 7, 20, 10, 0)
    updated = mark_loan_returned_manually(make_loan(), returned_at)
    assert updated.status is LoanStatus.RETURNED
    assert updated.total_returned_quantity == updated.total_loaned_quantity
    assert all(i.returned_quantity == i.loaned_quantity for i in updated.items)
    assert updated.last_return_date == returned_at


def test_mark_returned_manually_does_not_mutate_input():
    loan = make_loan()
    mark_loan_returned_manually(loan, datetime.now())
    assert loan.items[1].returned_quantity == 0
    assert loan.status is LoanStatus.PARTIALLY_RETURNED


def test_create_loan_record_creates_pending_loan():
    loan = create_loan_record_from_transfer(make_transfer(), 1)
    assert loan.status is LoanStatus.PENDING
    assert loan.type is TransferKind.LOAN
    assert loan.original_movement_id == "MOV-1"


def test_create_loan_record_copies_work_and_solicitor():
    loan = create_loan_record_from_transfer(make_transfer(), 1)
    assert (loan.origin_work_id, loan.destination_work_id) == (121, 205)
    assert (loan.solicitor, loan.user) == ("Maria", "Joao")
    assert loan.items[0].loaned_quantity == 10
    assert loan.total_loaned_quantity == 10


def test_build_loan_id_uses_timestamp_and_sequence():
    transfer = make_transfer(datetime(2024, 7, 15, 10, 0, tzinfo=timezone.utc))
    assert build_loan_id(transfer, 2) == "EM-1721037600000000000-2"


def test_build_loan_id_defaults_invalid_sequence_to_one():
    transfer = make_transfer(datetime(2024, 7, 15, 10, 0, tzinfo=timezone.utc))
    assert build_loan_id(transfer, 0) == "EM-1721037600000000000-1"


def test_next_loan_sequence_uses_em_suffix():
    loans = [
        LoanRecord(id="EM-100-1"),
        LoanRecord(id="loan-100-sem-movimento"),
        LoanRecord(id="EM-200-3"),
        LoanRecord(id="EM-invalid-9"),
    ]
    assert next_loan_sequence(loans) == 4


def test_next_loan_sequence_empty():
    assert next_loan_sequence([]) == 1


def test_apply_return_updates_returned_quantity():
    loan = make_loan()
    loan.items[0].returned_quantity = 0
    updated = apply_return_to_loan(loan, make_return(4))
    assert updated.items[0].returned_quantity == 4
    assert updated.return_transfer_ids == ["loan-1"]
    assert updated.return_movement_ids == ["RET-1"]
    assert updated.last_return_date == datetime(2024, 7, 16, 10, 0)


def test_apply_return_does_not_mutate_input():
    loan = make_loan()
    loan.items[0].returned_quantity = 0
    apply_return_to_loan(loan, make_return(4))
    assert loan.items[0].returned_quantity == 0


def test_apply_return_updates_status_to_returned():
    loan = make_loan()
    loan.items = loan.items[:1]
    loan.items[0].returned_quantity = 0
    assert apply_return_to_loan(loan, make_return(10)).status is LoanStatus.RETURNED


def test_apply_return_rejects_quantity_above_pending():
    loan = make_loan()
    loan.items[0].returned_quantity = 0
    with pytest.raises(ValueError, match="maior que a quantidade pendente"):
        apply_return_to_loan(loan, make_return(11))


def test_apply_return_rejects_zero_quantity():
    loan = make_loan()
    loan.items[0].returned_quantity = 0
    with pytest.raises(ValueError, match="maior que zero"):
        apply_return_to_loan(loan, make_return(0))


def test_apply_return_rejects_unknown_item():
    transfer = make_return(1)
    transfer.insumos[0].id = 1
    with pytest.raises(ValueError, match="nao pertence"):
        apply_return_to_loan(make_loan(), transfer)


def test_validate_return_ignores_manual_return():
    transfer = make_return(999)
    transfer.linked_loan_id = ""
    assert validate_return_against_loan(make_loan(), transfer) is None


def test_validate_return_rejects_excess_on_linked_return():
    with pytest.raises(ValueError):
        validate_return_against_loan(make_loan(), make_return(999))


def test_loan_item_from_transfer_item_uses_fallbacks():
    item = ItemTransferido(id=1, quantidade=3, apropriacao=" A1 ", apropriacao_destino="D1",
                           apropriacao_destino_descricao_snapshot="Snap", apropriacao_destino_descricao="X")
    loan_item = loan_item_from_transfer_item(item)
    assert loan_item.loaned_quantity == 3
    assert loan_item.origin_appropriation_code == "A1"
    assert loan_item.destination_appropriation_code == "D1"
    assert loan_item.destination_appropriation_description == "Snap"
    assert loan_item.detail_id is None


@pytest.mark.parametrize(
    "kind, label",
    [(TransferKind.LOAN, "Emprestimo"), ("return", "Devolucao"), ("x", "Nao se aplica"), (None, "Nao se aplica")],
)
def test_transfer_kind_label(kind, label):
    assert transfer_kind_label(kind) == label


def test_effective_transfer_kind_defaults():
    assert effective_transfer_kind("bogus") is TransferKind.NOT_APPLICABLE


@pytest.mark.parametrize(
    "label, kind",
    [(" Emprestimo ", TransferKind.LOAN), ("DEVOLUCAO", TransferKind.RETURN), ("outro", TransferKind.NOT_APPLICABLE)],
)
def test_transfer_kind_from_label(label, kind):
    assert transfer_kind_from_label(label) is kind


def test_loan_status_labels_and_returnability():
    assert loan_status_label(LoanStatus.PARTIALLY_RETURNED) == "Parcialmente devolvido"
    assert loan_status_label(LoanStatus.RETURNED) == "Devolvido"
    assert loan_status_label(LoanStatus.PENDING) == "Pendente"
    assert can_return_loan(LoanStatus.PENDING)
    assert can_return_loan(LoanStatus.PARTIALLY_RETURNED)
    assert not can_return_loan(LoanStatus.RETURNED)