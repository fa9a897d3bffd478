import pytest

from sienge_transfer.balances import (
    TransferBalanceInput,
    TransferStockSnapshotInput,
    calculate_transfer_balances,
    calculate_transfer_stock_snapshot,
    reconcile_stock_and_appropriations,
)
from sienge_transfer.models import Apropriacao


def test_reconcile_ok_when_sum_matches():
    result = reconcile_stock_and_appropriations(946, [Apropriacao(quantidade=900), Apropriacao(quantidade=46)])
    assert result.ok
    assert result.appropriations_quantity == 946
    assert result.difference == 0


def test_reconcile_mismatch_when_sum_differs():
    result = reconcile_stock_and_appropriations(
        946, [Apropriacao(quantidade=5), Apropriacao(quantidade=2), Apropriacao(quantidade=2)]
    )
    assert not result.ok
    assert result.appropriations_quantity == 9
    assert result.difference == 9 - 946


def test_reconcile_within_tolerance():
    result = reconcile_stock_and_appropriations(10, [Apropriacao(quantidade=10.00005)])
    assert result.ok


def test_balances_use_appropriation_stock_when_selected():
    b = calculate_transfer_balances(
        TransferBalanceInput(50, 12, origin_appropriation_stock=20, destination_appropriation_stock=7, quantity_to_transfer=5)
    )
    assert (b.origin_current_stock, b.origin_after_transfer) == (20, 15)
    assert (b.destination_current_stock, b.destination_after_transfer) == (7, 12)


def test_balances_use_origin_appropriation_when_selected():
    b = calculate_transfer_balances(TransferBalanceInput(50, 12, origin_appropriation_stock=20, quantity_to_transfer=5))
    assert b.uses_origin_appropriation
    assert not b.uses_destination_appropriation
    assert (b.origin_current_stock, b.origin_after_transfer) == (20, 15)


def test_balances_use_destination_appropriation_when_selected():
    b = calculate_transfer_balances(
        TransferBalanceInput(50, 12, destination_appropriation_stock=7, quantity_to_transfer=5)
    )
    assert b.uses_destination_appropriation
    assert (b.destination_current_stock, b.destination_after_transfer) == (7, 12)


def test_balances_use_total_stock_without_appropriation():
    b = calculate_transfer_balances(TransferBalanceInput(50, 12, quantity_to_transfer=5))
    assert (b.origin_current_stock, b.origin_after_transfer, b.destination_after_transfer) == (50, 45, 17)


def test_balances_reject_negative_origin_after_transfer():
    with pytest.raises(ValueError, match="negativo"):
        calculate_transfer_balances(TransferBalanceInput(50, origin_appropriation_stock=3, quantity_to_transfer=5))


def test_balances_reject_non_positive_quantity():
    with pytest.raises(ValueError, match="maior que zero"):
        calculate_transfer_balances(TransferBalanceInput(50, 12, quantity_to_transfer=0))


def test_balances_update_after_quantity_change():
    first = calculate_transfer_balances(TransferBalanceInput(10, 1, quantity_to_transfer=2))
    second = calculate_transfer_balances(TransferBalanceInput(10, 1, quantity_to_transfer=3))
    assert first.origin_after_transfer == 8
    assert second.origin_after_transfer == 7


def test_snapshot_calculates_balances():
    s = calculate_transfer_stock_snapshot(
        TransferStockSnapshotInput(50, 12, apropriacao_origem_antes=20, apropriacao_destino_antes=7, quantidade=5)
    )
    assert (s.estoque_origem_depois, s.estoque_destino_depois) == (45, 17)
    assert (s.quantidade_enviada, s.quantidade_recebida) == (5, 5)
    assert (s.apropriacao_origem_depois, s.apropriacao_destino_depois) == (15, 12)


def test_snapshot_handles_no_appropriations():
    s = calculate_transfer_stock_snapshot(TransferStockSnapshotInput(10, 1, quantidade=2))
    assert s.apropriacao_origem_antes is None
    assert s.apropriacao_destino_depois is None
    assert s.estoque_origem_depois == 8


def test_snapshot_rejects_quantity_above_origin_stock():
    with pytest.raises(ValueError, match="estoque de origem"):
        calculate_transfer_stock_snapshot(TransferStockSnapshotInput(3, quantidade=5))


def test_snapshot_rejects_quantity_above_appropriation():
    with pytest.raises(ValueError, match="apropriacao de origem"):
        calculate_transfer_stock_snapshot(TransferStockSnapshotInput(10, apropriacao_origem_antes=3, quantidade=5))


def test_snapshot_rejects_zero_quantity():
    with pytest.raises(ValueError, match="maior que zero"):
        calculate_transfer_stock_snapshot(TransferStockSnapshotInput(10, 1, quantidade=0))