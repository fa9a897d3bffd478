"""Rules for stock lookups across registered works."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from sienge_transfer.models import (
    Apropriacao,
    ConsultaResultado,
    Insumo,
    Obra,
    PurchaseRequestItem,
)


class ObrasRequiredError(ValueError):
    """Raised when a lookup has no work to query."""

    def __init__(self) -> None:
        super().__init__("selecione pelo menos uma obra para consultar")


def resolve_obras_para_consulta(
    todas: Sequence[Obra], selecionadas: Sequence[Obra], consultar_todas: bool
) -> list[Obra]:
    """Works to query: all registered ones, or the registered records of the selection."""
    registered = {obra.id: obra for obra in todas}
    if consultar_todas:
        if not todas:
            raise ObrasRequiredError()
        return list(todas)
    if not selecionadas:
        raise ObrasRequiredError()

    resolved: dict[int, Obra] = {}
    for selected in selecionadas:
        if selected.id not in registered:
            raise ValueError("obra selecionada nao esta cadastrada")
        resolved.setdefault(selected.id, registered[selected.id])
    return list(resolved.values())


def _resultado(obra: Obra, item: Insumo) -> ConsultaResultado:
    return ConsultaResultado(
        obra_id=obra.id,
        obra_nome=obra.nome,
        insumo_id=item.id,
        insumo_nome=item.nome,
        detalhe=item.detalhe,
        detalhe_id=item.detalhe_id,
        marca=item.marca,
        marca_id=item.marca_id,
        unidade=item.unidade,
        quantidade=item.quantidade,
        apropriacoes=list(item.apropriacoes),
    )


def build_consulta_por_insumo_results(
    obras: Iterable[Obra], estoques: Mapping[int, Sequence[Insumo]]
) -> list[ConsultaResultado]:
    """One row per stock item of each work, in work order."""
    return [_resultado(obra, item) for obra in obras for item in estoques.get(obra.id, ())]


def _matches_any_request(stock: Insumo, requests: Sequence[PurchaseRequestItem]) -> bool:
    return any(
        stock.id == req.resource_id
        and (req.detail_id <= 0 or req.detail_id == stock.detalhe_id)
        and req.brand_id == stock.marca_id
        for req in requests
    )


def build_consulta_por_solicitacao_results(
    obras: Iterable[Obra],
    request_items: Sequence[PurchaseRequestItem],
    stock_by_work: Mapping[int, Sequence[Insumo]],
) -> list[ConsultaResultado]:
    """Stock rows with positive quantity that match an item of the purchase request."""
    return [
        _resultado(obra, stock)
        for obra in obras
        for stock in stock_by_work.get(obra.id, ())
        if stock.quantidade > 0 and _matches_any_request(stock, request_items)
    ]


def appropriation_description(appropriation: Apropriacao) -> str:
    """Description of an appropriation, falling back to its reference."""
    return appropriation.descricao.strip() or appropriation.referencia.strip()


def appropriation_label(appropriation: Apropriacao) -> str:
    """"code - description", or whichever of the two is present."""
    code = appropriation.codigo.strip()
    description = appropriation_description(appropriation)
    if not code:
        return description
    if not description:
        return code
    return f"{code} - {description}"