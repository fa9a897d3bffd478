"""Domain records for stock transfers, plus small parsing and formatting helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, TypeVar

_ZERO_TIME = "0001-01-01T00:00:00Z"
_MAX_INT64 = 2**63 - 1

_T = TypeVar("_T")


class TransferKind(str, Enum):
    """Business meaning of a transfer."""

    LOAN = "loan"
    RETURN = "return"
    NOT_APPLICABLE = "not_applicable"


class LoanStatus(str, Enum):
    """Return progress of a loan."""

    PENDING = "pending"
    PARTIALLY_RETURNED = "partially_returned"
    RETURNED = "returned"


class ConsultaTipo(str, Enum):
    """Kind of stock lookup."""

    POR_INSUMO = "por_insumo"
    POR_SOLICITACAO_COMPRA = "por_solicitacao_compra"


class InsumoIDsRequiredError(ValueError):
    """Raised when no supply ID was given."""

    def __init__(self) -> None:
        super().__init__("informe pelo menos um ID de insumo")


def _to_json(obj: Any, omit_empty: frozenset = frozenset()) -> dict:
    """Serialize a flat dataclass, leaving out unset optional values."""
    out: dict = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None or (f.name in omit_empty and not value):
            continue
        if isinstance(value, Enum):
            value = value.value
        out[f.name] = value
    return out


def _from_json(cls: type[_T], data: Any, skip: frozenset = frozenset()) -> dict:
    if not isinstance(data, Mapping):
        raise ValueError(f"{cls.__name__}: esperado objeto JSON")
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return {k: v for k, v in data.items() if k in names and k not in skip and v is not None}


def _enum_or_none(enum_cls: type, value: Any) -> Any:
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def _parse_time(text: Any) -> Optional[datetime]:
    if not text:
        return None
    if not isinstance(text, str):
        raise ValueError("data_hora deve ser texto")
    if text.startswith("0001-01-01T00:00:00"):
        return None
    normalized = text[:-1] + "+00:00" if text.endswith("Z") else text
    normalized = re.sub(r"\.([0-9]+)", _fraction, normalized, count=1)
    return datetime.fromisoformat(normalized)


def _format_time(value: Optional[datetime]) -> str:
    return _ZERO_TIME if value is None else value.isoformat()


@dataclass
class Usuario:
    nome: str = ""
    cargo: str = ""


@dataclass
class Empresa:
    nome: str = ""
    subdominio: str = ""
    api_usuario: str = ""
    api_senha: str = ""
    senha_cifrada: bool = False


_EMPRESA_OMIT = frozenset({"senha_cifrada"})


@dataclass
class Obra:
    id: int = 0
    nome: str = ""

    def label(self) -> str:
        """Display text such as "121 - Residencial"."""
        return f"{self.id} - {self.nome}"


@dataclass
class Apropriacao:
    codigo: str = ""
    descricao: str = ""
    referencia: str = ""
    building_unit_id: int = 0
    sheet_item_id: int = 0
    quantidade: float = 0.0
    bloqueado: bool = False


@dataclass
class Insumo:
    id: int = 0
    nome: str = ""
    detalhe: str = ""
    detalhe_id: int = 0
    marca: str = ""
    marca_id: int = 0
    unidade: str = ""
    quantidade: float = 0.0
    preco_medio: float = 0.0
    apropriacoes: list[Apropriacao] = field(default_factory=list)
    original_json: str = ""


@dataclass
class ItemTransferido:
    id: int = 0
    nome: str = ""
    detalhe: str = ""
    detalhe_id: int = 0
    marca: str = ""
    marca_id: int = 0
    unidade: str = ""
    preco_unitario: float = 0.0
    apropriacao: str = ""
    apropriacao_descricao: str = ""
    apropriacao_origem_building_unit_id: int = 0
    apropriacao_origem_sheet_item_id: int = 0
    apropriacao_destino: str = ""
    apropriacao_destino_descricao: str = ""
    apropriacao_destino_building_unit_id: int = 0
    apropriacao_destino_sheet_item_id: int = 0
    apropriacao_origem_obrigatoria: bool = False
    apropriacao_destino_obrigatoria: bool = False
    quantidade: float = 0.0
    quantidade_disponivel: float = 0.0
    quantidade_estoque_origem_antes: float = 0.0
    quantidade_estoque_origem_depois: float = 0.0
    quantidade_estoque_destino_antes: float = 0.0
    quantidade_estoque_destino_depois: float = 0.0
    quantidade_apropriacao_origem_antes: Optional[float] = None
    quantidade_apropriacao_origem_depois: Optional[float] = None
    quantidade_apropriacao_destino_antes: Optional[float] = None
    quantidade_apropriacao_destino_depois: Optional[float] = None
    quantidade_enviada: float = 0.0
    quantidade_recebida: float = 0.0
    apropriacao_origem_codigo: str = ""
    apropriacao_origem_descricao: str = ""
    apropriacao_origem_label: str = ""
    apropriacao_destino_codigo: str = ""
    apropriacao_destino_descricao_snapshot: str = ""
    apropriacao_destino_label: str = ""


_ITEM_ALWAYS = frozenset({"id", "nome", "detalhe", "marca", "apropriacao", "quantidade"})


@dataclass
class Transferencia:
    id_movimento: str = ""
    data_hora: Optional[datetime] = None
    usuario: str = ""
    cargo: str = ""
    solicitante: str = ""
    observacao: str = ""
    obra_origem_id: int = 0
    obra_origem_nome: str = ""
    obra_destino_id: int = 0
    obra_destino_nome: str = ""
    codigo_tipo_documento: str = ""
    codigo_tipo_movimento: int = 0
    transfer_kind: Optional[TransferKind] = None
    linked_loan_id: str = ""
    loan_status: Optional[LoanStatus] = None
    insumos: list[ItemTransferido] = field(default_factory=list)

    def to_dict(self) -> dict:
        """JSON-ready representation using the stored history field names."""
        data = _to_json(self, frozenset({"observacao", "linked_loan_id"}))
        data["data_hora"] = _format_time(self.data_hora)
        item_omit = frozenset(f.name for f in fields(ItemTransferido)) - _ITEM_ALWAYS
        data["insumos"] = [_to_json(item, item_omit) for item in self.insumos]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Transferencia":
        """Build a transfer from its JSON representation."""
        special = frozenset({"data_hora", "transfer_kind", "loan_status", "insumos"})
        values = _from_json(cls, data, special)
        items = [ItemTransferido(**_from_json(ItemTransferido, raw)) for raw in data.get("insumos") or []]
        return cls(
            **values,
            data_hora=_parse_time(data.get("data_hora")),
            transfer_kind=_enum_or_none(TransferKind, data.get("transfer_kind")),
            loan_status=_enum_or_none(LoanStatus, data.get("loan_status")),
            insumos=items,
        )


@dataclass
class PurchaseRequestItem:
    purchase_request_id: int = 0
    building_id: int = 0
    resource_id: int = 0
    resource_name: str = ""
    detail: str = ""
    detail_id: int = 0
    brand: str = ""
    brand_id: int = 0
    unit: str = ""
    quantity: float = 0.0
    original_json: str = ""


@dataclass
class ConsultaResultado:
    obra_id: int = 0
    obra_nome: str = ""
    insumo_id: int = 0
    insumo_nome: str = ""
    detalhe: str = ""
    detalhe_id: int = 0
    marca: str = ""
    marca_id: int = 0
    unidade: str = ""
    quantidade: float = 0.0
    apropriacoes: list[Apropriacao] = field(default_factory=list)


@dataclass
class Config:
    usuario: Usuario = field(default_factory=Usuario)
    empresa: Empresa = field(default_factory=Empresa)
    obras: list[Obra] = field(default_factory=list)

    def to_dict(self) -> dict:
        """JSON-ready representation of the local configuration."""
        return {
            "usuario": _to_json(self.usuario),
            "empresa": _to_json(self.empresa, _EMPRESA_OMIT),
            "obras": [_to_json(obra) for obra in self.obras],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        """Build a configuration from its JSON representation."""
        if not isinstance(data, Mapping):
            raise ValueError("Config: esperado objeto JSON")
        return cls(
            usuario=Usuario(**_from_json(Usuario, data.get("usuario") or {})),
            empresa=Empresa(**_from_json(Empresa, data.get("empresa") or {})),
            obras=[Obra(**_from_json(Obra, raw)) for raw in data.get("obras") or []],
        )


_ID_SEPARATORS = re.compile(r"[, \t\n\r]+")
_INTEGER = re.compile(r"[+-]?[0-9]+")


def parse_insumo_ids(text: str) -> list[int]:
    """Parse supply IDs separated by commas or whitespace, keeping first occurrences."""
    seen: dict[int, None] = {}
    for part in _ID_SEPARATORS.split(text):
        if not part:
            continue
        value = int(part) if _INTEGER.fullmatch(part) else 0
        if value <= 0 or value > _MAX_INT64:
            raise ValueError("IDs de insumo devem conter apenas numeros positivos")
        seen.setdefault(value, None)
    if not seen:
        raise InsumoIDsRequiredError()
    return list(seen)


def format_quantidade(value: float, unidade: str = "") -> str:
    """Format a quantity with four decimals and an optional unit."""
    formatted = f"{value:.4f}"
    unit = unidade.strip()
    return f"{formatted} {unit}" if unit else formatted