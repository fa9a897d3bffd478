"""HTTP client for the Sienge public API, with response sanitizing and transfer safety guards."""

from __future__ import annotations

import json
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import requests

from sienge_transfer.fields import (
    ResponseFormatError,
    decode_object,
    decode_object_list,
    get_int,
    get_string,
)
from sienge_transfer.models import Obra

BASE_PATH = "/public/api/v1"
DEFAULT_TIMEOUT = 30.0
TRANSFER_BLOCK_DURATION = timedelta(minutes=10)
TRANSFER_POST_INTERVAL = 30.0

_MAX_ERROR_BODY = 4096
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
_VALID_SUBDOMAIN = re.compile(r"[a-zA-Z0-9-]+")
_SCHEME = re.compile(r"[a-zA-Z][a-zA-Z0-9+.-]*:")
_FORBIDDEN_SUBDOMAIN_PARTS = ("internal-api", "callback", "sienge/api")
_SENSITIVE_WORDS = ("password", "senha", "token", "authorization")
_REMOVED = "[removido]"
_DEFAULT_BLOCK_REASON = "resposta anormal do Sienge"

_TIMEOUT_MESSAGE = (
    "Tempo limite excedido ao comunicar com o Sienge. "
    "Nao reenvie a transferencia sem consultar o Sienge antes."
)
_REDIRECT_MESSAGE = (
    "O Sienge redirecionou a chamada da API para outro endereco. Isso indica URL base incorreta, "
    "credencial invalida ou endpoint indisponivel para esta empresa."
)
_HTML_MESSAGE = (
    "O Sienge retornou resposta em formato HTML em uma chamada de API. Isso normalmente indica "
    "redirecionamento, bloqueio temporario, URL incorreta ou endpoint indisponivel."
)

Body = Union[bytes, bytearray, str]


class APIErrorKind(str, Enum):
    """Abnormal response categories that are not plain HTTP errors."""

    HTML = "html"
    REDIRECT = "redirect"
    TIMEOUT = "timeout"


class APIError(Exception):
    """Error reported by, or while talking to, the Sienge API."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        body: str = "",
        kind: Optional[APIErrorKind] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.body = body
        self.kind = kind
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.message}: {self.body}" if self.body else self.message


class InvalidCostCenterError(ValueError):
    """Raised when a work/cost center ID is not a positive number."""

    def __init__(self) -> None:
        super().__init__("ID da obra/centro de custo deve ser numerico positivo")


class CostCenterNotFoundError(LookupError):
    """Raised when the cost center does not exist in Sienge."""

    def __init__(self) -> None:
        super().__init__("centro de custo nao encontrado no Sienge")


@dataclass(frozen=True)
class CircuitBreakerState:
    tenant: str
    blocked_until: datetime
    reason: str
    last_request_id: str = ""


class CircuitBreakerBlockedError(RuntimeError):
    """Raised while transfers to a tenant are temporarily blocked."""

    def __init__(self, state: CircuitBreakerState) -> None:
        self.state = state
        super().__init__(
            "Envio de transferencias bloqueado temporariamente por seguranca. "
            f"Motivo: {state.reason}. Aguarde ate {state.blocked_until.strftime('%H:%M:%S')} "
            "ou revise a configuracao da API antes de tentar novamente."
        )


class CircuitBreaker:
    """Per-tenant block that stays open for a fixed duration after an abnormal response."""

    def __init__(
        self,
        duration: timedelta = TRANSFER_BLOCK_DURATION,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._duration = duration
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, CircuitBreakerState] = {}

    def check(self, tenant: str) -> None:
        """Raise CircuitBreakerBlockedError if the tenant is still blocked."""
        with self._lock:
            state = self._states.get(tenant)
            if state is None:
                return
            if not self._clock() < state.blocked_until:
                del self._states[tenant]
                return
            raise CircuitBreakerBlockedError(state)

    def block(self, tenant: str, reason: str = "", request_id: str = "") -> CircuitBreakerState:
        """Block the tenant for the configured duration."""
        with self._lock:
            state = CircuitBreakerState(
                tenant=tenant,
                blocked_until=self._clock() + self._duration,
                reason=reason.strip() or _DEFAULT_BLOCK_REASON,
                last_request_id=request_id,
            )
            self._states[tenant] = state
            return state

    def reset(self) -> None:
        with self._lock:
            self._states.clear()


def _format_duration(seconds: float) -> str:
    total = int(seconds + 0.5) if seconds >= 0 else -int(-seconds + 0.5)
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


class _GateRelease:
    """Marks a tenant's transfer post as finished; usable as a context manager."""

    def __init__(self, gate: "TransferPostGate", tenant: str) -> None:
        self._gate = gate
        self._tenant = tenant

    def release(self) -> None:
        self._gate._finish(self._tenant)

    def __enter__(self) -> "_GateRelease":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


class TransferPostGate:
    """Allows one transfer post per tenant at a time, spaced by a minimum interval."""

    def __init__(
        self,
        interval: float = TRANSFER_POST_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._last_started: dict[str, float] = {}

    def begin(self, tenant: str) -> _GateRelease:
        """Reserve the tenant; raise RuntimeError if a post is running or was too recent."""
        with self._lock:
            if tenant in self._in_flight:
                raise RuntimeError(
                    "Transferencia ja esta em envio para esta empresa. Aguarde a conclusao."
                )
            now = self._clock()
            last = self._last_started.get(tenant)
            if last is not None and now - last < self._interval:
                remaining = _format_duration(self._interval - (now - last))
                raise RuntimeError(
                    f"Aguarde {remaining} antes de enviar outra transferencia para esta empresa."
                )
            self._in_flight.add(tenant)
            self._last_started[tenant] = now
        return _GateRelease(self, tenant)

    def _finish(self, tenant: str) -> None:
        with self._lock:
            self._in_flight.discard(tenant)

    def reset(self) -> None:
        with self._lock:
            self._in_flight.clear()
            self._last_started.clear()


stock_transfer_circuit_breaker = CircuitBreaker(TRANSFER_BLOCK_DURATION)
stock_transfer_post_gate = TransferPostGate()


def reset_transfer_safety_state() -> None:
    """Clear every transfer block and post reservation."""
    stock_transfer_circuit_breaker.reset()
    stock_transfer_post_gate.reset()


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    headers: Mapping[str, str]
    body: bytes


def _as_text(body: Body) -> str:
    if isinstance(body, (bytes, bytearray)):
        return bytes(body).decode("utf-8", errors="replace")
    return body


def _reject_constant(name: str) -> Any:
    raise ValueError(f"valor JSON invalido: {name}")


def _loads(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


def _dumps(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        encoded = encoded.replace(raw, escaped)
    return encoded


def _format_value(value: Any) -> str:
    """Plain text of a decoded JSON value."""
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
    return _dumps(value)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(word in lowered for word in _SENSITIVE_WORDS)


def sanitize_json_value(value: Any) -> Any:
    """Copy of a decoded JSON value with sensitive keys' values removed."""
    if isinstance(value, Mapping):
        return {
            key: _REMOVED if _is_sensitive_key(key) else sanitize_json_value(val)
            for key, val in value.items()
        }
    if isinstance(value, list):
        return [sanitize_json_value(val) for val in value]
    return value


def redact_sensitive_words(text: str) -> str:
    """Replace sensitive words (lower or upper case) with a removal marker."""
    for word in _SENSITIVE_WORDS:
        text = text.replace(word, _REMOVED).replace(word.upper(), _REMOVED)
    return text


def sanitize_body(body: Body) -> str:
    """Response body safe to show: JSON with secrets removed, or redacted text."""
    text = _as_text(body).strip()
    if not text:
        return ""
    try:
        data = _loads(text)
    except ValueError:
        return redact_sensitive_words(text)
    return _dumps(sanitize_json_value(data))


def _sanitize_redirect_location(location: str) -> str:
    location = location.strip()
    if not location:
        return ""
    try:
        parts = urlsplit(location)
    except ValueError:
        return redact_sensitive_words(location)
    return redact_sensitive_words(urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")))


def _is_html_response(headers: Mapping[str, str], body: bytes) -> bool:
    if "text/html" in (headers.get("Content-Type") or "").lower():
        return True
    trimmed = _as_text(body.strip()).lower()
    return trimmed.startswith("<html") or trimmed.startswith("<!doctype html")


def _message_for_status(status_code: int) -> str:
    if status_code in _REDIRECT_STATUSES:
        return (
            "O Sienge redirecionou a chamada da API para outro endereco. "
            "Verifique a URL base e as credenciais."
        )
    if status_code in (401, 403):
        return "Credenciais invalidas ou sem permissao. Refaca o onboarding das credenciais da API."
    if status_code == 429:
        return "Limite de chamadas do Sienge atingido. Aguarde antes de tentar novamente."
    if status_code == 404:
        return (
            "Recurso nao encontrado no Sienge. "
            "Verifique se a obra, insumo ou endpoint esta correto."
        )
    if status_code == 422:
        return "Dados invalidos enviados ao Sienge. Revise os campos informados."
    if status_code >= 500:
        return "Erro no servidor do Sienge. Tente novamente em alguns instantes."
    return f"Erro ao comunicar com o Sienge. Codigo HTTP: {status_code}"


def _extract_client_message(body: bytes) -> str:
    try:
        data = _loads(_as_text(body))
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    for key in ("clientMessage", "userMessage"):
        value = data.get(key)
        if value is not None:
            text = _format_value(value).strip()
            if text:
                return text
    return ""


def _message_with_client_detail(status_code: int, detail: str) -> str:
    detail = detail.strip().rstrip(".")
    if status_code == 422:
        message = "O Sienge recusou a solicitacao: " + detail
        if "bloquead" in detail.lower():
            message += ". Selecione outra apropriacao ou desbloqueie o item no Sienge."
        return message
    return f"{_message_for_status(status_code)}: {detail}"


def _new_api_error(status_code: int, body: bytes) -> APIError:
    client_message = _extract_client_message(body)
    if client_message:
        return APIError(_message_with_client_detail(status_code, client_message), status_code)
    return APIError(_message_for_status(status_code), status_code, sanitize_body(body))


def _is_request_uri(url: str) -> bool:
    if url.startswith("/"):
        return True
    match = _SCHEME.match(url)
    return bool(match) and url[match.end():].startswith("/")


def sienge_api_base_url(subdomain: str) -> str:
    """Public API base URL for a company subdomain, rejecting anything but a bare identifier."""
    subdomain = subdomain.strip()
    if not subdomain:
        raise ValueError("subdominio da empresa obrigatorio")
    lowered = subdomain.lower()
    if "://" in lowered or any(ch in subdomain for ch in "/?#"):
        raise ValueError(
            "subdominio deve conter apenas o identificador da empresa, sem URL ou caminho"
        )
    if any(part in lowered for part in _FORBIDDEN_SUBDOMAIN_PARTS):
        raise ValueError("subdominio contem caminho de API/web nao permitido")
    if not _VALID_SUBDOMAIN.fullmatch(subdomain):
        raise ValueError("subdominio contem caracteres invalidos")
    return f"https://api.sienge.com.br/{subdomain}{BASE_PATH}"


def new_client(subdomain: str, username: str, password: str) -> "Client":
    """Client for a company's public API."""
    return Client(sienge_api_base_url(subdomain).rstrip("/"), username, password)


def parse_cost_centers(body: Body, fallback_id: int) -> list[Obra]:
    """Cost centers from a list response or a single object."""
    try:
        objects = decode_object_list(body)
    except ResponseFormatError as list_error:
        try:
            objects = [decode_object(body)]
        except ResponseFormatError:
            raise list_error from None

    centers = []
    for obj in objects:
        center_id = get_int(obj, "id", "costCenterId", "costCenterCode", "code")
        if center_id is None or center_id <= 0:
            center_id = fallback_id
        if center_id <= 0:
            raise ResponseFormatError("resposta de centro de custo sem ID valido")
        name = get_string(
            obj,
            "name",
            "description",
            "costCenterName",
            "costCenterDescription",
            "descr",
            "title",
        )
        if not name:
            raise ResponseFormatError("resposta de centro de custo sem nome valido")
        centers.append(Obra(id=center_id, nome=name))
    return centers


class Client:
    """Authenticated client bound to one API base URL; never follows redirects."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
    ) -> None:
        base_url = base_url.strip().rstrip("/")
        if not base_url:
            raise ValueError("URL base da API obrigatoria")
        if not _is_request_uri(base_url):
            raise ValueError(f"URL base da API invalida: {base_url!r}")
        if not username.strip():
            raise ValueError("usuario da API obrigatorio")
        if not password.strip():
            raise ValueError("senha da API obrigatoria")
        self._base_url = base_url
        self._username = username
        self._password = password
        self._session = session if session is not None else requests.Session()
        self.timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _endpoint(self, path: str) -> str:
        path = path.strip()
        if not path:
            raise ValueError("endpoint da API obrigatorio")
        if path.startswith(("http://", "https://")):
            raise ValueError("endpoint deve ser relativo a URL base da API")
        if not path.startswith("/"):
            path = "/" + path
        return self._base_url + path

    def request(self, method: str, path: str, body: Optional[bytes] = None) -> ApiResponse:
        """Send a request and return the successful response, or raise APIError."""
        url = self._endpoint(path)
        headers = {"Accept": "application/json"}
        if body is not None:
            headers["Content-Type"] = "application/json"
        try:
            resp = self._session.request(
                method,
                url,
                data=body,
                headers=headers,
                auth=(self._username, self._password),
                timeout=self.timeout,
                allow_redirects=False,
            )
            content = resp.content
        except requests.exceptions.Timeout as exc:
            raise APIError(_TIMEOUT_MESSAGE, kind=APIErrorKind.TIMEOUT) from exc
        except requests.exceptions.RequestException as exc:
            raise ConnectionError(f"falha de comunicacao com o Sienge: {exc}") from exc

        if resp.status_code in _REDIRECT_STATUSES:
            raise APIError(
                _REDIRECT_MESSAGE,
                resp.status_code,
                _sanitize_redirect_location(resp.headers.get("Location") or ""),
                APIErrorKind.REDIRECT,
            )
        if _is_html_response(resp.headers, content):
            raise APIError(_HTML_MESSAGE, resp.status_code, kind=APIErrorKind.HTML)
        if not 200 <= resp.status_code <= 299:
            raise _new_api_error(resp.status_code, content[:_MAX_ERROR_BODY])
        return ApiResponse(resp.status_code, resp.headers.copy(), content)

    def post_json(self, path: str, payload: Any) -> bytes:
        """POST a JSON payload and return the response body."""
        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return self.request("POST", path, data).body

    def get_cost_centers(self, cost_center_id: int) -> list[Obra]:
        """Cost centers for an ID; raise CostCenterNotFoundError when absent."""
        if cost_center_id <= 0:
            raise InvalidCostCenterError()
        try:
            body = self.request("GET", f"/cost-centers/{cost_center_id}").body
        except APIError as exc:
            if exc.status_code == 404 and "formato HTML" not in exc.message:
                raise CostCenterNotFoundError() from exc
            raise
        centers = parse_cost_centers(body, cost_center_id)
        if not centers:
            raise CostCenterNotFoundError()
        return centers

    def validate_credentials(self) -> None:
        """Check that the credentials are accepted; a missing cost center still counts as valid."""
        try:
            self.get_cost_centers(1)
        except CostCenterNotFoundError:
            return