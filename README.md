# sienge-transfer

A library for checking stock and moving materials between construction works
(cost centers) through the Sienge public API. It also models loans between
works and tracks how much of each loan has been returned.

## Installation

```
pip install sienge-transfer
```

For running the test suite:

```
pip install "sienge-transfer[test]"
pytest
```

## Modules

- `sienge_transfer.models` – dataclasses for the domain (`Obra`, `Insumo`,
  `Apropriacao`, `Transferencia`, `ItemTransferido`, `Config`, ...), the
  enums `TransferKind`, `LoanStatus` and `ConsultaTipo`, and the helpers
  `parse_insumo_ids` and `format_quantidade`. `Transferencia` and `Config`
  convert to and from JSON-ready dictionaries with `to_dict` / `from_dict`.
- `sienge_transfer.client` – the HTTP client, API errors and the transfer
  safety guards (`CircuitBreaker`, `TransferPostGate`).
- `sienge_transfer.fields` – tolerant decoding of API JSON responses.
- `sienge_transfer.stock` – stock items and building appropriations.
- `sienge_transfer.purchases` – purchase request items.
- `sienge_transfer.consulta` – rules for lookups across works.
- `sienge_transfer.transfers` – transfer validation, payload and submission.
- `sienge_transfer.loans` – loan records and returns.
- `sienge_transfer.balances` – balance arithmetic around a transfer.
- `sienge_transfer.config` – location and validation of the local configuration.

## Connecting to the API

The client is built from the company subdomain only (`sienge_api_base_url`
rejects URLs, paths and invalid characters). It never follows redirects, and
it rejects HTML answers from API endpoints.

```python
from sienge_transfer.client import new_client

password = "password"
client = new_client("minhaempresa", "usuario", password)
print(client.base_url)  # https://api.sienge.com.br/minhaempresa/public/api/v1

client.validate_credentials()
```

`Client(base_url, username, password, session=None, timeout=30.0)` can also be
built directly, with your own `requests.Session`.

Errors from the API are raised as `APIError`, with `status_code`, `message`,
`body` and `kind` (`APIErrorKind.HTML`, `REDIRECT` or `TIMEOUT` for abnormal
answers). Error bodies are cleaned first, so values under keys such as
password, token or authorization never reach a message. `get_cost_centers`
raises `CostCenterNotFoundError` when the cost center does not exist and
`InvalidCostCenterError` for an ID that is not positive.

## Consulting stock

```python
from sienge_transfer.models import parse_insumo_ids
from sienge_transfer.stock import get_stock_items_by_ids, get_stock_appropriations_with_descriptions

ids = parse_insumo_ids("3421, 9876")
items = get_stock_items_by_ids(client, 121, ids)
appropriations = get_stock_appropriations_with_descriptions(client, 121, 3421)
```

Appropriation descriptions are filled in from the cost estimation sheets,
each sheet being fetched once per call. Setting
`SIENGE_TRANSFER_DEBUG_APPROPRIATIONS=1` prints the query and the sum of the
appropriation quantities.

`sienge_transfer.purchases.get_purchase_request_items` reads every page of a
purchase request and drops duplicate items, and
`sienge_transfer.consulta.build_consulta_por_solicitacao_results` lists the
works that hold positive stock for those items.
`sienge_transfer.balances.reconcile_stock_and_appropriations` checks that a
stock quantity matches the sum of its appropriations.

## Sending a transfer

```python
from sienge_transfer.transfers import new_transferencia_base, validate_transferencia, create_stock_transfer

transfer = new_transferencia_base()  # document type "TR", movement type 3, current time
# fill in works, requester and items ...
problems = validate_transferencia(transfer)
if not problems:
    movement_id = create_stock_transfer(client, transfer)
```

`create_stock_transfer` raises `TransferValidationError` (holding every
problem in `errors`) for an invalid transfer, and returns the movement ID
found in the response body or, failing that, the last segment of the
`Location` header (an empty string if neither is present).

For safety, only one transfer per API base URL can be in flight and a new one
must wait 30 seconds after the previous one (`RuntimeError`). After an
abnormal answer (HTML, redirect, timeout, 401/403/429/500/502/503) sending is
blocked for ten minutes (`CircuitBreakerBlockedError`). Setting the
environment variable `TRANSFER_DRY_RUN` to `1`, `true`, `sim` or `yes` makes
`create_stock_transfer` raise `TransferBlockedError` without posting.
`reset_transfer_safety_state()` in `sienge_transfer.client` clears both guards.

## Loans

`sienge_transfer.loans` turns a transfer into a `LoanRecord`
(`create_loan_record_from_transfer`), applies returns to a copy of it
(`apply_return_to_loan`, which raises `ValueError` for unknown items or
quantities above what is pending) and can close it by hand
(`mark_loan_returned_manually`). `next_loan_sequence` gives the next sequence
number for IDs of the form `EM-<timestamp>-<sequence>`.

## Local configuration

`sienge_transfer.config.default_dir()` gives the per-user configuration
directory (`sienge-transfer` under the platform's user configuration
directory), and `Store` knows the path of `config.json` in it, can create the
directory and tells whether the file exists. `validate_plain_config` and
`validate_encrypted_config` raise `ConfigError` for an incomplete
configuration.

## What this package does not do

- It does not read or write `config.json`, and it does not encrypt or decrypt
  the API password; `Store` only locates the file. Use `Config.to_dict` /
  `Config.from_dict` with your own storage.
- It does not store loan records or transfer history anywhere; keeping them
  is left to the caller.
- It has no command-line program or graphical interface; it is a library.