"""HTTP request execution for HTTP columns.

Pipeline for one row:

1. Resolve column tokens in the URL, every header value and the body, after
   FORMULA columns have been evaluated on the row.
2. Inject authentication (API key header *or* query parameter, bearer, basic).
3. Send the request.  GET / DELETE never carry a body; other methods default
   ``Content-Type`` to ``application/json`` when a body is sent.
4. Parse the response as JSON when the server says so, else keep the text.
5. Non-2xx responses raise ``HttpExecutionError`` (status + body).
6. Map JSON paths from ``response_mapping`` onto columns found by **header**
   and return the staged ``{column_id: text}`` updates.

Cancellation: cancelling the awaiting task aborts the in-flight request
(httpx propagates ``CancelledError``); nothing is staged in that case.
"""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import Field

from gridwright.sheet_runtime.engine.cells import evaluate_row
from gridwright.sheet_runtime.engine.errors import ConfigurationError
from gridwright.sheet_runtime.engine.references import resolve, resolve_mapping
from gridwright.sheet_runtime.models.enums import HttpAuthType
from gridwright.sheet_runtime.models.sheet import (
    CamelModel,
    ColumnDefinition,
    HttpAuthConfig,
    HttpRequestConfig,
    RowData,
)

DEFAULT_TIMEOUT = 30.0
_INDEX_SEGMENT = re.compile(r"\[(\d+)\]")
_URI_COMPONENT_SAFE = "-_.!~*'()"


class HttpExecutionError(RuntimeError):
    """The remote server answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()
"""Returned by :func:`get_value_by_path` when the path does not exist."""


@dataclass
class PreparedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None


class HttpExecutionResult(CamelModel):
    raw: Any = None
    updates: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Building the request
# ---------------------------------------------------------------------------


def apply_auth(auth: HttpAuthConfig, url: str, headers: dict[str, str]) -> tuple[str, dict[str, str]]:
    """Return ``(url, headers)`` with credentials injected.

    API keys go into the named header when one is configured, otherwise into
    the query string; never both.
    """
    headers = dict(headers)
    match auth.type:
        case HttpAuthType.API_KEY:
            if auth.api_key_header and auth.api_key_value:
                headers[auth.api_key_header] = auth.api_key_value
            elif auth.api_key_query_param and auth.api_key_value:
                param = quote(auth.api_key_query_param, safe=_URI_COMPONENT_SAFE)
                value = quote(auth.api_key_value, safe=_URI_COMPONENT_SAFE)
                separator = "&" if "?" in url else "?"
                url = f"{url}{separator}{param}={value}"
        case HttpAuthType.BEARER:
            if auth.bearer_token:
                headers["Authorization"] = f"Bearer {auth.bearer_token}"
        case HttpAuthType.BASIC:
            if auth.basic_user and auth.basic_password:
                encoded = base64.b64encode(f"{auth.basic_user}:{auth.basic_password}".encode()).decode()
                headers["Authorization"] = f"Basic {encoded}"
        case _:
            pass
    return url, headers


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(key.lower() == name.lower() for key in headers)


def prepare_request(
    config: HttpRequestConfig,
    row: RowData,
    columns: list[ColumnDefinition],
) -> PreparedRequest:
    """Resolve templates and auth into a concrete request (no I/O)."""
    if not config.url.strip():
        msg = f"HTTP request '{config.name}' has no URL"
        raise ConfigurationError(msg)

    row = evaluate_row(row, columns)
    url = resolve(config.url, row, columns)
    headers = resolve_mapping(config.headers, row, columns)
    body = resolve(config.body, row, columns) if config.body else None

    url, headers = apply_auth(config.auth, url, headers)

    if not config.method.allows_body:
        body = None
    elif body and not _has_header(headers, "Content-Type"):
        headers["Content-Type"] = "application/json"

    return PreparedRequest(method=config.method.value, url=url, headers=headers, body=body)


# ---------------------------------------------------------------------------
# Response mapping
# ---------------------------------------------------------------------------


def get_value_by_path(data: Any, path: str) -> Any:
    """Walk ``a.b[0].c`` through nested dicts / lists.

    Returns ``MISSING`` if any segment is absent.  A JSON ``null`` at the end
    of the path is returned as ``None``.
    """
    if not path:
        return MISSING
    parts = [p for p in _INDEX_SEGMENT.sub(r".\1", path).split(".") if p]
    current = data
    for part in parts:
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def map_response(
    raw: Any,
    response_mapping: dict[str, str],
    columns: list[ColumnDefinition],
) -> dict[str, str]:
    """Stage ``{column_id: text}`` for every mapping whose path and header exist.

    Strings are stored as-is; any other JSON value is JSON encoded.
    """
    updates: dict[str, str] = {}
    for path, header in response_mapping.items():
        target = next((c for c in columns if c.header == header), None)
        if target is None:
            logger.debug("Response mapping '{}' -> '{}': no column with that header", path, header)
            continue
        value = get_value_by_path(raw, path)
        if value is MISSING:
            continue
        updates[target.id] = value if isinstance(value, str) else json.dumps(value)
    return updates


def _parse_body(response: httpx.Response) -> Any:
    if "application/json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            logger.debug("Response declared JSON but did not parse; keeping text")
    return response.text


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def execute_http_request(
    config: HttpRequestConfig,
    row: RowData,
    columns: list[ColumnDefinition],
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> HttpExecutionResult:
    """Run *config* for *row* and return the parsed response plus staged updates.

    Raises
    ------
    ConfigurationError:
        The config has no URL.
    HttpExecutionError:
        The server answered with a non-2xx status.
    httpx.HTTPError:
        Network-level failure (connect, timeout, ...).
    """
    prepared = prepare_request(config, row, columns)

    async def _send(http: httpx.AsyncClient) -> httpx.Response:
        return await http.request(
            prepared.method,
            prepared.url,
            headers=prepared.headers,
            content=prepared.body,
            timeout=timeout,
        )

    if client is None:
        async with httpx.AsyncClient() as own_client:
            response = await _send(own_client)
    else:
        response = await _send(client)

    raw = _parse_body(response)
    logger.info("HTTP request '{}' ({}) -> {}", config.name, prepared.method, response.status_code)

    if not response.is_success:
        body = raw if isinstance(raw, str) else json.dumps(raw)
        raise HttpExecutionError(response.status_code, body)

    return HttpExecutionResult(raw=raw, updates=map_response(raw, config.response_mapping, columns))
