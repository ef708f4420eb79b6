"""Named remote-function calls.

The backend exposes its queries and mutations as stored procedures
reachable at ``POST {base}/rest/v1/rpc/{name}`` with the parameters as a
JSON object body.  Everything above this module only sees
``await rpc.call(name, params)``: a decoded result or an ``RpcError``.

  InMemoryRpcClient   handler registry for tests and local dev; records
                      every call so tests can count round-trips.
  HttpRpcClient       httpx-based client for a real backend.

Timeouts are the transport's business (httpx defaults apply); nothing
here retries.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

RpcHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]


class RpcError(Exception):
    def __init__(
        self, function: str, message: str, *, status_code: int | None = None
    ) -> None:
        super().__init__(f"{function}: {message}")
        self.function = function
        self.message = message
        self.status_code = status_code


@runtime_checkable
class RpcClient(Protocol):
    async def call(
        self, function: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        """Invoke a remote function and return its decoded result."""
        ...

    async def aclose(self) -> None: ...


class InMemoryRpcClient:
    """Dispatches calls to registered Python callables.

    A handler receives the params dict and may be sync or async.  An
    exception raised by a handler surfaces as ``RpcError``; calling an
    unregistered function does too.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, RpcHandler] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def register(self, function: str, handler: RpcHandler) -> None:
        self._handlers[function] = handler

    def call_count(self, function: str) -> int:
        return sum(1 for name, _ in self.calls if name == function)

    async def call(
        self, function: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        args = dict(params or {})
        self.calls.append((function, args))

        handler = self._handlers.get(function)
        if handler is None:
            raise RpcError(function, "function not found", status_code=404)

        try:
            result = handler(args)
            if inspect.isawaitable(result):
                result = await result
        except RpcError:
            raise
        except Exception as e:
            raise RpcError(function, str(e)) from e
        return result

    async def aclose(self) -> None:
        return None


class HttpRpcClient:
    _RPC_PATH = "/rest/v1/rpc/"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, transport=transport
        )

    async def call(
        self, function: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        try:
            resp = await self._client.post(
                f"{self._RPC_PATH}{function}", json=dict(params or {})
            )
        except httpx.HTTPError as e:
            logger.warning("RPC %s transport error: %s", function, e)
            raise RpcError(function, str(e) or type(e).__name__) from e

        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.warning(
                "RPC %s failed status=%d: %s", function, resp.status_code, message
            )
            raise RpcError(function, message, status_code=resp.status_code)

        if not resp.content:
            return None
        return resp.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
