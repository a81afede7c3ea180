"""
nftbridge — JSON-RPC transport

JSON-RPC 2.0 server exposing a ``LedgerNode`` over HTTP, and the
matching client used by ``RPCLedgerClient``.

Namespaces:
  nft_*    — contract deployment, transactions, receipts, read calls
  admin_*  — node administration, and message relay audit when the
             server is given the router

Ledger errors travel as JSON-RPC errors whose ``data.kind`` carries the
``BridgeError.code``; the client raises the same exception class again,
so a ``NotOwnerError`` raised by the contract on a remote node surfaces
as a ``NotOwnerError`` in the orchestrator.

Usage::

    server = RPCServer(node, host="127.0.0.1", port=8545)
    await server.start()
    ...
    client = RPCClient("http://127.0.0.1:8545")
    chain_id = await client.request("nft_chainId")
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import traceback
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Union

import aiohttp
from aiohttp import web

from .errors import (
    BridgeError,
    ContractNotFoundError,
    PreconditionError,
    RPCConnectionError,
    TokenNotFoundError,
    UnauthorizedError,
    error_from_code,
)

logger = logging.getLogger("nftbridge.rpc")

# ---------------------------------------------------------------------------
# JSON-RPC 2.0 error codes
# ---------------------------------------------------------------------------

class RPCErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 error codes + ledger-specific extensions."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # -32000 to -32099 reserved for server errors
    CHAIN_ERROR = -32000
    TX_REJECTED = -32001
    NOT_FOUND = -32006
    UNAUTHORIZED = -32007


class RPCError(Exception):
    """An error that maps directly to a JSON-RPC error response."""

    def __init__(self, code: RPCErrorCode, message: str, data: Any = None):
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            d["data"] = self.data
        return d

    @classmethod
    def from_bridge_error(cls, err: BridgeError) -> "RPCError":
        if isinstance(err, (TokenNotFoundError, ContractNotFoundError)):
            code = RPCErrorCode.NOT_FOUND
        elif isinstance(err, UnauthorizedError):
            code = RPCErrorCode.UNAUTHORIZED
        elif isinstance(err, PreconditionError):
            code = RPCErrorCode.TX_REJECTED
        else:
            code = RPCErrorCode.CHAIN_ERROR
        return cls(code, err.message or str(err), {"kind": err.code})


# ---------------------------------------------------------------------------
# RPC Method registry
# ---------------------------------------------------------------------------

RPCHandler = Callable[..., Any]


@dataclass
class RPCMethodInfo:
    """Metadata about a registered RPC method."""
    name: str
    handler: RPCHandler
    is_async: bool = False
    description: str = ""


class RPCMethodRegistry:
    """Registry that maps JSON-RPC method names to Python handlers."""

    def __init__(self):
        self._methods: Dict[str, RPCMethodInfo] = {}

    def register(self, name: str, handler: RPCHandler, description: str = ""):
        is_async = asyncio.iscoroutinefunction(handler)
        self._methods[name] = RPCMethodInfo(
            name=name, handler=handler, is_async=is_async,
            description=description,
        )

    def get(self, name: str) -> Optional[RPCMethodInfo]:
        return self._methods.get(name)

    def list_methods(self) -> List[str]:
        return sorted(self._methods.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._methods

    def __len__(self) -> int:
        return len(self._methods)


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def _parse_int(value: Any) -> int:
    """Parse a 0x-prefixed hex string, decimal string or plain int."""
    if isinstance(value, bool):
        raise RPCError(RPCErrorCode.INVALID_PARAMS, "expected integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            if value.startswith("0x") or value.startswith("0X"):
                return int(value, 16)
            return int(value)
        except ValueError:
            pass
    raise RPCError(RPCErrorCode.INVALID_PARAMS, f"expected integer, got {value!r}")


def _require_param(params: Any, key: Union[str, int], name: str = "") -> Any:
    """Extract a required parameter from dict or list."""
    label = name or str(key)
    try:
        if isinstance(params, dict):
            if key not in params:
                raise KeyError(key)
            return params[key]
        if isinstance(params, (list, tuple)):
            return params[key]
    except (KeyError, IndexError, TypeError):
        pass
    raise RPCError(RPCErrorCode.INVALID_PARAMS, f"missing required parameter: {label}")


def _optional_param(params: Any, key: Union[str, int], default: Any = None) -> Any:
    """Extract an optional parameter."""
    if isinstance(params, dict):
        return params.get(key, default)
    if isinstance(params, (list, tuple)) and isinstance(key, int) and key < len(params):
        return params[key]
    return default


def _safe_serialize(obj: Any) -> Any:
    """Make an object JSON-safe (handle non-serializable types)."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): _safe_serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_safe_serialize(v) for v in obj]
    if isinstance(obj, bytes):
        return "0x" + obj.hex()
    if hasattr(obj, "to_dict"):
        return _safe_serialize(obj.to_dict())
    return str(obj)


# ---------------------------------------------------------------------------
# RPCServer
# ---------------------------------------------------------------------------

class RPCServer:
    """JSON-RPC 2.0 server for a ``LedgerNode``.

    Supports single and batch HTTP POST requests, CORS preflight for
    browser dApps, and a ``/health`` endpoint.
    """

    MAX_BATCH = 100

    def __init__(
        self,
        node: Any,
        host: str = "127.0.0.1",
        port: int = 8545,
        cors_origins: str = "*",
        max_request_size: int = 1024 * 1024,
        router: Any = None,
    ):
        self.node = node
        self.router = router
        self.host = host
        self.port = port
        self.cors_origins = cors_origins
        self.max_request_size = max_request_size

        self.registry = RPCMethodRegistry()

        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._running = False

        self._register_all_methods()

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application(client_max_size=self.max_request_size)
        app.router.add_post("/", self._handle_http)
        app.router.add_options("/", self._handle_cors_preflight)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self):
        """Start the HTTP server."""
        if self._running:
            return
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        self._running = True
        logger.info("RPC server for chain %d listening on http://%s:%d",
                    self.node.chain_id, self.host, self.port)

    async def stop(self):
        """Stop the server gracefully."""
        if not self._running:
            return
        self._running = False
        if self._runner:
            await self._runner.cleanup()
        self._app = None
        self._runner = None
        logger.info("RPC server for chain %d stopped", self.node.chain_id)

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    def _cors_headers(self) -> Dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.cors_origins,
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
        }

    async def _handle_http(self, request: web.Request) -> web.Response:
        """Handle a JSON-RPC POST request."""
        headers = self._cors_headers()
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            resp = self._error_response(None, RPCErrorCode.PARSE_ERROR, "Invalid JSON")
            return web.json_response(resp, headers=headers)

        if isinstance(body, list):
            if len(body) == 0:
                resp = self._error_response(None, RPCErrorCode.INVALID_REQUEST, "Empty batch")
                return web.json_response(resp, headers=headers)
            if len(body) > self.MAX_BATCH:
                resp = self._error_response(
                    None, RPCErrorCode.INVALID_REQUEST,
                    f"Batch too large (max {self.MAX_BATCH})",
                )
                return web.json_response(resp, headers=headers)
            results = [await self._process_single_request(r) for r in body]
            results = [r for r in results if r is not None]
            return web.json_response(results, headers=headers)

        result = await self._process_single_request(body)
        if result is None:
            return web.Response(status=204, headers=headers)
        return web.json_response(result, headers=headers)

    async def _handle_cors_preflight(self, request: web.Request) -> web.Response:
        headers = self._cors_headers()
        headers["Access-Control-Max-Age"] = "86400"
        return web.Response(status=204, headers=headers)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "chain_id": self.node.chain_id,
            "block_number": self.node.block_number,
        })

    async def _process_single_request(self, body: Any) -> Optional[Dict[str, Any]]:
        """Process a single JSON-RPC request and return the response dict."""
        if not isinstance(body, dict):
            return self._error_response(None, RPCErrorCode.INVALID_REQUEST, "Request must be an object")

        req_id = body.get("id")
        method = body.get("method")
        params = body.get("params", [])

        if body.get("jsonrpc") != "2.0":
            return self._error_response(req_id, RPCErrorCode.INVALID_REQUEST, "jsonrpc must be '2.0'")
        if not method or not isinstance(method, str):
            return self._error_response(req_id, RPCErrorCode.INVALID_REQUEST, "missing or invalid method")

        info = self.registry.get(method)
        if info is None:
            return self._error_response(req_id, RPCErrorCode.METHOD_NOT_FOUND, f"method not found: {method}")

        try:
            if info.is_async:
                result = await info.handler(params)
            else:
                result = info.handler(params)
        except RPCError as e:
            return self._error_response(req_id, e.code, e.message, e.data)
        except BridgeError as e:
            err = RPCError.from_bridge_error(e)
            return self._error_response(req_id, err.code, err.message, err.data)
        except Exception as e:
            logger.error("RPC handler error [%s]: %s\n%s", method, e, traceback.format_exc())
            return self._error_response(req_id, RPCErrorCode.INTERNAL_ERROR, str(e))

        if "id" not in body:
            return None
        return self._success_response(req_id, _safe_serialize(result))

    @staticmethod
    def _success_response(req_id: Any, result: Any) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "result": result, "id": req_id}

    @staticmethod
    def _error_response(req_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": int(code), "message": message}
        if data is not None:
            err["data"] = data
        return {"jsonrpc": "2.0", "error": err, "id": req_id}

    # ══════════════════════════════════════════════════════════════════
    #  RPC method registration
    # ══════════════════════════════════════════════════════════════════

    def _register_all_methods(self):
        r = self.registry.register

        r("nft_chainId", self._nft_chain_id, "Get the chain ID")
        r("nft_blockNumber", self._nft_block_number, "Get current block height")
        r("nft_deploy", self._nft_deploy, "Deploy a bridge NFT contract")
        r("nft_sendTransaction", self._nft_send_transaction, "Execute a state-changing contract method")
        r("nft_getTransactionReceipt", self._nft_get_receipt, "Get a transaction receipt")
        r("nft_call", self._nft_call, "Read-only contract call")

        r("admin_nodeInfo", self._admin_node_info, "Get node information")
        r("admin_rpcMethods", self._admin_rpc_methods, "List all available RPC methods")

        if self.router is not None:
            r("admin_routerInfo", self._admin_router_info, "Get message relay statistics")
            r("admin_messageLog", self._admin_message_log, "Get the cross-chain message log")

    # ── nft_* handlers ────────────────────────────────────────────

    def _nft_chain_id(self, params) -> int:
        return self.node.chain_id

    def _nft_block_number(self, params) -> int:
        return self.node.block_number

    def _nft_deploy(self, params) -> Dict[str, Any]:
        deployer = _require_param(params, "from")
        name = _optional_param(params, "name", "Cross-Chain NFT")
        symbol = _optional_param(params, "symbol", "XNFT")
        return self.node.deploy(deployer, name, symbol).to_dict()

    def _nft_send_transaction(self, params) -> Dict[str, Any]:
        sender = _require_param(params, "from")
        to = _require_param(params, "to")
        method = _require_param(params, "method")
        args = _optional_param(params, "args", [])
        if not isinstance(args, list):
            raise RPCError(RPCErrorCode.INVALID_PARAMS, "args must be a list")
        return self.node.transact(sender, to, method, *args).to_dict()

    def _nft_get_receipt(self, params) -> Optional[Dict[str, Any]]:
        tx_hash = _require_param(params, 0, "tx_hash")
        receipt = self.node.get_receipt(tx_hash)
        return receipt.to_dict() if receipt else None

    def _nft_call(self, params) -> Any:
        to = _require_param(params, "to")
        method = _require_param(params, "method")
        args = _optional_param(params, "args", [])
        if not isinstance(args, list):
            raise RPCError(RPCErrorCode.INVALID_PARAMS, "args must be a list")
        return self.node.call(to, method, *args)

    # ── admin_* handlers ──────────────────────────────────────────

    def _admin_node_info(self, params) -> Dict[str, Any]:
        return self.node.get_node_info()

    def _admin_rpc_methods(self, params) -> List[str]:
        return self.registry.list_methods()

    def _admin_router_info(self, params) -> Dict[str, Any]:
        return self.router.router_info()

    def _admin_message_log(self, params) -> List[Dict[str, Any]]:
        limit = _optional_param(params, 0)
        if limit is not None:
            limit = _parse_int(limit)
        return self.router.message_log(limit)


# ---------------------------------------------------------------------------
# RPCClient
# ---------------------------------------------------------------------------

class RPCClient:
    """Minimal JSON-RPC 2.0 client over HTTP.

    The underlying ``aiohttp.ClientSession`` is created on first use and
    reused for every later request; call ``close()`` when done.
    """

    def __init__(self, url: str, timeout: float = 15.0):
        self.url = url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def request(self, method: str, params: Any = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params if params is not None else [],
        }
        session = await self._get_session()
        try:
            async with session.post(self.url, json=payload) as resp:
                if resp.status >= 400:
                    raise RPCConnectionError(
                        f"RPC endpoint {self.url} answered HTTP {resp.status}"
                    )
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RPCConnectionError(f"RPC endpoint {self.url} unreachable: {e}") from e

        if not isinstance(body, dict):
            raise RPCConnectionError(f"Malformed response from {self.url}")
        if "error" in body:
            err = body["error"] or {}
            data = err.get("data") or {}
            message = err.get("message", "unknown error")
            if isinstance(data, dict) and data.get("kind"):
                raise error_from_code(data["kind"], message)
            raise BridgeError(f"RPC error {err.get('code')}: {message}")
        return body.get("result")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
