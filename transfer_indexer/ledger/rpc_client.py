"""
Solana JSON-RPC client over aiohttp.

Requests go over HTTP POST; log subscriptions share one websocket whose
reader task resolves pending requests by id and hands notifications to the
registered callbacks.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import aiohttp
import ujson

from .base import (
    ConnectionError,
    LedgerClientBase,
    LogNotification,
    NotificationCallback,
    RpcError,
    SignatureInfo,
    TransientRpcError,
)

# Node is behind, slot/block not yet available, rate limited
TRANSIENT_RPC_CODES = {-32004, -32005, -32014, -32016, 429}
TRANSIENT_HTTP_STATUSES = {408, 429}


def _is_transient_status(status: int) -> bool:
    return status in TRANSIENT_HTTP_STATUSES or status >= 500


def rpc_error_from(error: Dict[str, Any]) -> RpcError:
    """Map a JSON-RPC error object to the matching exception."""
    code = error.get("code")
    message = f"RPC error {code}: {error.get('message', 'unknown error')}"
    if code in TRANSIENT_RPC_CODES:
        return TransientRpcError(message, code)
    return RpcError(message, code)


class SolanaRpcClient(LedgerClientBase):
    """
    One handle to a Solana node.

    Usage:
        client = SolanaRpcClient(rpc_url, ws_url)
        await client.connect()
        slot = await client.get_slot()
        sub_id = await client.logs_subscribe(mint, on_log)
    """

    def __init__(
        self,
        rpc_url: str,
        ws_url: Optional[str] = None,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        heartbeat: float = 20.0,
    ):
        super().__init__(rpc_url, commitment)
        self.ws_url = ws_url or rpc_url.replace("http", "ws", 1)
        self.timeout = timeout
        self.heartbeat = heartbeat

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._pending_subscriptions: Dict[int, NotificationCallback] = {}
        self._callbacks: Dict[int, NotificationCallback] = {}
        self._stream_closed = False

    async def connect(self) -> None:
        """Open the HTTP session and the websocket."""
        try:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                json_serialize=ujson.dumps,
            )
            self._ws = await self._session.ws_connect(self.ws_url, heartbeat=self.heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await self.close()
            raise ConnectionError(f"Failed to open websocket to {self.ws_url}: {e}")

        self._stream_closed = False
        self._reader_task = asyncio.create_task(self._read_stream())
        self.logger.info(f"Connected to {self.rpc_url}")

    async def close(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._session is not None:
            await self._session.close()
            self._session = None

        self._fail_pending(ConnectionError("Client closed"))
        self._callbacks.clear()

    @property
    def stream_closed(self) -> bool:
        return self._ws is not None and self._stream_closed

    # Request/response

    async def _request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        if self._session is None:
            raise ConnectionError("Client not connected")

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            async with self._session.post(self.rpc_url, json=payload) as resp:
                if _is_transient_status(resp.status):
                    raise TransientRpcError(f"{method} returned HTTP {resp.status}", resp.status)
                if resp.status != 200:
                    raise RpcError(f"{method} returned HTTP {resp.status}", resp.status)
                data = ujson.loads(await resp.text())
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientRpcError(f"{method} failed: {e!r}")
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON: {e}")

        if data.get("error"):
            raise rpc_error_from(data["error"])
        return data.get("result")

    async def get_slot(self) -> int:
        result = await self._request("getSlot", [{"commitment": self.commitment}])
        return int(result)

    async def get_signatures_for_address(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 20,
    ) -> List[SignatureInfo]:
        options: Dict[str, Any] = {"limit": limit, "commitment": self.commitment}
        if before:
            options["before"] = before
        result = await self._request("getSignaturesForAddress", [address, options])
        return [SignatureInfo.from_rpc_item(item) for item in result or []]

    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        options = {
            "encoding": "jsonParsed",
            "maxSupportedTransactionVersion": 0,
            "commitment": self.commitment,
        }
        return await self._request("getTransaction", [signature, options])

    # Push stream

    async def _ws_request(
        self,
        method: str,
        params: List[Any],
        callback: Optional[NotificationCallback] = None,
    ) -> Any:
        if self._ws is None or self._stream_closed:
            raise ConnectionError("Websocket not open")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        if callback is not None:
            self._pending_subscriptions[request_id] = callback

        try:
            await self._ws.send_str(ujson.dumps(
                {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            ))
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransientRpcError(f"{method} timed out after {self.timeout}s")
        except (aiohttp.ClientError, RuntimeError) as e:
            raise ConnectionError(f"{method} failed on websocket: {e}")
        finally:
            self._pending.pop(request_id, None)
            self._pending_subscriptions.pop(request_id, None)

    async def logs_subscribe(self, mention: str, callback: NotificationCallback) -> int:
        result = await self._ws_request(
            "logsSubscribe",
            [{"mentions": [mention]}, {"commitment": self.commitment}],
            callback=callback,
        )
        return int(result)

    async def logs_unsubscribe(self, subscription_id: int) -> bool:
        self._callbacks.pop(subscription_id, None)
        result = await self._ws_request("logsUnsubscribe", [subscription_id])
        return bool(result)

    async def _read_stream(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = ujson.loads(msg.data)
                    except ValueError:
                        self.logger.warning(f"Dropping undecodable websocket frame: {msg.data[:80]}")
                        continue
                    self.handle_message(data)
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Websocket reader stopped: {e}")
        finally:
            self._stream_closed = True
            self._fail_pending(ConnectionError("Websocket closed"))
            self.logger.warning("Websocket stream closed")

    def handle_message(self, data: Dict[str, Any]) -> None:
        """Route one decoded websocket message."""
        request_id = data.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is None or future.done():
                return
            if data.get("error"):
                future.set_exception(rpc_error_from(data["error"]))
                return
            callback = self._pending_subscriptions.pop(request_id, None)
            if callback is not None and data.get("result") is not None:
                # register before the caller resumes so no early notification is lost
                self._callbacks[int(data["result"])] = callback
            future.set_result(data.get("result"))
            return

        if data.get("method") != "logsNotification":
            return

        try:
            notification = LogNotification.from_rpc_message(data)
        except ValueError as e:
            self.logger.debug(f"Ignoring notification: {e}")
            return

        callback = self._callbacks.get(notification.subscription_id)
        if callback is None:
            return
        try:
            callback(notification)
        except Exception:
            self.logger.exception(f"Notification callback failed for {notification.signature[:16]}")

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        self._pending_subscriptions.clear()
