"""JSON-RPC request/response correlation."""

import asyncio
import logging
from typing import Any, Dict, Optional

from devport_sdk.client.transport import Transport
from devport_sdk.errors import ConnectionLost, NotConnected, RemoteError
from devport_sdk.protocol import build_request, encode_frame, is_response

logger = logging.getLogger(__name__)


class RPCCorrelator:
    """Matches responses to the requests that caused them.

    Each request gets the next id from a per-client counter and a future
    in the pending map. Every entry leaves the map one way: a matching
    response, caller cancellation, or :meth:`reject_all` on connection
    loss.
    """

    def __init__(self) -> None:
        self._request_id = 0
        self._pending_requests: Dict[int, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending_requests)

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(
        self,
        transport: Optional[Transport],
        method: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and wait for its result.

        Raises:
            NotConnected: No open transport, or the send itself failed.
            ConnectionLost: The connection closed before the response.
            RemoteError: The server answered with an error object.
        """
        if transport is None or not transport.is_open:
            raise NotConnected()

        req_id = self._next_id()
        message = build_request(method, params, req_id)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[req_id] = future

        try:
            await transport.send(encode_frame(message))
            return await future
        finally:
            self._pending_requests.pop(req_id, None)

    def handle_response(self, message: Dict[str, Any]) -> bool:
        """Resolve the pending request a response frame answers.

        Returns:
            True if the frame was a response (even a stale one), False if
            it should be offered to the notification dispatcher.
        """
        if not is_response(message):
            return False

        req_id = message["id"]
        future = self._pending_requests.pop(req_id, None)
        if future is None:
            logger.debug("Discarding response for unknown request id %r", req_id)
            return True
        if future.done():
            return True

        error = message.get("error")
        if error is not None:
            if isinstance(error, dict):
                future.set_exception(RemoteError(
                    error.get("message", "Unknown error"),
                    code=error.get("code"),
                    data=error.get("data"),
                ))
            else:
                future.set_exception(RemoteError(str(error)))
        else:
            future.set_result(message.get("result"))
        return True

    def reject_all(self, reason: str = "Connection lost") -> None:
        """Reject every pending request with :class:`ConnectionLost`."""
        pending = list(self._pending_requests.values())
        self._pending_requests.clear()
        for future in pending:
            if not future.done():
                future.set_exception(ConnectionLost(reason))
        if pending:
            logger.debug("Rejected %d pending request(s): %s", len(pending), reason)


__all__ = ["RPCCorrelator"]
