"""HTTP surface and delivery strategies.

Actions (send, interrupt, prompt responses) go through a *delivery*:
:class:`SocketDelivery` issues JSON-RPC calls over the WebSocket,
:class:`HttpDelivery` posts to the REST endpoints of the same server.
The client picks one per action; the action logic is identical for both.

Gap recovery always uses :meth:`HttpFallback.fetch_messages`, the
paginated history endpoint.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from devport_sdk.errors import AuthenticationFailed, HttpStatusError
from devport_sdk.protocol import RPCMethod

logger = logging.getLogger(__name__)


def http_base_url(ws_url: str) -> str:
    """Derive the HTTP base URL from the WebSocket endpoint.

    ``ws://host:8080/ws`` becomes ``http://host:8080``; ``wss`` maps to
    ``https``.
    """
    parts = urlsplit(ws_url)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    path = parts.path.rstrip("/")
    if path.endswith("/ws"):
        path = path[: -len("/ws")]
    return urlunsplit((scheme, parts.netloc, path, "", ""))


class HttpFallback:
    """Async client for the server's REST endpoints.

    All requests carry ``Authorization: Bearer <token>``.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._get_headers(),
            timeout=timeout,
            transport=transport,
        )

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        await self._client.aclose()

    def _handle_error(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        body = response.text
        if status == 401:
            raise AuthenticationFailed("Authentication failed")
        raise HttpStatusError(f"Request failed: {status} {body.strip()}".strip(), status, body)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise HttpStatusError(f"HTTP request failed: {e}") from e

        self._handle_error(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.debug("Non-JSON response from %s %s", method, path)
            return None

    async def send_message(self, session_id: str, content: str) -> Any:
        return await self._request(
            "POST", f"/api/sessions/{quote(session_id, safe='')}/messages",
            json={"content": content},
        )

    async def cancel(self, session_id: str) -> Any:
        return await self._request("POST", f"/api/sessions/{quote(session_id, safe='')}/cancel")

    async def respond_to_permission(self, session_id: str, permission_id: str, allowed: bool) -> Any:
        return await self._request(
            "POST", f"/api/permissions/{quote(permission_id, safe='')}",
            json={"session_id": session_id, "allowed": allowed},
        )

    async def respond_to_question(self, session_id: str, question_id: str, answer: str) -> Any:
        return await self._request(
            "POST", f"/api/questions/{quote(question_id, safe='')}",
            json={"session_id": session_id, "answer": answer},
        )

    async def fetch_messages(self, session_id: str, after: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch session history, only messages after ``after`` if given."""
        params = {"after": after} if after else None
        data = await self._request(
            "GET", f"/api/sessions/{quote(session_id, safe='')}/messages",
            params=params,
        )
        if not isinstance(data, dict):
            return []
        messages = data.get("messages") or []
        return [m for m in messages if isinstance(m, dict)]


CallFn = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class SocketDelivery:
    """Deliver actions as JSON-RPC calls over the socket."""

    name = "socket"

    def __init__(self, call: CallFn) -> None:
        self._call = call

    async def send_message(self, session_id: str, content: str) -> Any:
        return await self._call(RPCMethod.CHAT_MESSAGE.value, {
            "session_id": session_id,
            "content": content,
        })

    async def interrupt(self, session_id: str) -> Any:
        return await self._call(RPCMethod.CHAT_INTERRUPT.value, {"session_id": session_id})

    async def respond_to_permission(self, session_id: str, permission_id: str, allowed: bool) -> Any:
        return await self._call(RPCMethod.PERMISSION_RESPONSE.value, {
            "session_id": session_id,
            "permission_id": permission_id,
            "allowed": allowed,
        })

    async def respond_to_question(self, session_id: str, question_id: str, answer: str) -> Any:
        return await self._call(RPCMethod.QUESTION_RESPONSE.value, {
            "session_id": session_id,
            "question_id": question_id,
            "answer": answer,
        })


class HttpDelivery:
    """Deliver actions through the REST endpoints."""

    name = "http"

    def __init__(self, http: HttpFallback) -> None:
        self._http = http

    async def send_message(self, session_id: str, content: str) -> Any:
        return await self._http.send_message(session_id, content)

    async def interrupt(self, session_id: str) -> Any:
        return await self._http.cancel(session_id)

    async def respond_to_permission(self, session_id: str, permission_id: str, allowed: bool) -> Any:
        return await self._http.respond_to_permission(session_id, permission_id, allowed)

    async def respond_to_question(self, session_id: str, question_id: str, answer: str) -> Any:
        return await self._http.respond_to_question(session_id, question_id, answer)


__all__ = [
    "HttpDelivery",
    "HttpFallback",
    "SocketDelivery",
    "http_base_url",
]
