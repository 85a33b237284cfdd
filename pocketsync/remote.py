"""Client for a PocketBase-style remote record store.

Covers the REST record endpoints used for the bulk load and for writes, and
the server-sent-events realtime channel used for change notifications.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import httpx

from .errors import SubscriptionError
from .types import FetchOptions, RealtimeEvent, Record

logger = logging.getLogger(__name__)

EventCallback = Callable[[RealtimeEvent], None]
DisconnectCallback = Callable[[SubscriptionError], None]
Unsubscribe = Callable[[], Awaitable[None]]


class RecordService(ABC):
    """Remote operations on one collection."""

    @abstractmethod
    async def subscribe(
        self,
        topic: str,
        callback: EventCallback,
        on_disconnect: DisconnectCallback | None = None,
    ) -> Unsubscribe:
        """Subscribe to realtime changes.

        Args:
            topic: "*" for every record, or a record id.
            callback: Called with each event, in arrival order.
            on_disconnect: Called if the channel drops for good.

        Returns:
            Coroutine function that removes the subscription.
        """
        pass

    @abstractmethod
    async def get_full_list(self, options: FetchOptions | None = None) -> list[Record]:
        """Fetch every record matching the options."""
        pass

    @abstractmethod
    async def create(self, payload: Record) -> Record:
        pass

    @abstractmethod
    async def update(self, key: str, payload: Record) -> Record:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class PocketBaseClient:
    """Async HTTP client for a PocketBase server."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8090",
        token: str | None = None,
        timeout: float = 30.0,
        page_size: int = 500,
        max_reconnects: int = 3,
        reconnect_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server URL.
            token: Auth token sent in the Authorization header.
            timeout: Request timeout in seconds.
            page_size: Records per page during a full list fetch.
            max_reconnects: Realtime reconnect attempts before giving up.
            reconnect_delay: Seconds before the first reconnect, doubling after
                each failed attempt.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.page_size = page_size
        self.max_reconnects = max_reconnects
        self.reconnect_delay = reconnect_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._collections: dict[str, "RecordCollection"] = {}
        self.realtime = RealtimeChannel(self)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.token} if self.token else {}

    async def close(self) -> None:
        """Disconnect realtime and close the HTTP client."""
        await self.realtime.disconnect()
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            httpx.HTTPStatusError: For 4xx/5xx responses.
        """
        client = await self._get_client()
        response = await client.request(method, path, headers=self._headers(), **kwargs)
        response.raise_for_status()

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def collection(self, name: str) -> "RecordCollection":
        """Get the record service for a collection."""
        if name not in self._collections:
            self._collections[name] = RecordCollection(self, name)
        return self._collections[name]

    async def auth_with_password(
        self, identity: str, password: str, collection: str = "users"
    ) -> Record:
        """Authenticate an auth-collection record and keep its token.

        Returns:
            The authenticated record.
        """
        data = await self.request(
            "POST",
            f"/api/collections/{collection}/auth-with-password",
            json={"identity": identity, "password": password},
        )
        self.token = data["token"]
        logger.info(f"Authenticated as {identity} ({collection})")
        return data.get("record", {})

    async def health_check(self) -> bool:
        """Check if the server is healthy."""
        try:
            await self.request("GET", "/api/health")
            return True
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False


class RecordCollection(RecordService):
    """Record endpoints of one collection."""

    def __init__(self, client: PocketBaseClient, name: str):
        self._client = client
        self.name = name
        self._path = f"/api/collections/{name}/records"

    async def subscribe(
        self,
        topic: str,
        callback: EventCallback,
        on_disconnect: DisconnectCallback | None = None,
    ) -> Unsubscribe:
        return await self._client.realtime.subscribe(
            f"{self.name}/{topic}", callback, on_disconnect
        )

    async def get_full_list(self, options: FetchOptions | None = None) -> list[Record]:
        params: dict[str, Any] = (options or FetchOptions()).to_params()
        per_page = self._client.page_size
        records: list[Record] = []
        page = 1

        while True:
            data = await self._client.request(
                "GET",
                self._path,
                params={**params, "page": page, "perPage": per_page, "skipTotal": 1},
            )
            items = data.get("items", [])
            records.extend(items)
            if len(items) < per_page:
                break
            page += 1

        logger.debug(f"Fetched {len(records)} records from {self.name} in {page} pages")
        return records

    async def create(self, payload: Record) -> Record:
        return await self._client.request("POST", self._path, json=payload)

    async def update(self, key: str, payload: Record) -> Record:
        return await self._client.request("PATCH", f"{self._path}/{key}", json=payload)

    async def delete(self, key: str) -> None:
        await self._client.request("DELETE", f"{self._path}/{key}")


class RealtimeChannel:
    """Server-sent-events connection shared by every subscription of a client.

    The server announces a client id in a ``PB_CONNECT`` event; the set of
    subscribed topics is then posted for that id. Messages arrive as events
    named after their topic, with ``{"action", "record"}`` JSON data.
    """

    def __init__(self, client: PocketBaseClient):
        self._client = client
        self._listeners: dict[str, list[EventCallback]] = {}
        self._disconnect_callbacks: list[DisconnectCallback] = []
        self._client_id: str | None = None
        self._connected = asyncio.Event()
        self._has_connected = False
        self._attempt = 0
        self._task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        return self._client_id is not None

    @property
    def topics(self) -> list[str]:
        return list(self._listeners)

    async def subscribe(
        self,
        topic: str,
        callback: EventCallback,
        on_disconnect: DisconnectCallback | None = None,
    ) -> Unsubscribe:
        """Add a listener for a topic, connecting if needed.

        Raises:
            SubscriptionError: If the channel cannot be established.
        """
        is_new_topic = topic not in self._listeners
        self._listeners.setdefault(topic, []).append(callback)
        if on_disconnect:
            self._disconnect_callbacks.append(on_disconnect)

        try:
            if self.is_connected:
                if is_new_topic:
                    await self._submit()
            elif self._task is not None and not self._task.done():
                # Reconnecting: the new topic is posted with the rest on PB_CONNECT
                await self._wait_connected()
            else:
                await self._connect()
        except SubscriptionError:
            self._remove_listener(topic, callback, on_disconnect)
            raise

        logger.info(f"Subscribed to {topic}")

        async def unsubscribe() -> None:
            if not self._remove_listener(topic, callback, on_disconnect):
                return
            if not self._listeners:
                await self.disconnect()
            elif topic not in self._listeners and self.is_connected:
                await self._submit()
            logger.info(f"Unsubscribed from {topic}")

        return unsubscribe

    def _remove_listener(
        self,
        topic: str,
        callback: EventCallback,
        on_disconnect: DisconnectCallback | None,
    ) -> bool:
        callbacks = self._listeners.get(topic)
        if not callbacks or callback not in callbacks:
            return False
        callbacks.remove(callback)
        if not callbacks:
            del self._listeners[topic]
        if on_disconnect in self._disconnect_callbacks:
            self._disconnect_callbacks.remove(on_disconnect)
        return True

    async def disconnect(self) -> None:
        """Close the event stream."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._client_id = None
        self._connected.clear()
        self._has_connected = False

    async def _connect(self) -> None:
        self._connected.clear()
        self._task = asyncio.create_task(self._run())
        try:
            await self._wait_connected()
        except SubscriptionError:
            await self.disconnect()
            raise

        await self._submit()

    async def _wait_connected(self) -> None:
        """Wait for PB_CONNECT on the running stream task.

        Raises:
            SubscriptionError: If the task ends first or the timeout passes.
        """
        task = self._task
        waiter = asyncio.create_task(self._connected.wait())

        done, _ = await asyncio.wait(
            {task, waiter},
            timeout=self._client.timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if waiter in done:
            return

        waiter.cancel()
        if not task.done():
            raise SubscriptionError("timed out waiting for realtime connection")

        exc = None if task.cancelled() else task.exception()
        raise SubscriptionError(
            f"realtime stream closed before connecting: {exc}"
            if exc
            else "realtime stream closed before connecting"
        )

    async def _submit(self) -> None:
        """Post the current topic set for this connection."""
        if self._client_id is None:
            raise SubscriptionError("not connected")
        try:
            await self._client.request(
                "POST",
                "/api/realtime",
                json={"clientId": self._client_id, "subscriptions": self.topics},
            )
        except httpx.HTTPError as e:
            raise SubscriptionError(f"failed to submit subscriptions: {e}") from e

    async def _run(self) -> None:
        """Read the event stream, reconnecting with backoff after drops."""
        self._attempt = 0

        while True:
            try:
                await self._stream()
                error = "stream closed by server"
            except (httpx.HTTPError, SubscriptionError) as e:
                if not self._has_connected:
                    raise SubscriptionError(str(e)) from e
                error = str(e)

            self._client_id = None
            self._connected.clear()
            if not self._has_connected:
                return

            if self._attempt >= self._client.max_reconnects:
                logger.error(f"Realtime connection lost: {error}")
                self._notify_disconnect(SubscriptionError(error))
                return

            self._attempt += 1
            logger.warning(
                f"Realtime connection lost ({error}), reconnecting "
                f"attempt {self._attempt}/{self._client.max_reconnects}"
            )
            await asyncio.sleep(self._client.reconnect_delay * 2 ** (self._attempt - 1))

    async def _stream(self) -> None:
        client = await self._client._get_client()
        headers = {**self._client._headers(), "Accept": "text/event-stream"}
        timeout = httpx.Timeout(self._client.timeout, read=None)

        async with client.stream(
            "GET", "/api/realtime", headers=headers, timeout=timeout
        ) as response:
            response.raise_for_status()

            event_name = "message"
            data_lines: list[str] = []
            async for line in response.aiter_lines():
                line = line.rstrip("\r\n")
                if not line:
                    if data_lines:
                        await self._dispatch(event_name, "\n".join(data_lines))
                    event_name = "message"
                    data_lines = []
                    continue
                if line.startswith(":"):
                    continue

                field_name, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if field_name == "event":
                    event_name = value
                elif field_name == "data":
                    data_lines.append(value)

    async def _dispatch(self, event_name: str, data: str) -> None:
        """Handle one complete server-sent event."""
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring undecodable realtime data for {event_name}: {data[:100]}")
            return

        if event_name == "PB_CONNECT":
            self._client_id = payload["clientId"]
            reconnected = self._has_connected
            self._has_connected = True
            self._attempt = 0
            self._connected.set()
            logger.debug(f"Realtime connected with client id {self._client_id}")
            if reconnected and self._listeners:
                await self._submit()
            return

        callbacks = self._listeners.get(event_name)
        if not callbacks:
            return

        try:
            event = RealtimeEvent.from_dict(payload)
        except (KeyError, ValueError) as e:
            logger.warning(f"Ignoring malformed realtime event on {event_name}: {e}")
            return

        for callback in list(callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Realtime callback for {event_name} failed: {e}", exc_info=True)

    def _notify_disconnect(self, error: SubscriptionError) -> None:
        for callback in list(self._disconnect_callbacks):
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Disconnect callback failed: {e}", exc_info=True)
