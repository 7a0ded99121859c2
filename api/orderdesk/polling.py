"""
Client-side refresh loop for an open order view.

Each tick fetches the order, its notes, communications and proofs in parallel
and signals the owner only when ``status`` or ``assigned_to`` moved under it.
Local edits are kept aside and laid back over every fetched snapshot until the
owner commits them, so a tick never overwrites a half-typed change.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Union

import httpx

from .config import AUDIT_POLL_SECONDS, DASHBOARD_POLL_SECONDS, ORDER_POLL_SECONDS
from .drafts import apply_updates

logger = logging.getLogger(__name__)

POLL_INTERVALS = {
    "order": ORDER_POLL_SECONDS,
    "audit": AUDIT_POLL_SECONDS,
    "dashboard": DASHBOARD_POLL_SECONDS,
}
TIMEOUT = 10.0  # seconds


class PollingTask:
    """
    Run ``callback`` every ``interval`` seconds until stopped.

    A failing callback is logged and the loop carries on; the next tick retries
    unconditionally. Nothing runs before ``start()`` or after ``stop()``.
    """

    def __init__(self, callback: Callable[[], Union[Awaitable[Any], Any]], interval: float):
        self.callback = callback
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "PollingTask":
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_once(self) -> None:
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("polling tick failed", exc_info=True)

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)


@dataclass(frozen=True)
class OrderSnapshot:
    order: dict
    notes: list = field(default_factory=list)
    communications: list = field(default_factory=list)
    proofs: list = field(default_factory=list)


class SyncState(NamedTuple):
    status: Optional[str]
    assigned_to: Optional[int]

    @classmethod
    def of(cls, order: dict) -> "SyncState":
        return cls(order.get("status"), order.get("assigned_to"))


class OrderDeskClient:
    """
    Thin async client for the admin order endpoints.

    Raises:
        httpx.HTTPError: on network errors or non-2xx responses
    """

    def __init__(self, base_url: str, token: str, timeout: float = TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"X-Access-Token": token},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "OrderDeskClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str) -> dict:
        response = await self._client.get(path)
        response.raise_for_status()
        return response.json()

    async def fetch_order_bundle(self, order_id: int) -> OrderSnapshot:
        base = f"/api/admin/orders/{order_id}"
        order, notes, comms, proofs = await asyncio.gather(
            self._get(base),
            self._get(f"{base}/notes"),
            self._get(f"{base}/communications"),
            self._get(f"{base}/proofs"),
        )
        return OrderSnapshot(
            order=order["order"],
            notes=notes.get("notes", []),
            communications=comms.get("communications", []),
            proofs=proofs.get("proofs", []),
        )


class OrderSync:
    """Keeps one open order view in step with the server."""

    def __init__(self, client: OrderDeskClient, order_id: int, on_change: Optional[Callable[[OrderSnapshot], Any]] = None):
        self.client = client
        self.order_id = order_id
        self.on_change = on_change
        self.state: Optional[SyncState] = None
        self.snapshot: Optional[OrderSnapshot] = None
        self.edits: Dict[str, Any] = {}
        self._task: Optional[PollingTask] = None

    def observe(self, order: dict) -> SyncState:
        """Record what the owner is currently showing; call on every render."""
        self.state = SyncState.of(order)
        return self.state

    def edit(self, path: str, value: Any) -> Optional[dict]:
        self.edits[path] = value
        if self.snapshot is None:
            return None
        self.snapshot = replace(self.snapshot, order=apply_updates(self.snapshot.order, {path: value}))
        return self.snapshot.order

    def commit_edit(self, path: str) -> None:
        self.edits.pop(path, None)

    async def tick(self) -> bool:
        """Fetch once; return True when a material change was signalled."""
        fetched = await self.client.fetch_order_bundle(self.order_id)
        server_state = SyncState.of(fetched.order)
        self.snapshot = replace(fetched, order=apply_updates(fetched.order, self.edits))
        if self.state is None:
            self.state = server_state
            return False
        if server_state == self.state:
            return False
        if self.on_change is not None:
            result = self.on_change(self.snapshot)
            if inspect.isawaitable(result):
                await result
        return True

    def start(self, interval: float = POLL_INTERVALS["order"]) -> PollingTask:
        if self._task is None or not self._task.running:
            self._task = PollingTask(self.tick, interval).start()
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            await self._task.stop()
            self._task = None
