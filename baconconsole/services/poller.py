"""The one recurring fetch of aggregate node status."""

import logging
from datetime import datetime, timezone
from typing import Callable

from pydantic import ValidationError

from ..core.config import get_settings
from ..core.types import NodeStatus
from ..data.api import ApiError, ApiGateway, BackendError
from .lifecycle import WorkflowScope
from .notifications import NotificationBus

logger = logging.getLogger(__name__)

STATUS_PATH = "/api/status"

StatusListener = Callable[[NodeStatus], None]


class StatusPoller:
    """
    Polls /api/status on a fixed interval.

    Owns the only writable copy of the status snapshot and the connected
    flag. Failures flip connected off and notify, but the interval keeps
    running until pause().
    """

    def __init__(self, api: ApiGateway, bus: NotificationBus, interval: float | None = None):
        self.api = api
        self.bus = bus
        self.interval = interval or get_settings().status_poll_seconds
        self.scope = WorkflowScope("status-poller")
        self._timer = self.scope.timer("poll", self.interval, self._tick)
        self._listeners: list[StatusListener] = []

        self._status: NodeStatus | None = None
        self._connected = False
        self._last_update: datetime | None = None

    @property
    def status(self) -> NodeStatus | None:
        return self._status

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_update(self) -> datetime | None:
        return self._last_update

    @property
    def running(self) -> bool:
        return self._timer.running

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def resume(self) -> bool:
        """Fetch now and then every interval. A no-op returning False if already running."""
        started = self._timer.start(immediate=True)
        if started:
            logger.debug(f"Status polling resumed (every {self.interval}s)")
        return started

    start = resume

    def pause(self) -> None:
        """Stop polling; a fetch still in flight will not update the snapshot."""
        if self._timer.running:
            logger.debug("Status polling paused")
        self.scope.teardown()

    async def _tick(self) -> None:
        await self.refresh()

    async def refresh(self) -> NodeStatus | None:
        """Fetch once. Returns the new snapshot, or None on failure or when superseded."""
        ticket = self.scope.claim("status")
        if ticket is None:
            return None

        try:
            data = await self.api.get(STATUS_PATH)
            if not isinstance(data, dict):
                raise BackendError("Unexpected status response")
            status = NodeStatus.from_api(data)
        except (ApiError, ValidationError) as e:
            if ticket.valid:
                self._connected = False
                self.bus.error("Status Error", f"Unable to fetch node status: {e}")
            return None
        finally:
            ticket.release()

        if not ticket.valid:
            logger.debug("Dropping status fetched after pause")
            return None

        self._status = status
        self._connected = True
        self._last_update = status.timestamp or datetime.now(timezone.utc)

        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")
        return status
