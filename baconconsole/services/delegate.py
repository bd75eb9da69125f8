"""Periodic refresh of the baker's balances from chain RPC."""

import logging
from typing import Callable

from ..core.config import get_settings
from ..core.types import BakeState, DelegateBalance, NodeStatus
from ..data.api import ApiError
from ..data.chain import ChainDataProvider
from .lifecycle import WorkflowScope
from .notifications import NotificationBus

logger = logging.getLogger(__name__)


class DelegateMonitor:
    """
    Keeps the baker's balance fresh while the dashboard is shown.

    An unregistered baker has no delegate entry on chain yet, so only its
    plain contract balance is read.
    """

    def __init__(
        self,
        chain: ChainDataProvider,
        bus: NotificationBus,
        status_source: Callable[[], NodeStatus | None],
        interval: float | None = None,
    ):
        self.chain = chain
        self.bus = bus
        self.status_source = status_source
        self.interval = interval or get_settings().delegate_refresh_seconds
        self.scope = WorkflowScope("delegate-monitor")
        self._timer = self.scope.timer("refresh", self.interval, self.refresh)
        self._balance: DelegateBalance | None = None

    @property
    def balance(self) -> DelegateBalance | None:
        return self._balance

    @property
    def running(self) -> bool:
        return self._timer.running

    def start(self) -> bool:
        return self._timer.start(immediate=True)

    async def refresh(self) -> DelegateBalance | None:
        status = self.status_source()
        if status is None or not status.delegate:
            return None

        ticket = self.scope.claim("balance")
        if ticket is None:
            return None
        try:
            if status.state == BakeState.NOT_REGISTERED:
                spendable = await self.chain.get_balance(status.delegate)
                balance = DelegateBalance(spendable=spendable, total=spendable)
            else:
                balance = await self.chain.get_delegate_balance(status.delegate)
        except ApiError as e:
            if ticket.valid:
                self.bus.error("Delegate Info Error", f"Unable to fetch balance: {e}")
            return None
        finally:
            ticket.release()

        if not ticket.valid:
            return None
        self._balance = balance
        logger.debug(f"Balance of {status.delegate}: {balance.spendable} mutez spendable")
        return balance

    def teardown(self) -> None:
        self.scope.teardown()
