"""Payout workflow: browse reward cycles, send payouts, follow them to completion."""

import logging
from enum import Enum

from pydantic import ValidationError

from ..core.config import get_settings
from ..core.types import Alert, CycleDetail, PayoutCycleMetadata, PayoutStatus, Severity
from ..data.api import ApiError, ApiGateway, BackendError, TransportError
from .lifecycle import WorkflowScope, transition
from .notifications import NotificationBus

logger = logging.getLogger(__name__)

DISABLED = "disabled"


class PayoutStep(str, Enum):
    LIST = "list"
    DETAIL = "detail"
    SENDING = "sending"
    POLLING = "polling"
    DONE = "done"


class PayoutEvent(str, Enum):
    SHOW_UNPAID = "show_unpaid"
    SHOW_IN_PROGRESS = "show_in_progress"
    SHOW_DONE = "show_done"
    SEND = "send"
    SEND_ACCEPTED = "send_accepted"
    SEND_FAILED = "send_failed"
    COMPLETED = "completed"
    BACK = "back"


P, V = PayoutStep, PayoutEvent

# Cycles can be opened from the list or from another open cycle, never while sending or polling
_VIEWABLE = (P.LIST, P.DETAIL, P.DONE)

TRANSITIONS: dict[tuple[PayoutStep, PayoutEvent], PayoutStep] = {
    **{(step, V.SHOW_UNPAID): P.DETAIL for step in _VIEWABLE},
    **{(step, V.SHOW_IN_PROGRESS): P.POLLING for step in _VIEWABLE},
    **{(step, V.SHOW_DONE): P.DONE for step in _VIEWABLE},
    (P.DETAIL, V.SEND): P.SENDING,
    (P.SENDING, V.SEND_ACCEPTED): P.POLLING,
    (P.SENDING, V.SEND_FAILED): P.DETAIL,
    (P.POLLING, V.COMPLETED): P.DONE,
    **{(step, V.BACK): P.LIST for step in P},
}

_SHOW_EVENTS = {
    PayoutStatus.UNPAID: V.SHOW_UNPAID,
    PayoutStatus.IN_PROGRESS: V.SHOW_IN_PROGRESS,
    PayoutStatus.DONE: V.SHOW_DONE,
}


class PayoutWorkflow:
    """
    Payouts tab state machine.

    The completion poll exists only while the step is POLLING; it is
    cancelled on completion, on any return to the list and on teardown.
    """

    def __init__(self, api: ApiGateway, bus: NotificationBus, poll_interval: float | None = None):
        self.api = api
        self.bus = bus
        self.poll_interval = poll_interval or get_settings().payout_poll_seconds
        self.scope = WorkflowScope("payouts")
        self._poll = self.scope.timer("poll", self.poll_interval, self._poll_tick)

        self.step = PayoutStep.LIST
        self.cycles: list[PayoutCycleMetadata] = []
        self.disabled = False
        self.detail: CycleDetail | None = None
        self.alert: Alert | None = None

    def _fire(self, event: PayoutEvent) -> PayoutStep:
        self.step = transition("payouts", TRANSITIONS, self.step, event)
        if self.step != PayoutStep.POLLING:
            self._poll.cancel()
        return self.step

    @property
    def polling(self) -> bool:
        return self._poll.running

    @property
    def can_send(self) -> bool:
        return (
            self.step == PayoutStep.DETAIL
            and not self.disabled
            and self.detail is not None
            and self.detail.status == PayoutStatus.UNPAID
        )

    async def load_list(self) -> list[PayoutCycleMetadata]:
        """Fetch reward metadata for every known cycle, newest first."""
        ticket = self.scope.claim("list")
        if ticket is None:
            return self.cycles
        try:
            data = await self.api.get("/api/payouts/list")
            if not isinstance(data, dict):
                raise BackendError("Unexpected payouts list response")
            metadata = data.get("metadata") or {}
            cycles = [PayoutCycleMetadata.from_api({**meta, "c": int(c)}) for c, meta in metadata.items()]
        except (ApiError, ValidationError, ValueError, TypeError) as e:
            if ticket.valid:
                self.bus.error("Loading Payouts Error", str(e))
            return self.cycles
        finally:
            ticket.release()

        if ticket.valid:
            self.disabled = data.get("status") == DISABLED
            self.cycles = sorted(cycles, key=lambda m: m.cycle, reverse=True)
        return self.cycles

    async def _fetch_detail(self, cycle: int) -> CycleDetail:
        data = await self.api.get("/api/payouts/cycledetail", params={"c": cycle})
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected detail response for cycle {cycle}")
        try:
            return CycleDetail.from_api(cycle, data)
        except (ValidationError, KeyError, TypeError) as e:
            raise BackendError(f"Unexpected detail response for cycle {cycle}") from e

    def _detail_failed(self, error: ApiError) -> None:
        self.bus.error("Loading Detail Error", str(error))
        self.detail = None
        self._fire(PayoutEvent.BACK)

    def _completed(self, cycle: int) -> None:
        self._fire(PayoutEvent.COMPLETED)
        message = f"Payouts for cycle {cycle} have completed."
        self.alert = Alert(severity=Severity.SUCCESS, message=message)
        self.bus.publish("Payouts Complete", message, Severity.SUCCESS)
        logger.info(message)

    async def view_cycle(self, cycle: int) -> PayoutStep:
        # Any show event is legal from exactly the viewable steps
        transition("payouts", TRANSITIONS, self.step, PayoutEvent.SHOW_UNPAID)
        ticket = self.scope.claim("detail")
        if ticket is None:
            return self.step
        try:
            detail = await self._fetch_detail(cycle)
        except ApiError as e:
            if ticket.valid:
                self._detail_failed(e)
            return self.step
        finally:
            ticket.release()

        if not ticket.valid:
            return self.step

        self.detail = detail
        self.alert = None
        self._fire(_SHOW_EVENTS[detail.status])
        if self.step == PayoutStep.POLLING:
            self._poll.start()
        elif self.step == PayoutStep.DONE:
            self.alert = Alert(severity=Severity.SUCCESS, message=f"Payouts for cycle {cycle} have completed.")
        return self.step

    async def send(self) -> PayoutStep:
        """Ask the node to send payouts for the open cycle. Never retried automatically."""
        if self.scope.in_flight("send"):
            return self.step
        transition("payouts", TRANSITIONS, self.step, PayoutEvent.SEND)
        cycle = self.detail.cycle
        ticket = self.scope.claim("send")

        self._fire(PayoutEvent.SEND)
        self.alert = None
        try:
            await self.api.post("/api/payouts/sendpayouts", {"cycle": cycle})
        except ApiError as e:
            if ticket.valid:
                if isinstance(e, TransportError):
                    self.bus.error("Send Payouts Error", str(e))
                self.alert = Alert(severity=Severity.DANGER, message=str(e))
                self._fire(PayoutEvent.SEND_FAILED)
            return self.step
        finally:
            ticket.release()

        if not ticket.valid:
            return self.step

        logger.info(f"Payouts for cycle {cycle} submitted")
        self._fire(PayoutEvent.SEND_ACCEPTED)
        self._poll.start()
        return self.step

    async def _poll_tick(self) -> None:
        if self.step != PayoutStep.POLLING or self.detail is None:
            self._poll.cancel()
            return

        cycle = self.detail.cycle
        ticket = self.scope.claim("detail")
        if ticket is None:
            return
        try:
            detail = await self._fetch_detail(cycle)
        except TransportError as e:
            if ticket.valid:
                self.bus.error("Loading Detail Error", str(e))
            return
        except ApiError as e:
            if ticket.valid:
                self._detail_failed(e)
            return
        finally:
            ticket.release()

        if not ticket.valid or self.step != PayoutStep.POLLING:
            return
        self.detail = detail
        if detail.status == PayoutStatus.DONE:
            self._completed(cycle)

    async def back_to_list(self) -> list[PayoutCycleMetadata]:
        self._fire(PayoutEvent.BACK)
        self.detail = None
        self.alert = None
        return await self.load_list()

    def teardown(self) -> None:
        self.scope.teardown()
        if self.step == PayoutStep.SENDING:
            self.step = PayoutStep.DETAIL
