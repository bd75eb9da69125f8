"""Baker registration: submit once, then wait for the network."""

import logging
from enum import Enum
from typing import Callable

from ..core.config import get_settings
from ..core.types import Alert, Severity
from ..data.api import ApiError, ApiGateway, TransportError
from ..data.chain import ChainDataProvider
from .lifecycle import WorkflowScope, transition
from .notifications import NotificationBus

logger = logging.getLogger(__name__)

# Registration is included in a block but only takes effect after this many cycles
ACTIVATION_CYCLES = 3


class RegistrationStep(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class RegistrationEvent(str, Enum):
    SUBMIT = "submit"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TRANSITIONS = {
    (RegistrationStep.IDLE, RegistrationEvent.SUBMIT): RegistrationStep.SUBMITTING,
    (RegistrationStep.SUBMITTING, RegistrationEvent.SUCCEEDED): RegistrationStep.SUBMITTED,
    (RegistrationStep.SUBMITTING, RegistrationEvent.FAILED): RegistrationStep.IDLE,
}


class RegistrationTracker:
    """
    Submits the baker registration operation.

    SUBMITTED means "awaiting network", never "registered": the only
    completion signal is a later status snapshot that no longer reports
    the baker as unregistered.
    """

    def __init__(
        self,
        api: ApiGateway,
        chain: ChainDataProvider,
        bus: NotificationBus,
        on_submitted: Callable[[], None] | None = None,
    ):
        settings = get_settings()
        self.api = api
        self.chain = chain
        self.bus = bus
        self.on_submitted = on_submitted
        self.min_balance = settings.min_registration_balance_mutez
        self.scope = WorkflowScope("registration")

        self.step = RegistrationStep.IDLE
        self.spendable: int | None = None
        self.op_hash: str | None = None
        self.alert: Alert | None = None

    def _fire(self, event: RegistrationEvent) -> RegistrationStep:
        self.step = transition("registration", TRANSITIONS, self.step, event)
        return self.step

    @property
    def can_register(self) -> bool:
        return self.step == RegistrationStep.IDLE and (self.spendable or 0) >= self.min_balance

    async def refresh_balance(self, address: str) -> int | None:
        ticket = self.scope.claim("balance")
        if ticket is None:
            return self.spendable
        try:
            balance = await self.chain.get_balance(address)
        except ApiError as e:
            if ticket.valid:
                self.bus.error("Balance Error", f"Unable to fetch balance: {e}")
            return None
        finally:
            ticket.release()

        if ticket.valid:
            self.spendable = balance
        return balance

    async def submit(self) -> RegistrationStep:
        if self.spendable is not None and self.spendable < self.min_balance:
            tez = self.min_balance // 1_000_000
            self.alert = Alert(
                severity=Severity.WARNING,
                message=f"A spendable balance of at least {tez} XTZ is required to register as a baker.",
            )
            return self.step

        if self.scope.in_flight("register"):
            return self.step
        transition("registration", TRANSITIONS, self.step, RegistrationEvent.SUBMIT)
        ticket = self.scope.claim("register")

        self._fire(RegistrationEvent.SUBMIT)
        self.alert = None
        try:
            data = await self.api.post("/api/wizard/registerBaker")
        except ApiError as e:
            if ticket.valid:
                if isinstance(e, TransportError):
                    self.bus.error("Register Baker Error", str(e))
                self.alert = Alert(severity=Severity.DANGER, message=str(e))
                self._fire(RegistrationEvent.FAILED)
            return self.step
        finally:
            ticket.release()

        if not ticket.valid:
            return self.step

        self.op_hash = data.get("ophash") if isinstance(data, dict) else None
        self._fire(RegistrationEvent.SUCCEEDED)
        self.alert = Alert(
            severity=Severity.SUCCESS,
            message=(
                f"Registration operation injected ({self.op_hash}). The network takes "
                f"{ACTIVATION_CYCLES} cycles to activate a new baker."
            ),
        )
        logger.info(f"Baker registration submitted: {self.op_hash}")
        if self.on_submitted is not None:
            self.on_submitted()
        return self.step

    def teardown(self) -> None:
        self.scope.teardown()
        if self.step == RegistrationStep.SUBMITTING:
            # The outcome of the abandoned call is unknown to us
            self.step = RegistrationStep.IDLE
