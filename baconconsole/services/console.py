"""Top-level controller: owns every workflow and decides which view is shown."""

import logging
from enum import Enum
from typing import Any

import httpx

from ..core.types import BakeState, NodeStatus
from ..data.api import ApiGateway
from ..data.cache import get_cache
from ..data.chain import ChainDataProvider
from .delegate import DelegateMonitor
from .notifications import NotificationBus
from .payouts import PayoutWorkflow
from .poller import StatusPoller
from .registration import RegistrationStep, RegistrationTracker
from .settings import SettingsService
from .voting import VotingPhaseEngine
from .wizard import OnboardingWizard, WizardStep

logger = logging.getLogger(__name__)


class ViewUnavailable(Exception):
    """The requested view cannot be entered in the node's current state."""


class ConsoleView(str, Enum):
    LOADING = "loading"
    ONBOARDING = "onboarding"
    REGISTRATION = "registration"
    DASHBOARD = "dashboard"


class Console:
    """
    The operator console.

    Entering the wizard or the registration flow pauses status polling;
    leaving, finishing or submitting resumes it exactly once.
    """

    def __init__(
        self,
        api: ApiGateway | None = None,
        chain: ChainDataProvider | None = None,
        bus: NotificationBus | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        status_interval: float | None = None,
        delegate_interval: float | None = None,
        payout_interval: float | None = None,
    ):
        self.bus = bus or NotificationBus()
        self.api = api or ApiGateway(transport=transport)
        self.chain = chain or ChainDataProvider(transport=transport)

        self.poller = StatusPoller(self.api, self.bus, status_interval)
        self.delegate = DelegateMonitor(self.chain, self.bus, lambda: self.poller.status, delegate_interval)
        self.payouts = PayoutWorkflow(self.api, self.bus, payout_interval)
        self.voting = VotingPhaseEngine(self.api, self.chain, self.bus)
        self.settings = SettingsService(self.api, self.chain, self.bus)

        self.wizard: OnboardingWizard | None = None
        self.registration: RegistrationTracker | None = None
        self._paused_by: set[str] = set()
        self._signer_configured = False
        self._unsubscribe = self.poller.subscribe(self._on_status)

    @property
    def status(self) -> NodeStatus | None:
        return self.poller.status

    @property
    def view(self) -> ConsoleView:
        if self.wizard is not None and self.wizard.step != WizardStep.DONE:
            return ConsoleView.ONBOARDING
        if self.registration is not None:
            return ConsoleView.REGISTRATION

        status = self.poller.status
        if status is None:
            return ConsoleView.LOADING
        if status.state == BakeState.NO_SIGNER:
            return ConsoleView.ONBOARDING
        if status.state == BakeState.NOT_REGISTERED:
            return ConsoleView.REGISTRATION
        return ConsoleView.DASHBOARD

    def start(self) -> None:
        self.poller.resume()

    def _on_status(self, status: NodeStatus) -> None:
        registration = self.registration
        if (
            registration is not None
            and registration.step == RegistrationStep.SUBMITTED
            and status.state != BakeState.NOT_REGISTERED
        ):
            logger.info("Baker registration confirmed by the node")
            self.registration = None
            # Balances read while unregistered no longer apply
            get_cache().invalidate(self.chain.cache_namespace)
            if self.delegate.running:
                self.delegate.teardown()

        if status.delegate and not self.delegate.running:
            self.delegate.start()

    def _pause(self, owner: str) -> None:
        self._paused_by.add(owner)
        self.poller.pause()

    def _resume(self, owner: str) -> None:
        if owner not in self._paused_by:
            return
        self._paused_by.discard(owner)
        if not self._paused_by:
            self.poller.resume()

    # -- onboarding --

    def enter_onboarding(self) -> OnboardingWizard:
        """
        Enter the signer setup wizard, or return the one already in progress.

        Setup runs once: it is refused after a wizard has finished, and
        whenever the last snapshot does not report a missing signer.
        """
        if self.wizard is None or self.wizard.step == WizardStep.DONE:
            status = self.poller.status
            if self._signer_configured:
                raise ViewUnavailable("The signer has already been set up")
            if status is None or status.state != BakeState.NO_SIGNER:
                raise ViewUnavailable("Signer setup is only available while the node has no signer")
            self.wizard = OnboardingWizard(self.api, self.bus, on_finished=self._wizard_finished)
        self._pause("onboarding")
        return self.wizard

    def _wizard_finished(self) -> None:
        self._signer_configured = True
        self._resume("onboarding")

    def leave_onboarding(self) -> None:
        if self.wizard is not None:
            self.wizard.teardown()
            self.wizard = None
        self._resume("onboarding")

    # -- registration --

    def enter_registration(self) -> RegistrationTracker:
        if self.registration is None:
            self.registration = RegistrationTracker(
                self.api, self.chain, self.bus, on_submitted=self._registration_submitted
            )
        # Once submitted, only the next status snapshot can end registration
        if self.registration.step != RegistrationStep.SUBMITTED:
            self._pause("registration")
        return self.registration

    def _registration_submitted(self) -> None:
        self._resume("registration")

    def leave_registration(self) -> None:
        registration = self.registration
        if registration is not None:
            registration.teardown()
            # A submitted registration stays until the node confirms it
            if registration.step != RegistrationStep.SUBMITTED:
                self.registration = None
        self._resume("registration")

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready summary of what the console currently shows."""
        status = self.poller.status
        balance = self.delegate.balance
        return {
            "view": self.view.value,
            "connected": self.poller.connected,
            "polling": self.poller.running,
            "last_update": self.poller.last_update.isoformat() if self.poller.last_update else None,
            "status": status.model_dump(mode="json") if status else None,
            "balance": balance.model_dump(mode="json") if balance else None,
            "notifications": len(self.bus),
        }

    async def aclose(self) -> None:
        """Tear down every workflow; nothing keeps running afterwards."""
        self._unsubscribe()
        self.poller.pause()
        self.delegate.teardown()
        self.payouts.teardown()
        self.voting.teardown()
        self.settings.teardown()
        if self.wizard is not None:
            self.wizard.teardown()
        if self.registration is not None:
            self.registration.teardown()
        self._paused_by.clear()
        logger.debug("Console closed")
