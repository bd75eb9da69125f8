"""Onboarding wizard: one-time choice and provisioning of key custody."""

import logging
from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict, SecretStr

from ..core.types import Alert, KeyMaterial, LedgerInfo, Severity
from ..data.api import ApiError, ApiGateway, BackendError, TransportError
from .lifecycle import InvalidTransition, Ticket, WorkflowScope, transition
from .notifications import NotificationBus

logger = logging.getLogger(__name__)

SECRET_KEY_PREFIX = "edsk"
SECRET_KEY_LENGTHS = (54, 98)


class Custody(str, Enum):
    SOFTWARE = "software"
    LEDGER = "ledger"


class WizardStep(str, Enum):
    START = "start"
    CHOOSE_CUSTODY = "choose_custody"
    # software branch
    GENERATE_OR_IMPORT = "generate_or_import"
    KEY_DISPLAYED = "key_displayed"
    # ledger branch
    TEST_DEVICE = "test_device"
    DEVICE_DETECTED = "device_detected"
    CONFIRM_ADDRESS_ON_DEVICE = "confirm_address_on_device"
    # shared tail
    CONFIRMED = "confirmed"
    DONE = "done"


class WizardEvent(str, Enum):
    BEGIN = "begin"
    CHOOSE_SOFTWARE = "choose_software"
    CHOOSE_LEDGER = "choose_ledger"
    KEY_GENERATED = "key_generated"
    KEY_IMPORTED = "key_imported"
    KEY_CONFIRMED = "key_confirmed"
    DEVICE_FOUND = "device_found"
    DEVICE_FAILED = "device_failed"
    ADDRESS_REQUESTED = "address_requested"
    ADDRESS_CONFIRMED = "address_confirmed"
    ADDRESS_REJECTED = "address_rejected"
    FINISHED = "finished"


S, E = WizardStep, WizardEvent

TRANSITIONS: dict[tuple[WizardStep, WizardEvent], WizardStep] = {
    (S.START, E.BEGIN): S.CHOOSE_CUSTODY,
    (S.CHOOSE_CUSTODY, E.CHOOSE_SOFTWARE): S.GENERATE_OR_IMPORT,
    (S.CHOOSE_CUSTODY, E.CHOOSE_LEDGER): S.TEST_DEVICE,
    # software
    (S.GENERATE_OR_IMPORT, E.KEY_GENERATED): S.KEY_DISPLAYED,
    (S.GENERATE_OR_IMPORT, E.KEY_IMPORTED): S.KEY_DISPLAYED,
    (S.KEY_DISPLAYED, E.KEY_CONFIRMED): S.CONFIRMED,
    # ledger
    (S.TEST_DEVICE, E.DEVICE_FOUND): S.DEVICE_DETECTED,
    (S.TEST_DEVICE, E.DEVICE_FAILED): S.TEST_DEVICE,
    (S.DEVICE_DETECTED, E.DEVICE_FOUND): S.DEVICE_DETECTED,
    (S.DEVICE_DETECTED, E.DEVICE_FAILED): S.TEST_DEVICE,
    (S.DEVICE_DETECTED, E.ADDRESS_REQUESTED): S.CONFIRM_ADDRESS_ON_DEVICE,
    (S.CONFIRM_ADDRESS_ON_DEVICE, E.ADDRESS_CONFIRMED): S.CONFIRMED,
    (S.CONFIRM_ADDRESS_ON_DEVICE, E.ADDRESS_REJECTED): S.CONFIRM_ADDRESS_ON_DEVICE,
    (S.CONFIRMED, E.FINISHED): S.DONE,
}

SOFTWARE_STEPS = frozenset({S.GENERATE_OR_IMPORT, S.KEY_DISPLAYED})
LEDGER_STEPS = frozenset({S.TEST_DEVICE, S.DEVICE_DETECTED, S.CONFIRM_ADDRESS_ON_DEVICE})


def next_step(step: WizardStep, event: WizardEvent) -> WizardStep:
    return transition("onboarding", TRANSITIONS, step, event)


def validate_secret_key(secret: str) -> str | None:
    """Shape check done before any call. Returns the field error, if any."""
    if not secret.startswith(SECRET_KEY_PREFIX):
        return f"Secret key must begin with '{SECRET_KEY_PREFIX}'"
    if len(secret) not in SECRET_KEY_LENGTHS:
        return "Secret key must be 54 or 98 characters long."
    return None


class WizardState(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: WizardStep = WizardStep.START
    custody: Custody | None = None
    key: KeyMaterial | None = None
    ledger: LedgerInfo | None = None
    field_error: str | None = None
    alert: Alert | None = None
    waiting_on_device: bool = False
    busy: bool = False


class OnboardingWizard:
    """
    Walks the operator through key custody setup.

    Every step waits on an explicit operator action. The custody choice is
    permanent: the transition table has no edge between the two branches,
    and DONE accepts nothing.
    """

    def __init__(
        self,
        api: ApiGateway,
        bus: NotificationBus,
        on_finished: Callable[[], None] | None = None,
    ):
        self.api = api
        self.bus = bus
        self.on_finished = on_finished
        self.scope = WorkflowScope("onboarding")
        self._state = WizardState()

    @property
    def state(self) -> WizardState:
        return self._state

    @property
    def step(self) -> WizardStep:
        return self._state.step

    def _update(self, **changes) -> WizardState:
        self._state = self._state.model_copy(update=changes)
        return self._state

    def _fire(self, event: WizardEvent, **changes) -> WizardState:
        step = next_step(self._state.step, event)
        key = changes.get("key", self._state.key)
        if key is not None and key.secret_key is not None and step != WizardStep.KEY_DISPLAYED:
            # The secret is shown once; it never outlives the display step
            changes["key"] = KeyMaterial(public_key_hash=key.public_key_hash)
        return self._update(step=step, **changes)

    def _claim(self, event: WizardEvent) -> Ticket | None:
        next_step(self._state.step, event)  # reject before any network call
        ticket = self.scope.claim("request")
        if ticket is not None:
            self._update(busy=True, alert=None, field_error=None)
        return ticket

    def _done(self, ticket: Ticket) -> None:
        ticket.release()
        if ticket.valid:
            self._update(busy=False, waiting_on_device=False)

    def _fail(self, title: str, error: ApiError) -> None:
        if isinstance(error, TransportError):
            self.bus.error(title, str(error))
        self._update(alert=Alert(severity=Severity.DANGER, message=str(error)))

    def begin(self) -> WizardState:
        return self._fire(WizardEvent.BEGIN)

    def choose_custody(self, custody: Custody) -> WizardState:
        event = WizardEvent.CHOOSE_SOFTWARE if custody is Custody.SOFTWARE else WizardEvent.CHOOSE_LEDGER
        logger.info(f"Custody chosen: {custody.value}")
        return self._fire(event, custody=custody)

    # -- software branch --

    async def generate_key(self) -> WizardState:
        ticket = self._claim(WizardEvent.KEY_GENERATED)
        if ticket is None:
            return self._state
        try:
            data = await self.api.get("/api/wizard/generateNewKey")
            key = KeyMaterial(secret_key=SecretStr(data["edsk"]), public_key_hash=data["pkh"])
        except (KeyError, TypeError):
            if ticket.valid:
                self._fail("Generate Key Error", BackendError("Unexpected response generating key"))
            return self._state
        except ApiError as e:
            if ticket.valid:
                self._fail("Generate Key Error", e)
            return self._state
        finally:
            self._done(ticket)

        if ticket.valid:
            logger.info(f"Generated new key {key.public_key_hash}")
            self._fire(WizardEvent.KEY_GENERATED, key=key)
        return self._state

    async def import_key(self, secret: str) -> WizardState:
        next_step(self._state.step, WizardEvent.KEY_IMPORTED)
        secret = secret.strip()
        error = validate_secret_key(secret)
        if error is not None:
            return self._update(field_error=error, alert=None)

        ticket = self._claim(WizardEvent.KEY_IMPORTED)
        if ticket is None:
            return self._state
        try:
            data = await self.api.post("/api/wizard/importKey", {"edsk": secret})
            pkh = data["pkh"]
        except (KeyError, TypeError):
            if ticket.valid:
                self._fail("Import Key Error", BackendError("Unexpected response importing key"))
            return self._state
        except ApiError as e:
            if ticket.valid:
                self._fail("Import Key Error", e)
            return self._state
        finally:
            self._done(ticket)

        if ticket.valid:
            logger.info(f"Imported key {pkh}")
            # The operator already holds this secret; only the address is shown back
            self._fire(WizardEvent.KEY_IMPORTED, key=KeyMaterial(public_key_hash=pkh))
        return self._state

    def confirm_key(self) -> WizardState:
        """Operator acknowledges the key; the secret is dropped from state."""
        return self._fire(WizardEvent.KEY_CONFIRMED, alert=None)

    # -- ledger branch --

    async def test_device(self) -> WizardState:
        ticket = self._claim(WizardEvent.DEVICE_FOUND)
        if ticket is None:
            return self._state
        try:
            data = await self.api.get("/api/wizard/testLedger")
            if not isinstance(data, dict):
                raise BackendError("Unexpected response testing ledger")
            info = LedgerInfo.from_api(data)
        except ApiError as e:
            if ticket.valid:
                self._fail("Ledger Error", e)
                self._fire(WizardEvent.DEVICE_FAILED, ledger=None)
            return self._state
        finally:
            self._done(ticket)

        if ticket.valid:
            self._fire(
                WizardEvent.DEVICE_FOUND,
                ledger=info,
                alert=Alert(severity=Severity.SUCCESS, message=f"Detected ledger: {info.version}"),
            )
        return self._state

    def continue_to_address(self) -> WizardState:
        ledger = self._state.ledger
        return self._fire(
            WizardEvent.ADDRESS_REQUESTED,
            alert=Alert(severity=Severity.SUCCESS, message=f"Baking Address: {ledger.pkh if ledger else ''}"),
        )

    async def confirm_address(self) -> WizardState:
        """
        Ask the node to have the operator confirm the address on the device.

        Waits for as long as the node does; the device interaction timeout
        belongs to the node.
        """
        ticket = self._claim(WizardEvent.ADDRESS_CONFIRMED)
        if ticket is None:
            return self._state
        ledger = self._state.ledger or LedgerInfo()
        self._update(waiting_on_device=True)
        try:
            await self.api.post(
                "/api/wizard/confirmBakingPkh",
                {"bp": ledger.bip_path, "pkh": ledger.pkh},
                timeout=None,
            )
        except ApiError as e:
            if ticket.valid:
                self._fail("Ledger Error", e)
                self._fire(WizardEvent.ADDRESS_REJECTED)
            return self._state
        finally:
            self._done(ticket)

        if ticket.valid:
            logger.info(f"Baking address {ledger.pkh} confirmed on device")
            self._fire(
                WizardEvent.ADDRESS_CONFIRMED,
                alert=Alert(severity=Severity.SUCCESS, message=f"Baking address, {ledger.pkh}, confirmed!"),
            )
        return self._state

    # -- exit --

    async def finish(self) -> WizardState:
        """Tell the node to persist the signer; control returns only on success."""
        ticket = self._claim(WizardEvent.FINISHED)
        if ticket is None:
            return self._state
        try:
            await self.api.get("/api/wizard/finish")
        except ApiError as e:
            if ticket.valid:
                self._fail("Setup Wizard Error", e)
            return self._state
        finally:
            self._done(ticket)

        if not ticket.valid:
            return self._state
        self._fire(WizardEvent.FINISHED, alert=None)
        logger.info("Setup wizard finished")
        if self.on_finished is not None:
            self.on_finished()
        return self._state

    def teardown(self) -> None:
        """Abandon the wizard; outstanding calls resolve into nothing."""
        self.scope.teardown()
        if self._state.key is not None and self._state.key.secret_key is not None:
            self._state = self._state.model_copy(
                update={"key": KeyMaterial(public_key_hash=self._state.key.public_key_hash)}
            )
        self._update(busy=False, waiting_on_device=False)


__all__ = [
    "Custody",
    "InvalidTransition",
    "OnboardingWizard",
    "WizardEvent",
    "WizardState",
    "WizardStep",
    "next_step",
    "validate_secret_key",
]
