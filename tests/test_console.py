"""End-to-end tests of the Console controller against a fake node."""

import pytest
import pytest_asyncio

from baconconsole.services.console import Console, ConsoleView, ViewUnavailable
from baconconsole.services.registration import RegistrationStep
from baconconsole.services.wizard import Custody, WizardStep

from conftest import BAKER, HEAD, STATUS_CAN_BAKE, wait_for

DELEGATE_INFO = {
    "balance": "10000000000",
    "frozen_balance": "3000000000",
    "staking_balance": "50000000000",
    "delegated_balance": "40000000000",
    "delegated_contracts": ["tz1a", "tz1b", BAKER],
}


def status_with(state: str) -> dict:
    return {**STATUS_CAN_BAKE, "state": state}


@pytest_asyncio.fixture()
async def console(api, chain, bus):
    bacon = Console(api=api, chain=chain, bus=bus, status_interval=0.01, delegate_interval=10)
    yield bacon
    await bacon.aclose()


class TestView:
    @pytest.mark.asyncio
    async def test_loading_until_first_snapshot(self, node, console):
        node.route("/api/status", STATUS_CAN_BAKE)
        node.route(f"{HEAD}/context/delegates/{BAKER}", DELEGATE_INFO)
        assert console.view == ConsoleView.LOADING

        console.start()
        await wait_for(lambda: console.status is not None)

        assert console.view == ConsoleView.DASHBOARD

    @pytest.mark.asyncio
    async def test_state_selects_view(self, node, console):
        node.route(f"{HEAD}/context/contracts/{BAKER}", {"balance": "1000"})

        node.route("/api/status", status_with("nosign"))
        await console.poller.refresh()
        assert console.view == ConsoleView.ONBOARDING

        node.route("/api/status", status_with("noreg"))
        await console.poller.refresh()
        assert console.view == ConsoleView.REGISTRATION

    @pytest.mark.asyncio
    async def test_delegate_balance_follows_registration_state(self, node, console):
        node.route("/api/status", STATUS_CAN_BAKE)
        node.route(f"{HEAD}/context/delegates/{BAKER}", DELEGATE_INFO)
        console.start()
        await wait_for(lambda: console.delegate.balance is not None)

        balance = console.delegate.balance
        assert balance.spendable == 7_000_000_000
        assert balance.frozen == 3_000_000_000
        assert balance.delegator_count == 3

    @pytest.mark.asyncio
    async def test_unregistered_baker_reads_plain_balance(self, node, console):
        node.route("/api/status", status_with("noreg"))
        node.route(f"{HEAD}/context/contracts/{BAKER}", {"balance": "9000000000"})
        console.start()
        await wait_for(lambda: console.delegate.balance is not None)

        assert console.delegate.balance.spendable == 9_000_000_000
        assert node.calls(f"{HEAD}/context/delegates/{BAKER}") == []


class TestOnboarding:
    @pytest.mark.asyncio
    async def test_wizard_pauses_and_finish_resumes_once(self, node, console):
        node.route("/api/status", status_with("nosign"))
        node.route("/api/wizard/generateNewKey", {"edsk": "edsk" + "1" * 50, "pkh": BAKER})
        node.route("/api/wizard/finish", {})
        console.start()
        await wait_for(lambda: console.status is not None)

        wizard = console.enter_onboarding()
        assert not console.poller.running
        assert console.view == ConsoleView.ONBOARDING

        wizard.begin()
        wizard.choose_custody(Custody.SOFTWARE)
        await wizard.generate_key()
        wizard.confirm_key()
        await wizard.finish()

        assert wizard.step == WizardStep.DONE
        assert console.poller.running
        assert console.poller.scope.active_timers == 1

        # Leaving after finishing must not start a second timer
        console.leave_onboarding()
        assert console.poller.scope.active_timers == 1

        node.route("/api/status", STATUS_CAN_BAKE)
        await wait_for(lambda: console.view == ConsoleView.DASHBOARD)

    @pytest.mark.asyncio
    async def test_leaving_wizard_resumes(self, node, console):
        node.route("/api/status", status_with("nosign"))
        console.start()
        await wait_for(lambda: console.status is not None)

        console.enter_onboarding()
        console.leave_onboarding()

        assert console.poller.running
        assert console.wizard is None

    @pytest.mark.asyncio
    async def test_setup_refused_once_signer_exists(self, node, console):
        node.route("/api/status", STATUS_CAN_BAKE)
        node.route(f"{HEAD}/context/delegates/{BAKER}", DELEGATE_INFO)
        await console.poller.refresh()

        with pytest.raises(ViewUnavailable):
            console.enter_onboarding()
        assert console.wizard is None

    @pytest.mark.asyncio
    async def test_finished_wizard_cannot_be_reentered(self, node, console):
        node.route("/api/status", status_with("nosign"))
        node.route("/api/wizard/generateNewKey", {"edsk": "edsk" + "1" * 50, "pkh": BAKER})
        node.route("/api/wizard/finish", {})
        console.start()
        await wait_for(lambda: console.status is not None)

        wizard = console.enter_onboarding()
        wizard.begin()
        wizard.choose_custody(Custody.SOFTWARE)
        await wizard.generate_key()
        wizard.confirm_key()
        await wizard.finish()

        # The node has not reported the signer yet, but setup already ran
        with pytest.raises(ViewUnavailable):
            console.enter_onboarding()
        assert console.wizard is wizard
        assert console.poller.running
        assert wizard.state.custody == Custody.SOFTWARE


class TestRegistration:
    @pytest.mark.asyncio
    async def test_submitted_registration_waits_for_the_network(self, node, console):
        node.route("/api/status", status_with("noreg"))
        node.route(f"{HEAD}/context/contracts/{BAKER}", {"balance": "9000000000"})
        node.route("/api/wizard/registerBaker", {"ophash": "ooRegister"})
        console.start()
        await wait_for(lambda: console.status is not None)

        tracker = console.enter_registration()
        assert not console.poller.running
        await tracker.refresh_balance(BAKER)
        assert await tracker.submit() == RegistrationStep.SUBMITTED

        # Polling is back, but the node still says not registered
        assert console.poller.running
        polls = len(node.calls("/api/status"))
        await wait_for(lambda: len(node.calls("/api/status")) > polls + 2)
        assert console.view == ConsoleView.REGISTRATION

        node.route("/api/status", STATUS_CAN_BAKE)
        node.route(f"{HEAD}/context/delegates/{BAKER}", DELEGATE_INFO)
        await wait_for(lambda: console.view == ConsoleView.DASHBOARD)
        assert console.registration is None

    @pytest.mark.asyncio
    async def test_reentering_after_submit_keeps_polling(self, node, console):
        node.route("/api/status", status_with("noreg"))
        node.route(f"{HEAD}/context/contracts/{BAKER}", {"balance": "9000000000"})
        node.route("/api/wizard/registerBaker", {"ophash": "ooRegister"})
        console.start()
        await wait_for(lambda: console.status is not None)

        tracker = console.enter_registration()
        await tracker.refresh_balance(BAKER)
        await tracker.submit()

        assert console.enter_registration() is tracker
        assert console.poller.running

        node.route("/api/status", STATUS_CAN_BAKE)
        node.route(f"{HEAD}/context/delegates/{BAKER}", DELEGATE_INFO)
        await wait_for(lambda: console.view == ConsoleView.DASHBOARD)
        assert console.registration is None
        assert console.poller.running

    @pytest.mark.asyncio
    async def test_leave_before_submit(self, node, console):
        node.route("/api/status", status_with("noreg"))
        node.route(f"{HEAD}/context/contracts/{BAKER}", {"balance": "1"})
        console.start()
        await wait_for(lambda: console.status is not None)

        console.enter_registration()
        console.leave_registration()

        assert console.registration is None
        assert console.poller.running


class TestClose:
    @pytest.mark.asyncio
    async def test_aclose_stops_every_timer(self, node, api, chain, bus):
        node.route("/api/status", STATUS_CAN_BAKE)
        node.route(f"{HEAD}/context/delegates/{BAKER}", DELEGATE_INFO)
        node.route("/api/payouts/cycledetail", {"metadata": {"c": 300, "st": "inprog"}, "payouts": {}})
        bacon = Console(api=api, chain=chain, bus=bus, status_interval=0.01, payout_interval=0.01)
        bacon.start()
        await wait_for(lambda: bacon.delegate.running)
        await bacon.payouts.view_cycle(300)
        assert bacon.payouts.polling

        await bacon.aclose()

        assert not bacon.poller.running
        assert not bacon.delegate.running
        assert not bacon.payouts.polling

    @pytest.mark.asyncio
    async def test_snapshot(self, node, console):
        node.route("/api/status", STATUS_CAN_BAKE)
        node.route(f"{HEAD}/context/delegates/{BAKER}", DELEGATE_INFO)
        await console.poller.refresh()

        snapshot = console.snapshot()

        assert snapshot["view"] == "dashboard"
        assert snapshot["connected"] is True
        assert snapshot["status"]["delegate"] == BAKER
