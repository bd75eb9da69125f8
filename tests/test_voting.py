"""Tests for VotingPhaseEngine."""

import asyncio
import json

import pytest

from baconconsole.core.types import Ballot, Severity, VotingPhase
from baconconsole.services.lifecycle import InvalidTransition
from baconconsole.services.voting import VotingAction, VotingPhaseEngine

from conftest import BAKER, HEAD, connect_error, wait_for

PERIOD = f"{HEAD}/votes/current_period"
PROPOSALS = f"{HEAD}/votes/proposals"
CURRENT_PROPOSAL = f"{HEAD}/votes/current_proposal"
BALLOTS = f"{HEAD}/votes/ballot_list"


def period(kind: str, index: int = 50, remaining: int = 1000) -> dict:
    return {"voting_period": {"index": index, "kind": kind, "start_position": 0}, "position": 10, "remaining": remaining}


@pytest.fixture()
def engine(api, chain, bus) -> VotingPhaseEngine:
    return VotingPhaseEngine(api, chain, bus)


class TestLoad:
    @pytest.mark.asyncio
    async def test_proposal_phase_fetches_proposals(self, node, engine):
        node.route(PERIOD, period("proposal"))
        node.route(PROPOSALS, [["PtHangz2", 1200], ["PsAlpha", 30]])

        result = await engine.load(BAKER)

        assert result.phase == VotingPhase.PROPOSAL
        assert result.period_index == 50
        assert [p.hash for p in result.proposals] == ["PtHangz2", "PsAlpha"]
        assert result.proposals[0].upvotes == 1200
        assert node.calls(BALLOTS) == []
        assert engine.can(VotingAction.UPVOTE)

    @pytest.mark.asyncio
    async def test_exploration_derives_has_voted(self, node, engine):
        node.route(PERIOD, period("exploration"))
        node.route(CURRENT_PROPOSAL, "PtHangz2")
        node.route(BALLOTS, [{"pkh": "tz1other", "ballot": "nay"}, {"pkh": BAKER, "ballot": "yay"}])

        result = await engine.load(BAKER)

        assert result.current_proposal == "PtHangz2"
        assert result.has_voted
        assert not engine.can(VotingAction.BALLOT)

    @pytest.mark.asyncio
    async def test_promotion_fetches_ballots(self, node, engine):
        node.route(PERIOD, period("promotion"))
        node.route(CURRENT_PROPOSAL, "PtHangz2")
        node.route(BALLOTS, [])

        result = await engine.load(BAKER)

        assert not result.has_voted
        assert engine.can(VotingAction.BALLOT)
        assert len(node.calls(BALLOTS)) == 1

    @pytest.mark.asyncio
    async def test_cooldown_and_adoption(self, node, engine):
        node.route(PERIOD, period("cooldown"))
        node.route(CURRENT_PROPOSAL, "PtHangz2")
        result = await engine.load(BAKER)
        assert result.current_proposal == "PtHangz2"
        assert engine.allowed_actions() == frozenset()

        node.route(PERIOD, period("adoption"))
        result = await engine.load(BAKER)
        assert result.phase == VotingPhase.ADOPTION
        assert result.current_proposal is None
        assert len(node.calls(CURRENT_PROPOSAL)) == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_period(self, node, engine, bus):
        node.route(PERIOD, period("proposal"))
        node.route(PROPOSALS, [])
        first = await engine.load(BAKER)

        node.route(PERIOD, connect_error)
        assert await engine.load(BAKER) is first
        assert bus.notifications[-1].title == "Loading Voting Period Error"

    @pytest.mark.asyncio
    async def test_overlapping_load_makes_no_second_call(self, node, engine):
        gate = asyncio.Event()

        async def slow_period(request):
            await gate.wait()
            return period("proposal", index=50)

        node.route(PERIOD, slow_period)
        node.route(PROPOSALS, [["PtFirst", 1]])
        first = asyncio.create_task(engine.load(BAKER))
        await wait_for(lambda: node.calls(PERIOD))

        assert await engine.load(BAKER) is None
        assert len(node.calls(PERIOD)) == 1

        gate.set()
        loaded = await first

        assert engine.period is loaded
        assert len(node.calls(PROPOSALS)) == 1

        node.route(PERIOD, period("proposal", index=51))
        assert (await engine.load(BAKER)).period_index == 51

    @pytest.mark.asyncio
    async def test_load_after_teardown_is_discarded(self, node, engine):
        gate = asyncio.Event()

        async def slow_period(request):
            await gate.wait()
            return period("proposal")

        node.route(PERIOD, slow_period)
        node.route(PROPOSALS, [])
        pending = asyncio.create_task(engine.load(BAKER))
        await wait_for(lambda: node.calls(PERIOD))

        engine.teardown()
        gate.set()

        assert await pending is None
        assert engine.period is None


class TestActions:
    @pytest.mark.asyncio
    async def test_upvote(self, node, engine):
        node.route(PERIOD, period("proposal", index=50))
        node.route(PROPOSALS, [["PtHangz2", 1]])
        node.route("/api/voting/upvote", {"ophash": "ooVote"})
        await engine.load(BAKER)

        assert await engine.upvote("PtHangz2") == "ooVote"
        assert json.loads(node.calls("/api/voting/upvote")[0].content) == {"p": "PtHangz2", "i": 50}
        assert engine.alert.severity == Severity.SUCCESS
        assert engine.alert.message == "Successfully cast vote for proposal: PtHangz2!"

    @pytest.mark.asyncio
    async def test_upvote_outside_proposal_phase(self, node, engine):
        node.route(PERIOD, period("cooldown"))
        node.route(CURRENT_PROPOSAL, "PtHangz2")
        await engine.load(BAKER)

        with pytest.raises(InvalidTransition):
            await engine.upvote("PtHangz2")
        assert node.calls("/api/voting/upvote") == []

    @pytest.mark.asyncio
    async def test_ballot_reports_unsupported_without_a_call(self, node, engine):
        node.route(PERIOD, period("exploration"))
        node.route(CURRENT_PROPOSAL, "PtHangz2")
        node.route(BALLOTS, [])
        await engine.load(BAKER)
        requests = len(node.requests)

        assert engine.cast_ballot(Ballot.YAY) is False
        assert "not supported" in engine.alert.message
        assert len(node.requests) == requests

    @pytest.mark.asyncio
    async def test_ballot_when_already_voted(self, node, engine):
        node.route(PERIOD, period("promotion"))
        node.route(CURRENT_PROPOSAL, "PtHangz2")
        node.route(BALLOTS, [{"pkh": BAKER, "ballot": "pass"}])
        await engine.load(BAKER)

        assert engine.cast_ballot(Ballot.NAY) is False
        assert engine.alert.message == "You have already voted!"
