"""Governance view: per-phase fetches and the actions each phase allows."""

import asyncio
import logging
from enum import Enum

from ..core.types import Alert, Ballot, Proposal, Severity, VotingPeriod, VotingPhase
from ..data.api import ApiError, ApiGateway, TransportError
from ..data.chain import ChainDataProvider
from .lifecycle import InvalidTransition, WorkflowScope
from .notifications import NotificationBus

logger = logging.getLogger(__name__)


class VotingAction(str, Enum):
    UPVOTE = "upvote"
    BALLOT = "ballot"


class PhaseFetch(str, Enum):
    PROPOSALS = "proposals"
    CURRENT_PROPOSAL = "current_proposal"
    BALLOTS = "ballots"


# What each phase needs from the chain, and what the operator may do in it
PHASES: dict[VotingPhase, tuple[tuple[PhaseFetch, ...], frozenset[VotingAction]]] = {
    VotingPhase.PROPOSAL: ((PhaseFetch.PROPOSALS,), frozenset({VotingAction.UPVOTE})),
    VotingPhase.EXPLORATION: (
        (PhaseFetch.CURRENT_PROPOSAL, PhaseFetch.BALLOTS),
        frozenset({VotingAction.BALLOT}),
    ),
    VotingPhase.COOLDOWN: ((PhaseFetch.CURRENT_PROPOSAL,), frozenset()),
    VotingPhase.PROMOTION: (
        (PhaseFetch.CURRENT_PROPOSAL, PhaseFetch.BALLOTS),
        frozenset({VotingAction.BALLOT}),
    ),
    VotingPhase.ADOPTION: ((), frozenset()),
}


class VotingPhaseEngine:
    """
    Loads the current voting period and dispatches on its phase.

    One load is outstanding at a time; a second call returns the last
    period. Results of a load that was in flight during teardown are discarded.
    """

    def __init__(self, api: ApiGateway, chain: ChainDataProvider, bus: NotificationBus):
        self.api = api
        self.chain = chain
        self.bus = bus
        self.scope = WorkflowScope("voting")

        self.period: VotingPeriod | None = None
        self.alert: Alert | None = None
        self.loading = False

    def allowed_actions(self) -> frozenset[VotingAction]:
        if self.period is None:
            return frozenset()
        return PHASES[self.period.phase][1]

    def can(self, action: VotingAction) -> bool:
        if action not in self.allowed_actions():
            return False
        if action == VotingAction.BALLOT:
            return not self.period.has_voted
        return True

    def _require(self, action: VotingAction) -> VotingPeriod:
        if action not in self.allowed_actions():
            phase = self.period.phase if self.period else VotingPhase.ADOPTION
            raise InvalidTransition("voting", phase, action)
        return self.period

    async def _secondary(self, fetch: PhaseFetch):
        if fetch == PhaseFetch.PROPOSALS:
            return await self.chain.get_proposals()
        if fetch == PhaseFetch.CURRENT_PROPOSAL:
            return await self.chain.get_current_proposal()
        return await self.chain.get_ballot_list()

    async def load(self, delegate: str) -> VotingPeriod | None:
        ticket = self.scope.claim("period")
        if ticket is None:
            return self.period

        self.loading = True
        try:
            phase, index, remaining = await self.chain.get_current_period()
            fetches = PHASES[phase][0]
            results = await asyncio.gather(*(self._secondary(f) for f in fetches))
        except ApiError as e:
            if ticket.valid:
                self.bus.error("Loading Voting Period Error", str(e))
            return self.period
        finally:
            if ticket.valid:
                self.loading = False
            ticket.release()

        if not ticket.valid:
            logger.debug(f"Discarding voting period {index} loaded before teardown")
            return self.period

        found = dict(zip(fetches, results))
        proposals: list[Proposal] = found.get(PhaseFetch.PROPOSALS) or []
        ballots = found.get(PhaseFetch.BALLOTS) or []
        self.period = VotingPeriod(
            phase=phase,
            period_index=index,
            remaining_blocks=remaining,
            proposals=proposals,
            current_proposal=found.get(PhaseFetch.CURRENT_PROPOSAL),
            has_voted=any(isinstance(b, dict) and b.get("pkh") == delegate for b in ballots),
        )
        return self.period

    async def upvote(self, proposal: str) -> str | None:
        """Upvote a proposal; returns the injected operation hash."""
        period = self._require(VotingAction.UPVOTE)
        ticket = self.scope.claim("vote")
        if ticket is None:
            return None
        self.alert = None
        try:
            data = await self.api.post("/api/voting/upvote", {"p": proposal, "i": period.period_index})
        except ApiError as e:
            if ticket.valid:
                if isinstance(e, TransportError):
                    self.bus.error("Upvote Error", str(e))
                self.alert = Alert(severity=Severity.DANGER, message=str(e))
            return None
        finally:
            ticket.release()

        if not ticket.valid:
            return None
        self.alert = Alert(severity=Severity.SUCCESS, message=f"Successfully cast vote for proposal: {proposal}!")
        logger.info(f"Upvoted {proposal} in period {period.period_index}")
        return data.get("ophash") if isinstance(data, dict) else None

    def cast_ballot(self, ballot: Ballot) -> bool:
        """
        Cast a yay/nay/pass ballot.

        The node has no ballot endpoint yet, so after validation this only
        reports that and makes no call.
        """
        period = self._require(VotingAction.BALLOT)
        if period.has_voted:
            self.alert = Alert(severity=Severity.INFO, message="You have already voted!")
            return False
        self.alert = Alert(
            severity=Severity.WARNING,
            message=f"Casting a '{ballot.value}' ballot is not supported by the node yet.",
        )
        return False

    def teardown(self) -> None:
        self.scope.teardown()
        self.loading = False
