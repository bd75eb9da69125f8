"""Read-only chain data from a public Tezos RPC node."""

import logging

import httpx

from ..core.config import get_settings
from ..core.types import DelegateBalance, Proposal, VotingPhase
from .api import ApiGateway, BackendError
from .cache import cached

logger = logging.getLogger(__name__)

HEAD = "/chains/main/blocks/head"


class ChainDataProvider:
    """
    Fetches balances and governance data from a chain RPC node.

    The RPC is outside our control: it goes through the same ApiGateway
    normalization as the node API, so callers handle one error family.
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.gateway = ApiGateway(rpc_url or settings.chain_rpc_url, transport=transport)
        self._transport = transport

    @property
    def cache_namespace(self) -> str:
        return self.gateway.base_url

    async def get_balance(self, address: str) -> int:
        """Spendable balance of any contract, in mutez."""
        data = await self.gateway.get(f"{HEAD}/context/contracts/{address}")
        try:
            return int(data["balance"])
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError(f"Unexpected balance response for {address}") from e

    @cached()
    async def get_delegate_balance(self, address: str) -> DelegateBalance:
        """Balances and delegation stats of a registered delegate."""
        data = await self.gateway.get(f"{HEAD}/context/delegates/{address}")
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected delegate response for {address}")
        return DelegateBalance.from_delegate_info(data)

    async def get_current_period(self) -> tuple[VotingPhase, int, int]:
        """
        Current voting period as (phase, index, remaining blocks).

        The RPC returns:
        {
            "voting_period": {"index": 42, "kind": "proposal", "start_position": ...},
            "position": 100,
            "remaining": 20379
        }
        """
        data = await self.gateway.get(f"{HEAD}/votes/current_period")
        try:
            period = data["voting_period"]
            return VotingPhase(period["kind"]), int(period["index"]), int(data.get("remaining", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError("Unrecognized voting period response") from e

    async def get_proposals(self) -> list[Proposal]:
        """Active proposals with their upvote counts ([[hash, count], ...])."""
        data = await self.gateway.get(f"{HEAD}/votes/proposals")
        try:
            return [Proposal(hash=entry[0], upvotes=int(entry[1])) for entry in data or []]
        except (IndexError, KeyError, TypeError, ValueError) as e:
            raise BackendError("Unrecognized proposals response") from e

    async def get_current_proposal(self) -> str | None:
        return await self.gateway.get(f"{HEAD}/votes/current_proposal") or None

    async def get_ballot_list(self) -> list[dict]:
        """Ballots cast so far: [{"pkh": ..., "ballot": "yay"}, ...]."""
        return await self.gateway.get(f"{HEAD}/votes/ballot_list") or []

    async def get_head_header(self, rpc_url: str | None = None) -> dict:
        """Head block header, optionally from another RPC (endpoint sanity checks)."""
        if rpc_url is None:
            return await self.gateway.get(f"{HEAD}/header")
        other = ApiGateway(rpc_url, transport=self._transport)
        return await other.get(f"{HEAD}/header")
