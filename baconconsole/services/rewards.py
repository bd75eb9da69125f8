"""Delegator reward arithmetic for payout cycles."""

import logging
from decimal import ROUND_DOWN, Decimal

from ..core.types import CycleDetail, PayoutDetailRecord

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


def share_percent(delegator_balance: int, staking_balance: int) -> Decimal:
    """Delegator's share of the staking balance, in percent."""
    if staking_balance <= 0:
        return Decimal(0)
    return Decimal(delegator_balance) / Decimal(staking_balance) * HUNDRED


def gross(block_reward: int, share: Decimal) -> Decimal:
    return Decimal(block_reward) * share / HUNDRED


def delegator_reward(
    delegator_balance: int,
    staking_balance: int,
    block_reward: int,
    fee_percent: int | Decimal,
) -> Decimal:
    """
    Reward owed to a delegator after the baker's fee.

    All amounts are mutez; the result is exact and not yet rounded.
    """
    share = share_percent(delegator_balance, staking_balance)
    return gross(block_reward, share) * (1 - Decimal(fee_percent) / HUNDRED)


def reward_mutez(
    delegator_balance: int,
    staking_balance: int,
    block_reward: int,
    fee_percent: int | Decimal,
) -> int:
    """Reward truncated to whole mutez, the way the node pays it out."""
    exact = delegator_reward(delegator_balance, staking_balance, block_reward, fee_percent)
    return int(exact.to_integral_value(rounding=ROUND_DOWN))


def verify_cycle(detail: CycleDetail) -> list[tuple[PayoutDetailRecord, int]]:
    """
    Recompute every record of a cycle.

    Returns (record, expected_mutez) for each record whose reported reward
    differs from the recomputed one.
    """
    meta = detail.metadata
    mismatches = []
    for record in detail.records:
        expected = reward_mutez(
            record.delegator_balance, meta.staking_balance, meta.block_reward, meta.baker_fee
        )
        if expected != record.reward_amount:
            mismatches.append((record, expected))

    if mismatches:
        logger.warning(f"Cycle {meta.cycle}: {len(mismatches)} payout(s) differ from recomputed rewards")
    return mismatches
