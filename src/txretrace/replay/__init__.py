"""
Replay module for txretrace.

This module rebuilds the state an account had right before a target
transaction by re-executing every earlier transaction of the same
masterchain block.

How it works:
    1. Start from the account state as of the previous masterchain block
    2. Run each preceding transaction (oldest first) through the emulator
    3. Feed every resulting snapshot into the next step
    4. Stop at the first non-success result

Example:
    from txretrace.replay import StateReplayer, StateSnapshot

    replayer = StateReplayer(codec)
    outcome = await replayer.replay(StateSnapshot(boc), balance, previous, session)
    print(f"Replayed {len(outcome.chain) - 1} transactions")
"""

from txretrace.replay.engine import ReplayOutcome, SnapshotChain, StateReplayer, StateSnapshot

__all__ = [
    "ReplayOutcome",
    "SnapshotChain",
    "StateReplayer",
    "StateSnapshot",
]
