"""
txretrace - Reconstruct and verify historical TON transactions.

txretrace re-executes a past transaction locally, on the exact account state
and round context it originally ran against, and checks the result against
the chain:
- Locates the transaction, its shard block and consensus round
- Replays the earlier transactions of the same account in that round
- Resolves library cells, retrying when the VM reports a missing one
- Verifies the resulting state hash and reports money flow and actions

Example usage:
    $ txretrace retrace <tx_hash>
    $ txretrace retrace <tx_hash> --testnet --json
    $ txretrace locate <tx_hash>
"""

__version__ = "0.1.0"
__author__ = "txretrace Contributors"

__all__ = [
    "__version__",
    "__author__",
]
