"""
Broadcast lifecycle model.

Tracks a submitted transaction from submission to its final execution
status. The state is advisory until a terminal state has been observed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class BroadcastState(str, Enum):
    """State of a submitted transaction."""
    SUBMITTED = "submitted"       # Accepted by the RPC endpoint, not yet seen in a block
    ACCEPTED = "accepted"         # Included, execution status not yet read
    REJECTED = "rejected"         # Dropped by the sequencer before inclusion
    SUCCEEDED = "succeeded"       # Included and executed successfully
    REVERTED = "reverted"         # Included but execution reverted
    TIMED_OUT = "timed_out"       # Polling bound reached, final status unknown

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    BroadcastState.REJECTED,
    BroadcastState.SUCCEEDED,
    BroadcastState.REVERTED,
})

# Allowed transitions; anything else is a bug in the poller.
TRANSITIONS = {
    BroadcastState.SUBMITTED: frozenset({
        BroadcastState.SUBMITTED,
        BroadcastState.ACCEPTED,
        BroadcastState.REJECTED,
        BroadcastState.TIMED_OUT,
    }),
    BroadcastState.ACCEPTED: frozenset({
        BroadcastState.ACCEPTED,
        BroadcastState.SUCCEEDED,
        BroadcastState.REVERTED,
        BroadcastState.TIMED_OUT,
    }),
}


@dataclass
class BroadcastResult:
    """
    Outcome of a broadcast.

    Attributes:
        transaction_hash: Hash returned by the node
        state: Last observed state
        finality_status: Raw finality status from the node
        block_number: Block containing the transaction
        block_hash: Hash of that block
        revert_reason: Reason supplied by the node on revert
        submitted_at: When the submission was acknowledged
        completed_at: When a terminal state was observed
        polls: Number of status reads performed
    """

    transaction_hash: str
    state: BroadcastState = BroadcastState.SUBMITTED
    finality_status: Optional[str] = None
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    revert_reason: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    polls: int = 0

    def transition(self, new_state: BroadcastState) -> None:
        """Move to a new state, enforcing the lifecycle."""
        allowed = TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid broadcast transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        if new_state.is_terminal:
            self.completed_at = datetime.utcnow()

    @property
    def is_final(self) -> bool:
        return self.state.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.state == BroadcastState.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "transaction_hash": self.transaction_hash,
            "state": self.state.value,
            "finality_status": self.finality_status,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "revert_reason": self.revert_reason,
            "submitted_at": self.submitted_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "polls": self.polls,
        }

    def __repr__(self) -> str:
        return f"BroadcastResult(hash={self.transaction_hash[:12]}..., state={self.state.value})"
