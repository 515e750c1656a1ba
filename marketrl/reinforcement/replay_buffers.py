"""Prioritized experience replay for the policy trainer.

The store is a fixed-capacity ring buffer. Insertion past capacity evicts the
oldest transition regardless of its priority. Sampling draws distinct slots
with probability proportional to ``priority ** alpha`` and returns
importance-sampling weights ``(N * P(i)) ** -beta`` normalized by the batch
maximum.

Every stored transition carries a monotonically increasing insertion id. A
sampled batch remembers the ids it saw, so a priority write-back for a slot
that was overwritten in the meantime is dropped instead of landing on the
newer transition.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

import numpy as np
import torch
from numpy.typing import NDArray

from marketrl.errors import InvalidTransitionError, ShapeMismatchError
from marketrl.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Transition:
    """One recorded decision and its outcome.

    Attributes:
        state: State vector observed before acting.
        action: Index of the chosen action.
        reward: Scalar reward assigned after the fact.
        next_state: State vector observed after acting.
        done: True when ``next_state`` ends the episode.
        priority: Sampling priority at the time the transition was read.
        action_prob: Policy probability of ``action`` at collection time.
        insertion_id: Position in the global insertion order.
    """

    state: NDArray[np.float32]
    action: int
    reward: float
    next_state: NDArray[np.float32]
    done: bool
    priority: float = 0.0
    action_prob: Optional[float] = None
    insertion_id: int = -1


@dataclass
class SampledBatch:
    """Transitions drawn from the store plus their sampling metadata."""

    transitions: List[Transition]
    indices: NDArray[np.int64]
    weights: NDArray[np.float64]
    probabilities: NDArray[np.float64]
    insertion_ids: NDArray[np.int64]

    def __len__(self) -> int:
        return len(self.transitions)

    def validate(self, state_dim: int, action_dim: int) -> None:
        """Raise ShapeMismatchError if any item disagrees with the architecture."""
        for t in self.transitions:
            for name, vec in (("state", t.state), ("next_state", t.next_state)):
                if vec.ndim != 1 or vec.shape[0] != state_dim:
                    raise ShapeMismatchError(
                        f"{name} of transition {t.insertion_id} has shape "
                        f"{tuple(vec.shape)}, expected ({state_dim},)",
                        field=name,
                        expected=state_dim,
                        actual=tuple(vec.shape),
                    )
            if not 0 <= t.action < action_dim:
                raise ShapeMismatchError(
                    f"action {t.action} of transition {t.insertion_id} "
                    f"outside [0, {action_dim})",
                    field="action",
                    expected=action_dim,
                    actual=t.action,
                )

    def to_tensors(self, device: str = "cpu") -> Dict[str, torch.Tensor]:
        """Stack the batch into tensors keyed by field name.

        ``old_probs`` holds NaN where the producer did not record a
        collection-time probability.
        """
        ts = self.transitions
        old_probs = [np.nan if t.action_prob is None else t.action_prob for t in ts]
        return {
            "states": torch.as_tensor(
                np.stack([t.state for t in ts]), dtype=torch.float32, device=device
            ),
            "actions": torch.as_tensor(
                [t.action for t in ts], dtype=torch.long, device=device
            ),
            "rewards": torch.as_tensor(
                [t.reward for t in ts], dtype=torch.float32, device=device
            ),
            "next_states": torch.as_tensor(
                np.stack([t.next_state for t in ts]),
                dtype=torch.float32,
                device=device,
            ),
            "dones": torch.as_tensor(
                [float(t.done) for t in ts], dtype=torch.float32, device=device
            ),
            "weights": torch.as_tensor(self.weights, dtype=torch.float32, device=device),
            "old_probs": torch.as_tensor(old_probs, dtype=torch.float32, device=device),
        }


class PrioritizedReplayBuffer:
    """Ring-buffer experience store with proportional prioritized sampling.

    Args:
        capacity: Maximum number of transitions held.
        alpha: Priority exponent; 0 gives uniform sampling.
        beta: Importance-sampling exponent.
        beta_increment: Amount added to beta after every sample, capped at 1.
        priority_epsilon: Priority floor added to ``|reward|`` on insertion and
            enforced on every update.
        seed: Seed for the sampling generator.

    Example:
        >>> store = PrioritizedReplayBuffer(capacity=1000)
        >>> store.add(np.zeros(4), 1, 0.5, np.ones(4), False)
        >>> len(store)
        1
    """

    def __init__(
        self,
        capacity: int = 100_000,
        alpha: float = 0.6,
        beta: float = 0.4,
        beta_increment: float = 0.0,
        priority_epsilon: float = 1e-5,
        seed: Optional[int] = None,
    ):
        self.capacity = capacity
        self.alpha = alpha
        self.beta = beta
        self.beta_increment = beta_increment
        self.priority_epsilon = priority_epsilon

        self._slots: List[Optional[Transition]] = [None] * capacity
        self._priorities = np.zeros(capacity, dtype=np.float64)
        self._ids = np.full(capacity, -1, dtype=np.int64)
        self._position = 0
        self._size = 0
        self._total_added = 0
        self._rng = np.random.default_rng(seed)
        self._lock = threading.RLock()

    def add(
        self,
        state: Sequence[float],
        action: int,
        reward: float,
        next_state: Sequence[float],
        done: bool,
        action_prob: Optional[float] = None,
    ) -> int:
        """Insert a transition, evicting the oldest on overflow.

        Returns:
            The slot index the transition was written to.

        Raises:
            InvalidTransitionError: If the reward or either state vector
                holds NaN or inf. Nothing is stored.
        """
        reward = float(reward)
        state = np.asarray(state, dtype=np.float32)
        next_state = np.asarray(next_state, dtype=np.float32)
        for name, value in (("reward", reward), ("state", state), ("next_state", next_state)):
            if not np.all(np.isfinite(value)):
                raise InvalidTransitionError(
                    f"Non-finite {name} rejected by the experience store", field=name
                )

        priority = self._floor(abs(reward) + self.priority_epsilon)
        with self._lock:
            idx = self._position
            self._slots[idx] = Transition(
                state=state,
                action=int(action),
                reward=reward,
                next_state=next_state,
                done=bool(done),
                priority=priority,
                action_prob=None if action_prob is None else float(action_prob),
                insertion_id=self._total_added,
            )
            self._priorities[idx] = priority
            self._ids[idx] = self._total_added

            self._position = (self._position + 1) % self.capacity
            self._size = min(self._size + 1, self.capacity)
            self._total_added += 1
        return idx

    def sample(self, batch_size: int) -> Optional[SampledBatch]:
        """Draw ``batch_size`` distinct transitions by priority.

        Returns None when fewer than ``batch_size`` transitions are stored.
        """
        with self._lock:
            n = self._size
            if batch_size <= 0 or n < batch_size:
                return None

            scaled = self._priorities[:n] ** self.alpha
            probs = scaled / scaled.sum()
            indices = self._rng.choice(n, size=batch_size, replace=False, p=probs)

            weights = (n * probs[indices]) ** (-self.beta)
            weights = weights / weights.max()
            self.beta = min(1.0, self.beta + self.beta_increment)

            transitions = [self._read(i) for i in indices]
            batch = SampledBatch(
                transitions=transitions,
                indices=indices.astype(np.int64),
                weights=weights,
                probabilities=probs[indices],
                insertion_ids=self._ids[indices].copy(),
            )
        return batch

    def update_priority(self, index: int, priority: float) -> None:
        """Overwrite the priority of one stored slot, floored at the epsilon."""
        self.update_priorities([index], [priority])

    def update_priorities(
        self,
        indices: Sequence[int],
        priorities: Sequence[float],
        insertion_ids: Optional[Sequence[int]] = None,
    ) -> int:
        """Overwrite priorities for several slots.

        Non-finite priorities are replaced by the floor. When
        ``insertion_ids`` is given, slots whose occupant changed since
        sampling are left untouched.

        Returns:
            Number of slots actually updated.
        """
        updated = 0
        with self._lock:
            for k, (idx, priority) in enumerate(zip(indices, priorities)):
                idx = int(idx)
                if not 0 <= idx < self._size:
                    continue
                if insertion_ids is not None and self._ids[idx] != insertion_ids[k]:
                    continue
                self._priorities[idx] = self._floor(priority)
                updated += 1
        if insertion_ids is not None and updated < len(indices):
            logger.debug(
                "Dropped %d stale priority updates", len(indices) - updated
            )
        return updated

    def _floor(self, priority: float) -> float:
        # Non-finite priorities collapse to the floor.
        priority = float(priority)
        if not np.isfinite(priority):
            return self.priority_epsilon
        return max(priority, self.priority_epsilon)

    def _read(self, idx: int) -> Transition:
        return replace(self._slots[idx], priority=float(self._priorities[idx]))

    def transitions(self) -> List[Transition]:
        """Stored transitions, oldest first."""
        with self._lock:
            if self._size < self.capacity:
                order = range(self._size)
            else:
                order = [(self._position + k) % self.capacity for k in range(self.capacity)]
            return [self._read(i) for i in order]

    def priorities(self) -> NDArray[np.float64]:
        """Copy of the priorities of occupied slots, in slot order."""
        with self._lock:
            return self._priorities[: self._size].copy()

    def clear(self) -> None:
        with self._lock:
            self._slots = [None] * self.capacity
            self._priorities[:] = 0.0
            self._ids[:] = -1
            self._position = 0
            self._size = 0

    def stats(self) -> Dict[str, float]:
        with self._lock:
            mean_priority = (
                float(self._priorities[: self._size].mean()) if self._size else 0.0
            )
            return {
                "size": self._size,
                "utilization": self._size / self.capacity,
                "mean_priority": mean_priority,
                "total_added": self._total_added,
                "beta": self.beta,
            }

    def state_dict(self) -> Dict[str, float]:
        """Sampling parameters that evolve over training."""
        return {"beta": self.beta}

    def load_state_dict(self, state: Dict[str, float]) -> None:
        self.beta = float(state.get("beta", self.beta))

    def __len__(self) -> int:
        return self._size


def create_replay_buffer(config, seed: Optional[int] = None) -> PrioritizedReplayBuffer:
    """Build a store from a ``ReplayConfig``."""
    return PrioritizedReplayBuffer(
        capacity=config.capacity,
        alpha=config.alpha,
        beta=config.beta,
        beta_increment=config.beta_increment,
        priority_epsilon=config.priority_epsilon,
        seed=seed,
    )
