"""Decision-time exploration for the policy trainer.

With probability epsilon a decision explores through one of three strategies
picked by a fixed mixture; otherwise it follows the actor. Epsilon decays
multiplicatively once per episode boundary and never drops below its floor.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import torch

from marketrl.errors import ShapeMismatchError
from marketrl.logging import get_logger
from marketrl.reinforcement.policy_networks import ActorNetwork
from marketrl.reinforcement.value_networks import CriticNetwork

logger = get_logger(__name__)

DEFAULT_STRATEGY_WEIGHTS = {"uniform": 0.7, "boltzmann": 0.2, "ucb": 0.1}


@dataclass
class ActionSelection:
    """Result of one decision.

    Attributes:
        action: Chosen action index.
        probability: Actor probability of ``action``; record it with the
            transition so the update can form the policy ratio.
        value: Critic estimate of the state value, when a critic is attached.
        explored: True when an exploration strategy made the choice.
        strategy: 'greedy', 'policy', 'uniform', 'boltzmann' or 'ucb'.
    """

    action: int
    probability: float
    value: Optional[float] = None
    explored: bool = False
    strategy: str = "policy"


def uniform_action(action_dim: int, rng: np.random.Generator) -> int:
    """Any action with equal probability."""
    return int(rng.integers(action_dim))


def boltzmann_action(
    logits: np.ndarray, temperature: float, rng: np.random.Generator
) -> int:
    """Sample from ``softmax(logits / temperature)``."""
    scaled = logits.astype(np.float64) / temperature
    scaled = scaled - scaled.max()
    probs = np.exp(scaled)
    probs /= probs.sum()
    return int(rng.choice(len(probs), p=probs))


def ucb_action(values: np.ndarray, visit_counts: np.ndarray, coef: float) -> int:
    """Argmax of ``values + coef * sqrt(ln(N + 1) / (n_a + 1))``."""
    total = visit_counts.sum()
    bonus = coef * np.sqrt(np.log(total + 1.0) / (visit_counts + 1.0))
    return int(np.argmax(values + bonus))


class ExplorationController:
    """Epsilon-scheduled mixture of exploration strategies.

    Args:
        actor: Policy network queried in inference mode.
        epsilon_start: Initial exploration rate.
        epsilon_min: Floor of the exploration rate.
        epsilon_decay: Multiplicative factor applied by ``decay()``.
        strategy_weights: Mixture over 'uniform', 'boltzmann' and 'ucb'.
        temperature: Boltzmann temperature over actor logits.
        ucb_coef: Scale of the UCB visit-count bonus.
        critic: Optional critic whose estimate is reported with each decision.
        seed: Seed for the controller's generator.
        device: Device of the networks.

    Example:
        >>> controller = ExplorationController(actor, epsilon_start=0.5)
        >>> choice = controller.select_action(np.zeros(8), explore=True)
        >>> controller.decay()
        0.4975
    """

    def __init__(
        self,
        actor: ActorNetwork,
        epsilon_start: float = 1.0,
        epsilon_min: float = 0.01,
        epsilon_decay: float = 0.995,
        strategy_weights: Optional[Dict[str, float]] = None,
        temperature: float = 1.0,
        ucb_coef: float = 1.0,
        critic: Optional[CriticNetwork] = None,
        seed: Optional[int] = None,
        device: str = "cpu",
    ):
        self.actor = actor
        self.critic = critic
        self.action_dim = actor.action_dim
        self.epsilon_start = epsilon_start
        self.epsilon_min = epsilon_min
        self.epsilon_decay = epsilon_decay
        self.temperature = temperature
        self.ucb_coef = ucb_coef
        self.device = device

        weights = dict(strategy_weights or DEFAULT_STRATEGY_WEIGHTS)
        self._strategies = [name for name, w in weights.items() if w > 0]
        mix = np.array([weights[name] for name in self._strategies], dtype=np.float64)
        self._mixture = mix / mix.sum()

        self._epsilon = epsilon_start
        self._visit_counts = np.zeros(self.action_dim, dtype=np.float64)
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    @property
    def epsilon(self) -> float:
        return self._epsilon

    @property
    def visit_counts(self) -> np.ndarray:
        return self._visit_counts.copy()

    def select_action(self, state: Sequence[float], explore: bool = True) -> ActionSelection:
        """Choose an action for one state vector.

        ``explore=False`` returns the actor's most probable action. Otherwise
        a uniform draw below epsilon hands the decision to an exploration
        strategy, and anything else samples from the actor's distribution.

        Raises:
            ShapeMismatchError: If ``state`` is not a vector of length
                ``state_dim``.
        """
        state = np.asarray(state, dtype=np.float32)
        if state.ndim != 1 or state.shape[0] != self.actor.state_dim:
            raise ShapeMismatchError(
                f"state has shape {tuple(state.shape)}, expected ({self.actor.state_dim},)",
                field="state",
                expected=self.actor.state_dim,
                actual=tuple(state.shape),
            )
        state_t = torch.as_tensor(state, device=self.device).unsqueeze(0)
        output = self.actor.infer(state_t)
        probs = output.probs[0].cpu().numpy()
        value = None
        if self.critic is not None:
            value = float(self.critic.infer(state_t).value[0].item())

        with self._lock:
            if not explore:
                action, strategy = int(np.argmax(probs)), "greedy"
            elif self._rng.random() >= self._epsilon:
                p = probs.astype(np.float64)
                action = int(self._rng.choice(self.action_dim, p=p / p.sum()))
                strategy = "policy"
            else:
                strategy = self._strategies[
                    int(self._rng.choice(len(self._strategies), p=self._mixture))
                ]
                action = self._explore(strategy, output.logits[0].cpu().numpy(), probs)
            self._visit_counts[action] += 1

        return ActionSelection(
            action=action,
            probability=float(probs[action]),
            value=value,
            explored=strategy not in ("greedy", "policy"),
            strategy=strategy,
        )

    def _explore(self, strategy: str, logits: np.ndarray, probs: np.ndarray) -> int:
        if strategy == "uniform":
            return uniform_action(self.action_dim, self._rng)
        if strategy == "boltzmann":
            return boltzmann_action(logits, self.temperature, self._rng)
        if strategy == "ucb":
            return ucb_action(probs, self._visit_counts, self.ucb_coef)
        raise ValueError(f"Unknown exploration strategy: {strategy}")

    def decay(self) -> float:
        """Apply one episode's decay; returns the new exploration rate."""
        with self._lock:
            self._epsilon = max(self.epsilon_min, self._epsilon * self.epsilon_decay)
            epsilon = self._epsilon
        logger.debug("Exploration rate decayed to %.5f", epsilon)
        return epsilon

    def reset(self) -> None:
        """Restore the initial exploration rate and clear visit counts."""
        with self._lock:
            self._epsilon = self.epsilon_start
            self._visit_counts[:] = 0

    def state_dict(self) -> Dict[str, object]:
        with self._lock:
            return {
                "epsilon": self._epsilon,
                "visit_counts": self._visit_counts.tolist(),
            }

    def load_state_dict(self, state: Dict[str, object]) -> None:
        with self._lock:
            epsilon = float(state["epsilon"])
            self._epsilon = min(self.epsilon_start, max(self.epsilon_min, epsilon))
            counts = np.asarray(state.get("visit_counts", []), dtype=np.float64)
            if counts.shape == self._visit_counts.shape:
                self._visit_counts = counts


def create_exploration(
    config, actor: ActorNetwork, critic: Optional[CriticNetwork] = None,
    seed: Optional[int] = None, device: str = "cpu",
) -> ExplorationController:
    """Build a controller from an ``ExplorationConfig``."""
    return ExplorationController(
        actor,
        epsilon_start=config.epsilon_start,
        epsilon_min=config.epsilon_min,
        epsilon_decay=config.epsilon_decay,
        strategy_weights=config.strategy_weights,
        temperature=config.temperature,
        ucb_coef=config.ucb_coef,
        critic=critic,
        seed=seed,
        device=device,
    )
