"""
Policy Trainer.

Public entry point of the training core. It owns a ``TrainerState`` and
exposes the operations a decision-making caller needs:

- ``add_transition`` after every decision outcome
- ``select_action`` at decision time
- ``run_update_cycle`` on whatever cadence the caller drives
- ``end_episode`` at episode boundaries (decays exploration)
- ``snapshot_parameters`` / ``load_parameters`` for checkpointing

Update cycles are single-writer: a cycle requested while another is in
flight returns immediately with skip reason ``cycle_in_progress``. Action
selection only reads parameters and may run alongside a cycle.

Example:
    >>> config = TrainerConfig(network=NetworkConfig(state_dim=8))
    >>> trainer = PolicyTrainer(config)
    >>> choice = trainer.select_action(state, explore=True)
    >>> trainer.add_transition(state, choice.action, reward, next_state, done,
    ...                        action_prob=choice.probability)
    >>> result = trainer.run_update_cycle()
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Optional, Sequence

import torch

from marketrl.config import TrainerConfig
from marketrl.errors import ErrorContext
from marketrl.logging import context, get_logger
from marketrl.reinforcement.actor_critic import (
    CYCLE_IN_PROGRESS,
    INSUFFICIENT_SAMPLES,
    ExponentialDecay,
    NetworkOptimizer,
    PolicyOptimizer,
    TrainerState,
    UpdateResult,
)
from marketrl.reinforcement.exploration import ActionSelection, create_exploration
from marketrl.reinforcement.policy_networks import create_actor
from marketrl.reinforcement.replay_buffers import create_replay_buffer
from marketrl.reinforcement.target_networks import TargetNetwork
from marketrl.reinforcement.value_networks import create_critic

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1


class UpdateScheduler:
    """Step-count cadence for update cycles.

    ``tick()`` is called once per stored transition and returns True every
    ``update_every`` ticks.
    """

    def __init__(self, update_every: int = 1):
        self.update_every = update_every
        self.ticks = 0

    def tick(self) -> bool:
        self.ticks += 1
        return self.ticks % self.update_every == 0


def build_trainer_state(config: TrainerConfig) -> TrainerState:
    """Create networks, targets, optimizer state, store and exploration."""
    if config.seed is not None:
        torch.manual_seed(config.seed)

    net_cfg, opt_cfg = config.network, config.optimizer
    actor = create_actor(net_cfg).to(config.device)
    critic = create_critic(net_cfg).to(config.device)

    def network_optimizer(name, network):
        return NetworkOptimizer(
            name,
            network,
            lr=getattr(opt_cfg, f"{name}_lr"),
            lr_decay=getattr(opt_cfg, f"{name}_lr_decay"),
            min_lr=getattr(opt_cfg, f"{name}_min_lr"),
            betas=(opt_cfg.adam_beta1, opt_cfg.adam_beta2),
            eps=opt_cfg.adam_epsilon,
        )

    return TrainerState(
        actor=actor,
        critic=critic,
        target_actor=TargetNetwork(actor, "target_actor"),
        target_critic=TargetNetwork(critic, "target_critic"),
        actor_optimizer=network_optimizer("actor", actor),
        critic_optimizer=network_optimizer("critic", critic),
        store=create_replay_buffer(config.replay, seed=config.seed),
        exploration=create_exploration(
            config.exploration, actor, critic, seed=config.seed, device=config.device
        ),
        entropy_schedule=ExponentialDecay(
            opt_cfg.entropy_coef, opt_cfg.entropy_decay, opt_cfg.min_entropy_coef
        ),
    )


class PolicyTrainer:
    """Actor-critic policy trainer for a discrete-action decision agent.

    Args:
        config: Trainer configuration; defaults are used when omitted.
    """

    def __init__(self, config: Optional[TrainerConfig] = None):
        self.config = config or TrainerConfig()
        self.state = build_trainer_state(self.config)
        self.optimizer = PolicyOptimizer(self.config.optimizer, device=self.config.device)
        self.scheduler = UpdateScheduler(self.config.update_every)
        self._cycle_lock = threading.Lock()
        self.episode = 0

        logger.info(
            "PolicyTrainer ready: state_dim=%d action_dim=%d capacity=%d batch=%d",
            self.config.network.state_dim,
            self.config.network.action_dim,
            self.config.replay.capacity,
            self.config.replay.batch_size,
        )

    @property
    def store(self):
        return self.state.store

    def add_transition(
        self,
        state: Sequence[float],
        action: int,
        reward: float,
        next_state: Sequence[float],
        done: bool,
        action_prob: Optional[float] = None,
    ) -> int:
        """Store one decision outcome; returns its slot index."""
        return self.state.store.add(state, action, reward, next_state, done, action_prob)

    def observe(
        self,
        state: Sequence[float],
        action: int,
        reward: float,
        next_state: Sequence[float],
        done: bool,
        action_prob: Optional[float] = None,
    ) -> Optional[UpdateResult]:
        """Store a transition and run a cycle when the scheduler says so.

        Episode boundaries (``done``) also decay exploration.
        """
        self.add_transition(state, action, reward, next_state, done, action_prob)
        result = None
        if self.scheduler.tick():
            result = self.run_update_cycle()
        if done:
            self.end_episode()
        return result

    def select_action(self, state: Sequence[float], explore: bool = True) -> ActionSelection:
        return self.state.exploration.select_action(state, explore)

    def run_update_cycle(self) -> UpdateResult:
        """Sample a batch and apply one update.

        Returns immediately when another cycle holds the lock or when the
        store holds less than one batch.
        """
        if not self._cycle_lock.acquire(blocking=False):
            return UpdateResult.skip(CYCLE_IN_PROGRESS, self.state.update_step)
        try:
            batch = self.state.store.sample(self.config.replay.batch_size)
            if batch is None:
                return UpdateResult.skip(INSUFFICIENT_SAMPLES, self.state.update_step)
            with ErrorContext(
                operation_name="update_cycle", component="PolicyOptimizer"
            ), context(update_step=self.state.update_step):
                return self.optimizer.update(self.state, batch)
        finally:
            self._cycle_lock.release()

    def get_exploration_rate(self) -> float:
        return self.state.exploration.epsilon

    def end_episode(self) -> float:
        """Mark an episode boundary; returns the decayed exploration rate."""
        self.episode += 1
        return self.state.exploration.decay()

    def snapshot_parameters(self) -> Dict[str, Any]:
        """Opaque checkpoint of networks, targets, optimizers and counters."""
        with self._cycle_lock:
            s = self.state
            return {
                "version": SNAPSHOT_VERSION,
                "actor": copy.deepcopy(s.actor.state_dict()),
                "critic": copy.deepcopy(s.critic.state_dict()),
                "target_actor": s.target_actor.state_dict(),
                "target_critic": s.target_critic.state_dict(),
                "actor_optimizer": copy.deepcopy(s.actor_optimizer.state_dict()),
                "critic_optimizer": copy.deepcopy(s.critic_optimizer.state_dict()),
                "exploration": s.exploration.state_dict(),
                "store": s.store.state_dict(),
                "update_step": s.update_step,
                "cycles_aborted": s.cycles_aborted,
                "episode": self.episode,
                "scheduler_ticks": self.scheduler.ticks,
            }

    def load_parameters(self, snapshot: Dict[str, Any]) -> None:
        """Restore a snapshot taken by ``snapshot_parameters``."""
        if snapshot.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {snapshot.get('version')}")
        with self._cycle_lock:
            s = self.state
            s.actor.load_state_dict(snapshot["actor"])
            s.critic.load_state_dict(snapshot["critic"])
            s.target_actor.load_state_dict(snapshot["target_actor"])
            s.target_critic.load_state_dict(snapshot["target_critic"])
            s.actor_optimizer.load_state_dict(snapshot["actor_optimizer"])
            s.critic_optimizer.load_state_dict(snapshot["critic_optimizer"])
            s.exploration.load_state_dict(snapshot["exploration"])
            s.store.load_state_dict(snapshot["store"])
            s.update_step = int(snapshot["update_step"])
            s.cycles_aborted = int(snapshot.get("cycles_aborted", 0))
            self.episode = int(snapshot.get("episode", 0))
            self.scheduler.ticks = int(snapshot.get("scheduler_ticks", 0))
        logger.info("Loaded parameters at update step %d", self.state.update_step)

    def stats(self) -> Dict[str, Any]:
        return {
            "update_step": self.state.update_step,
            "cycles_aborted": self.state.cycles_aborted,
            "episode": self.episode,
            "exploration_rate": self.get_exploration_rate(),
            "target_actor": self.state.target_actor.state.value,
            "target_critic": self.state.target_critic.state.value,
            **{f"store_{k}": v for k, v in self.state.store.stats().items()},
        }
