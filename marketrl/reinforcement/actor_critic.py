"""
Actor-Critic Policy Optimizer.

This module implements the update cycle of the trainer: a clipped surrogate
policy objective for the actor and a bootstrapped value regression for the
critic, trained from prioritized replay with slowly tracking target copies.

One cycle, in order:
    1. targets ``r + gamma * V_target(s')``, or exactly ``r`` when done
    2. advantages ``target - V(s)``
    3. actor loss: clipped surrogate minus a decaying entropy bonus, plus L2
    4. critic loss: importance-weighted squared error, plus L2
    5. backprop, joint global-norm clipping, Adam step per network
    6. priority write-back from advantage magnitudes
    7. soft (or periodic hard) target synchronization

Reference:
    Schulman et al., "Proximal Policy Optimization Algorithms" (2017)
    Schaul et al., "Prioritized Experience Replay" (2016)

Example:
    >>> optimizer = PolicyOptimizer(OptimizerConfig())
    >>> batch = state.store.sample(64)
    >>> result = optimizer.update(state, batch)
    >>> result.actor_loss, result.critic_loss, result.mean_advantage
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn

from marketrl.errors import DivergentGradientError, ShapeMismatchError
from marketrl.logging import get_logger
from marketrl.reinforcement.exploration import ExplorationController
from marketrl.reinforcement.gradients import ClipResult, GradientProcessor
from marketrl.reinforcement.policy_networks import ActorNetwork
from marketrl.reinforcement.replay_buffers import PrioritizedReplayBuffer, SampledBatch
from marketrl.reinforcement.target_networks import TargetNetwork
from marketrl.reinforcement.value_networks import CriticNetwork

Tensor = torch.Tensor

logger = get_logger(__name__)

# Skip reasons reported in UpdateResult
INSUFFICIENT_SAMPLES = "insufficient_samples"
SHAPE_MISMATCH = "shape_mismatch"
CYCLE_IN_PROGRESS = "cycle_in_progress"
ACTOR_DIVERGENT = "actor_divergent_gradient"
CRITIC_DIVERGENT = "critic_divergent_gradient"
DIVERGENT_GRADIENT = "divergent_gradient"


class ExponentialDecay:
    """``max(minimum, initial * decay ** step)``."""

    def __init__(self, initial: float, decay: float, minimum: float = 0.0):
        self.initial = initial
        self.decay = decay
        self.minimum = minimum

    def value(self, step: int) -> float:
        return max(self.minimum, self.initial * self.decay**step)

    def factor(self, step: int) -> float:
        """Value at ``step`` relative to the initial value."""
        return self.value(step) / self.initial if self.initial else 0.0


class NetworkOptimizer:
    """Adaptive-moment optimizer state of one network.

    Holds the Adam moments, the step counter and an exponentially decaying
    learning rate floored at ``min_lr``.
    """

    def __init__(
        self,
        name: str,
        network: nn.Module,
        lr: float,
        lr_decay: float = 1.0,
        min_lr: float = 0.0,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
    ):
        self.name = name
        self.network = network
        self.schedule = ExponentialDecay(lr, lr_decay, min_lr)
        self.optimizer = torch.optim.Adam(network.parameters(), lr=lr, betas=betas, eps=eps)
        self.scheduler = torch.optim.lr_scheduler.LambdaLR(
            self.optimizer, lr_lambda=lambda step: self.schedule.factor(step)
        )
        self.step_count = 0

    @property
    def lr(self) -> float:
        return self.optimizer.param_groups[0]["lr"]

    def zero_grad(self) -> None:
        self.optimizer.zero_grad(set_to_none=True)

    def apply(self, clip: ClipResult) -> None:
        """Install processed gradients and take one Adam step."""
        GradientProcessor.assign(self.network.parameters(), clip.gradients)
        self.optimizer.step()
        self.scheduler.step()
        self.step_count += 1

    def state_dict(self) -> Dict[str, Any]:
        return {
            "optimizer": self.optimizer.state_dict(),
            "scheduler": self.scheduler.state_dict(),
            "step_count": self.step_count,
        }

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        self.optimizer.load_state_dict(state["optimizer"])
        self.scheduler.load_state_dict(state["scheduler"])
        self.step_count = int(state["step_count"])


@dataclass
class TrainerState:
    """Everything an update cycle reads or mutates, passed explicitly."""

    actor: ActorNetwork
    critic: CriticNetwork
    target_actor: TargetNetwork
    target_critic: TargetNetwork
    actor_optimizer: NetworkOptimizer
    critic_optimizer: NetworkOptimizer
    store: PrioritizedReplayBuffer
    exploration: ExplorationController
    entropy_schedule: ExponentialDecay
    update_step: int = 0
    cycles_aborted: int = 0


@dataclass
class UpdateResult:
    """Diagnostics of one update cycle.

    ``skipped`` is True when nothing was applied. ``skip_reason`` names why,
    or names the divergent network when only one step was dropped.
    ``network_skips`` lists networks whose step alone was dropped.
    """

    actor_loss: float = float("nan")
    critic_loss: float = float("nan")
    mean_advantage: float = float("nan")
    entropy: float = float("nan")
    clip_fraction: float = float("nan")
    actor_grad_norm: float = float("nan")
    critic_grad_norm: float = float("nan")
    actor_lr: float = float("nan")
    critic_lr: float = float("nan")
    entropy_coef: float = float("nan")
    actor_applied: bool = False
    critic_applied: bool = False
    targets_updated: bool = False
    priorities_updated: int = 0
    batch_size: int = 0
    step: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None
    network_skips: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def skip(cls, reason: str, step: int = 0) -> UpdateResult:
        return cls(skipped=True, skip_reason=reason, step=step)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


def compute_targets(
    rewards: Tensor, dones: Tensor, next_values: Tensor, gamma: float
) -> Tensor:
    """Bootstrapped one-step targets.

    Terminal transitions take the reward alone, so a garbage ``next_values``
    entry (even NaN) never leaks into them.
    """
    return torch.where(dones.bool(), rewards, rewards + gamma * next_values)


def clipped_surrogate(
    new_log_probs: Tensor,
    old_probs: Tensor,
    advantages: Tensor,
    clip_epsilon: float = 0.2,
    weights: Optional[Tensor] = None,
) -> Tuple[Tensor, Tensor, Tensor]:
    """PPO clipped surrogate loss.

    Args:
        new_log_probs: Log-probabilities of the taken actions under the
            current actor.
        old_probs: Probabilities recorded when the actions were taken.
        advantages: Advantage estimates (no gradient).
        clip_epsilon: Ratio clip range.
        weights: Optional per-item importance weights.

    Returns:
        Tuple of (loss, ratio, clipped ratio).
    """
    old_log_probs = torch.log(old_probs.clamp_min(1e-8))
    ratio = torch.exp(new_log_probs - old_log_probs)
    clipped_ratio = torch.clamp(ratio, 1 - clip_epsilon, 1 + clip_epsilon)
    surrogate = torch.min(ratio * advantages, clipped_ratio * advantages)
    if weights is not None:
        surrogate = surrogate * weights
    return -surrogate.mean(), ratio, clipped_ratio


def soft_update_targets(state: TrainerState, tau: float) -> None:
    state.target_actor.soft_update(tau)
    state.target_critic.soft_update(tau)


def hard_update_targets(state: TrainerState) -> None:
    state.target_actor.hard_update()
    state.target_critic.hard_update()


class PolicyOptimizer:
    """Runs one actor-critic update over a sampled batch.

    Args:
        config: ``OptimizerConfig`` with discount, clip range, entropy and
            target-sync settings.
        device: Device the batch tensors are placed on.
    """

    def __init__(self, config, device: str = "cpu"):
        self.config = config
        self.device = device
        self.gradient_processor = GradientProcessor(
            max_norm=config.max_grad_norm, normalize=config.normalize_gradients
        )

    def update(self, state: TrainerState, batch: Optional[SampledBatch]) -> UpdateResult:
        """Apply one update cycle to ``state`` using ``batch``.

        A missing batch is a no-op. A batch whose shapes disagree with the
        networks aborts the cycle before any forward pass.
        """
        if batch is None or len(batch) == 0:
            return UpdateResult.skip(INSUFFICIENT_SAMPLES, state.update_step)

        try:
            batch.validate(state.actor.state_dim, state.actor.action_dim)
        except ShapeMismatchError as e:
            state.cycles_aborted += 1
            logger.warning("Update cycle aborted: %s", e)
            return UpdateResult.skip(SHAPE_MISMATCH, state.update_step)

        cfg = self.config
        data = batch.to_tensors(self.device)
        weights = data["weights"] if cfg.use_importance_weights else None

        with torch.no_grad():
            next_values = state.target_critic(data["next_states"]).value
            targets = compute_targets(data["rewards"], data["dones"], next_values, cfg.gamma)

        state.actor.train()
        state.critic.train()

        values = state.critic(data["states"]).value
        advantages = (targets - values).detach()
        policy_advantages = advantages
        if cfg.normalize_advantages and len(batch) > 1:
            policy_advantages = (advantages - advantages.mean()) / (advantages.std() + 1e-8)

        new_log_probs, entropy = state.actor.evaluate_actions(data["states"], data["actions"])
        old_probs = torch.where(
            torch.isnan(data["old_probs"]), new_log_probs.detach().exp(), data["old_probs"]
        )
        policy_loss, ratio, _ = clipped_surrogate(
            new_log_probs, old_probs, policy_advantages, cfg.clip_epsilon, weights
        )
        entropy_coef = state.entropy_schedule.value(state.update_step)
        actor_loss = policy_loss - entropy_coef * entropy.mean() + state.actor.l2_penalty()

        squared_error = (targets - values).pow(2)
        if weights is not None:
            squared_error = squared_error * weights
        critic_loss = squared_error.mean() + state.critic.l2_penalty()

        state.actor_optimizer.zero_grad()
        state.critic_optimizer.zero_grad()
        actor_loss.backward()
        critic_loss.backward()

        result = UpdateResult(
            actor_loss=actor_loss.item(),
            critic_loss=critic_loss.item(),
            mean_advantage=advantages.mean().item(),
            entropy=entropy.mean().item(),
            clip_fraction=((ratio - 1).abs() > cfg.clip_epsilon).float().mean().item(),
            entropy_coef=entropy_coef,
            batch_size=len(batch),
        )

        # Both gradient sets are processed before either is applied.
        pending = []
        for net_optim, target, reason in (
            (state.actor_optimizer, state.target_actor, ACTOR_DIVERGENT),
            (state.critic_optimizer, state.target_critic, CRITIC_DIVERGENT),
        ):
            raw = self.gradient_processor.collect(net_optim.network.parameters())
            try:
                clip = self.gradient_processor.process(raw, network=net_optim.name)
            except DivergentGradientError as e:
                logger.warning("Skipping %s step: %s", net_optim.name, e)
                result.network_skips[net_optim.name] = reason
                result.skip_reason = reason
                net_optim.zero_grad()
                continue
            setattr(result, f"{net_optim.name}_grad_norm", clip.total_norm)
            pending.append((net_optim, target, clip))

        for net_optim, target, clip in pending:
            net_optim.apply(clip)
            target.mark_drifting()
            setattr(result, f"{net_optim.name}_applied", True)

        if pending:
            # Items with a non-finite advantage keep their stored priority.
            priorities = advantages.abs().cpu().numpy() + state.store.priority_epsilon
            finite = np.isfinite(priorities)
            result.priorities_updated = state.store.update_priorities(
                batch.indices[finite], priorities[finite], batch.insertion_ids[finite]
            )

        if not pending:
            result.skipped = True
            result.skip_reason = DIVERGENT_GRADIENT
            state.cycles_aborted += 1
        else:
            state.update_step += 1
            result.targets_updated = self._sync_targets(state)

        result.step = state.update_step
        result.actor_lr = state.actor_optimizer.lr
        result.critic_lr = state.critic_optimizer.lr
        logger.debug(
            "Update %d: actor_loss=%.5f critic_loss=%.5f mean_adv=%.5f clip_frac=%.3f",
            result.step,
            result.actor_loss,
            result.critic_loss,
            result.mean_advantage,
            result.clip_fraction,
        )
        return result

    def _sync_targets(self, state: TrainerState) -> bool:
        cfg = self.config
        if state.update_step % cfg.target_update_interval != 0:
            return False
        if cfg.target_update_mode == "hard":
            hard_update_targets(state)
        else:
            soft_update_targets(state, cfg.tau)
        return True
