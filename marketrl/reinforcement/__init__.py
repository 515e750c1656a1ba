"""
marketrl Reinforcement Learning Module

Training core of a discrete-action market agent: prioritized experience
replay, actor and critic networks with frozen target copies, clipped
policy-gradient updates, exploration scheduling and gradient processing.

Modules:
    - replay_buffers: Prioritized ring-buffer experience store
    - policy_networks: Shared MLP approximator and the categorical actor
    - value_networks: State-value critic
    - target_networks: Soft-updated target copies
    - exploration: Epsilon-scheduled exploration strategies
    - gradients: Global-norm gradient clipping
    - actor_critic: Policy optimizer and trainer state
    - trainer: Public trainer facade

Example:
    >>> from marketrl.reinforcement import PolicyTrainer
    >>> from marketrl.config import TrainerConfig, NetworkConfig
    >>> trainer = PolicyTrainer(TrainerConfig(network=NetworkConfig(state_dim=8)))
    >>> choice = trainer.select_action([0.0] * 8)
"""

from __future__ import annotations

from marketrl.reinforcement.replay_buffers import (
    Transition,
    SampledBatch,
    PrioritizedReplayBuffer,
    create_replay_buffer,
)

from marketrl.reinforcement.policy_networks import (
    Approximator,
    ActorNetwork,
    PolicyOutput,
    create_actor,
)

from marketrl.reinforcement.value_networks import (
    CriticNetwork,
    ValueOutput,
    create_critic,
)

from marketrl.reinforcement.target_networks import (
    TargetNetwork,
    TargetSyncState,
)

from marketrl.reinforcement.exploration import (
    ActionSelection,
    ExplorationController,
    uniform_action,
    boltzmann_action,
    ucb_action,
    create_exploration,
)

from marketrl.reinforcement.gradients import (
    ClipResult,
    GradientProcessor,
    global_norm,
)

from marketrl.reinforcement.actor_critic import (
    ExponentialDecay,
    NetworkOptimizer,
    TrainerState,
    UpdateResult,
    PolicyOptimizer,
    compute_targets,
    clipped_surrogate,
)

from marketrl.reinforcement.trainer import (
    PolicyTrainer,
    UpdateScheduler,
    build_trainer_state,
)

__all__ = [
    "Transition",
    "SampledBatch",
    "PrioritizedReplayBuffer",
    "create_replay_buffer",
    "Approximator",
    "ActorNetwork",
    "PolicyOutput",
    "create_actor",
    "CriticNetwork",
    "ValueOutput",
    "create_critic",
    "TargetNetwork",
    "TargetSyncState",
    "ActionSelection",
    "ExplorationController",
    "uniform_action",
    "boltzmann_action",
    "ucb_action",
    "create_exploration",
    "ClipResult",
    "GradientProcessor",
    "global_norm",
    "ExponentialDecay",
    "NetworkOptimizer",
    "TrainerState",
    "UpdateResult",
    "PolicyOptimizer",
    "compute_targets",
    "clipped_surrogate",
    "PolicyTrainer",
    "UpdateScheduler",
    "build_trainer_state",
]
