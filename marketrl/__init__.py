"""
marketrl
========
Reinforcement-learning policy trainer for a sequential market decision agent
that observes a state vector and picks among a few discrete actions
(e.g. enter / hold / exit).

The package covers the training core only:
- Prioritized experience replay
- Actor and critic networks with soft-updated target copies
- Clipped policy-gradient updates with entropy and L2 regularization
- Exploration scheduling
- Gradient clipping and learning-rate decay

Feature extraction, reward design, weight persistence and order execution
are left to the caller.
"""

__version__ = "0.1.0"

from .config import (
    TrainerConfig,
    ReplayConfig,
    NetworkConfig,
    OptimizerConfig,
    ExplorationConfig,
)
from .errors import (
    MarketRLError,
    ShapeMismatchError,
    DivergentGradientError,
    InvalidTransitionError,
    ConfigurationError,
)
from .reinforcement import (
    PolicyTrainer,
    ActionSelection,
    UpdateResult,
    PrioritizedReplayBuffer,
    ActorNetwork,
    CriticNetwork,
    TargetNetwork,
    ExplorationController,
    GradientProcessor,
    PolicyOptimizer,
)

__all__ = [
    "__version__",
    "TrainerConfig",
    "ReplayConfig",
    "NetworkConfig",
    "OptimizerConfig",
    "ExplorationConfig",
    "MarketRLError",
    "ShapeMismatchError",
    "DivergentGradientError",
    "InvalidTransitionError",
    "ConfigurationError",
    "PolicyTrainer",
    "ActionSelection",
    "UpdateResult",
    "PrioritizedReplayBuffer",
    "ActorNetwork",
    "CriticNetwork",
    "TargetNetwork",
    "ExplorationController",
    "GradientProcessor",
    "PolicyOptimizer",
]
