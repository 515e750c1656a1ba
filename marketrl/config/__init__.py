"""
Configuration Management for marketrl

YAML/JSON configuration with:
- Environment variable interpolation
- Typed, validated dataclass sections for each trainer component
- Dot-notation access to raw config files
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from marketrl.errors import ConfigurationError


class Config:
    """
    Configuration wrapper with dict-like access.

    Supports:
    - Dot notation: config.optimizer.actor_lr
    - Environment variables: ${VAR_NAME}
    - Default values
    """

    def __init__(self, data: Dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str) -> Any:
        """Access config with dot notation."""
        if name.startswith("_"):
            return object.__getattribute__(self, name)

        if name in self._data:
            value = self._data[name]
            if isinstance(value, dict):
                return Config(value)
            return value

        raise AttributeError(f"Config has no attribute '{name}'")

    def __getitem__(self, key: str) -> Any:
        """Access config with bracket notation."""
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value with default, accepting dotted keys."""
        value = self._data

        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self._data

    def __repr__(self) -> str:
        return f"Config({self._data})"


def load_yaml(path: Union[str, Path]) -> Config:
    """
    Load YAML config file.

    Args:
        path: Path to YAML file

    Returns:
        Config object
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    return Config(_interpolate_env_vars(data))


def load_json(path: Union[str, Path]) -> Config:
    """
    Load JSON config file.

    Args:
        path: Path to JSON file

    Returns:
        Config object
    """
    with open(path, "r") as f:
        data = json.load(f)

    return Config(_interpolate_env_vars(data))


def load_config(path: Union[str, Path]) -> Config:
    """Load a YAML or JSON config file, chosen by suffix."""
    path = Path(path)
    if path.suffix in (".yaml", ".yml"):
        return load_yaml(path)
    if path.suffix == ".json":
        return load_json(path)
    raise ConfigurationError(
        f"Unsupported config format: {path.suffix}", config_file=str(path)
    )


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _interpolate_env_vars(data: Any) -> Any:
    """Recursively interpolate environment variables."""
    if isinstance(data, dict):
        return {k: _interpolate_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_interpolate_env_vars(item) for item in data]
    elif isinstance(data, str):

        def replace_var(match):
            return os.environ.get(match.group(1), match.group(0))

        return _ENV_PATTERN.sub(replace_var, data)
    else:
        return data


def _coerce(section: str, name: str, value: Any, default: Any) -> Any:
    # Values interpolated from the environment arrive as strings.
    if not isinstance(value, str):
        return value
    if _ENV_PATTERN.fullmatch(value.strip()):
        return default
    if default is None:
        return int(value) if value.strip().lstrip("-").isdigit() else value
    if isinstance(default, str):
        return value
    try:
        if isinstance(default, bool):
            return value.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError as e:
        raise ConfigurationError(
            f"Cannot parse {section}.{name}={value!r}", config_key=f"{section}.{name}"
        ) from e
    return value


def _section_from_dict(cls, section: str, data: Optional[Dict[str, Any]]):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in '{section}': {sorted(unknown)}", config_key=section
        )
    defaults = cls()
    kwargs = {
        name: _coerce(section, name, value, getattr(defaults, name))
        for name, value in data.items()
    }
    return cls(**kwargs)


def _check(condition: bool, message: str, key: str) -> None:
    if not condition:
        raise ConfigurationError(message, config_key=key)


# =============================================================================
# TRAINER SECTIONS
# =============================================================================


@dataclass
class ReplayConfig:
    """Experience store settings."""

    capacity: int = 100_000
    batch_size: int = 64
    alpha: float = 0.6  # priority exponent
    beta: float = 0.4  # importance-sampling exponent
    beta_increment: float = 0.0  # per-sample annealing toward 1
    priority_epsilon: float = 1e-5  # floor, keeps every transition samplable

    def __post_init__(self):
        _check(self.capacity > 0, "capacity must be positive", "replay.capacity")
        _check(
            0 < self.batch_size <= self.capacity,
            "batch_size must be in (0, capacity]",
            "replay.batch_size",
        )
        _check(self.alpha >= 0, "alpha must be non-negative", "replay.alpha")
        _check(0 <= self.beta <= 1, "beta must be in [0, 1]", "replay.beta")
        _check(
            self.beta_increment >= 0,
            "beta_increment must be non-negative",
            "replay.beta_increment",
        )
        _check(
            self.priority_epsilon > 0,
            "priority_epsilon must be positive",
            "replay.priority_epsilon",
        )


@dataclass
class NetworkConfig:
    """Actor and critic architecture."""

    state_dim: int = 128
    action_dim: int = 3  # buy, hold, sell
    actor_hidden_dims: List[int] = field(default_factory=lambda: [256, 128])
    critic_hidden_dims: List[int] = field(default_factory=lambda: [256, 128])
    activation: str = "relu"
    actor_dropout: float = 0.2
    critic_dropout: float = 0.0
    actor_l2: float = 0.01
    critic_l2: float = 0.01

    def __post_init__(self):
        _check(self.state_dim > 0, "state_dim must be positive", "network.state_dim")
        _check(
            self.action_dim > 1, "action_dim must be at least 2", "network.action_dim"
        )
        for key in ("actor_hidden_dims", "critic_hidden_dims"):
            dims = getattr(self, key)
            _check(
                all(int(d) > 0 for d in dims),
                f"{key} must hold positive widths",
                f"network.{key}",
            )
        for key in ("actor_dropout", "critic_dropout"):
            _check(
                0 <= getattr(self, key) < 1,
                f"{key} must be in [0, 1)",
                f"network.{key}",
            )
        for key in ("actor_l2", "critic_l2"):
            _check(getattr(self, key) >= 0, f"{key} must be >= 0", f"network.{key}")


@dataclass
class OptimizerConfig:
    """Policy optimizer, gradient processing and target synchronization."""

    actor_lr: float = 1e-4
    critic_lr: float = 1e-3
    adam_beta1: float = 0.9
    adam_beta2: float = 0.999
    adam_epsilon: float = 1e-8
    actor_lr_decay: float = 0.995  # multiplicative, per update step
    actor_min_lr: float = 1e-5
    critic_lr_decay: float = 0.995
    critic_min_lr: float = 1e-4
    max_grad_norm: float = 0.5
    normalize_gradients: bool = False
    gamma: float = 0.99
    clip_epsilon: float = 0.2
    entropy_coef: float = 0.01
    entropy_decay: float = 0.995
    min_entropy_coef: float = 1e-3
    tau: float = 0.005
    target_update_mode: str = "soft"  # "soft" or "hard"
    target_update_interval: Optional[int] = None
    use_importance_weights: bool = True
    normalize_advantages: bool = False

    def __post_init__(self):
        _check(self.actor_lr > 0, "actor_lr must be positive", "optimizer.actor_lr")
        _check(self.critic_lr > 0, "critic_lr must be positive", "optimizer.critic_lr")
        for name in ("actor", "critic"):
            decay = getattr(self, f"{name}_lr_decay")
            floor = getattr(self, f"{name}_min_lr")
            _check(
                0 < decay <= 1,
                f"{name}_lr_decay must be in (0, 1]",
                f"optimizer.{name}_lr_decay",
            )
            _check(
                0 <= floor <= getattr(self, f"{name}_lr"),
                f"{name}_min_lr must be in [0, {name}_lr]",
                f"optimizer.{name}_min_lr",
            )
        _check(
            self.max_grad_norm > 0,
            "max_grad_norm must be positive",
            "optimizer.max_grad_norm",
        )
        _check(0 <= self.gamma <= 1, "gamma must be in [0, 1]", "optimizer.gamma")
        _check(
            0 < self.clip_epsilon < 1,
            "clip_epsilon must be in (0, 1)",
            "optimizer.clip_epsilon",
        )
        _check(
            self.entropy_coef >= self.min_entropy_coef >= 0,
            "need entropy_coef >= min_entropy_coef >= 0",
            "optimizer.entropy_coef",
        )
        _check(
            0 < self.entropy_decay <= 1,
            "entropy_decay must be in (0, 1]",
            "optimizer.entropy_decay",
        )
        _check(0 < self.tau <= 1, "tau must be in (0, 1]", "optimizer.tau")
        _check(
            self.target_update_mode in ("soft", "hard"),
            "target_update_mode must be 'soft' or 'hard'",
            "optimizer.target_update_mode",
        )
        if self.target_update_interval is None:
            self.target_update_interval = 1 if self.target_update_mode == "soft" else 1000
        _check(
            self.target_update_interval > 0,
            "target_update_interval must be positive",
            "optimizer.target_update_interval",
        )


EXPLORATION_STRATEGIES = ("uniform", "boltzmann", "ucb")


@dataclass
class ExplorationConfig:
    """Decision-time exploration schedule and strategy mixture."""

    epsilon_start: float = 1.0
    epsilon_min: float = 0.01
    epsilon_decay: float = 0.995  # per episode boundary
    strategy_weights: Dict[str, float] = field(
        default_factory=lambda: {"uniform": 0.7, "boltzmann": 0.2, "ucb": 0.1}
    )
    temperature: float = 1.0
    ucb_coef: float = 1.0

    def __post_init__(self):
        _check(
            0 <= self.epsilon_min <= self.epsilon_start <= 1,
            "need 0 <= epsilon_min <= epsilon_start <= 1",
            "exploration.epsilon_start",
        )
        _check(
            0 < self.epsilon_decay <= 1,
            "epsilon_decay must be in (0, 1]",
            "exploration.epsilon_decay",
        )
        unknown = set(self.strategy_weights) - set(EXPLORATION_STRATEGIES)
        _check(
            not unknown,
            f"unknown exploration strategies: {sorted(unknown)}",
            "exploration.strategy_weights",
        )
        weights = [float(w) for w in self.strategy_weights.values()]
        _check(
            all(w >= 0 for w in weights) and sum(weights) > 0,
            "strategy weights must be non-negative with a positive sum",
            "exploration.strategy_weights",
        )
        _check(
            self.temperature > 0,
            "temperature must be positive",
            "exploration.temperature",
        )
        _check(self.ucb_coef >= 0, "ucb_coef must be >= 0", "exploration.ucb_coef")


@dataclass
class TrainerConfig:
    """Top-level trainer configuration."""

    replay: ReplayConfig = field(default_factory=ReplayConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)
    update_every: int = 1  # transitions between scheduled update cycles
    seed: Optional[int] = None
    device: str = "cpu"

    def __post_init__(self):
        _check(self.update_every > 0, "update_every must be positive", "update_every")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TrainerConfig:
        data = dict(data or {})
        sections = {
            "replay": ReplayConfig,
            "network": NetworkConfig,
            "optimizer": OptimizerConfig,
            "exploration": ExplorationConfig,
        }
        kwargs = {
            name: _section_from_dict(section_cls, name, data.pop(name, None))
            for name, section_cls in sections.items()
        }
        top = _section_from_dict(_TopLevel, "trainer", data)
        return cls(**kwargs, **asdict(top))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> TrainerConfig:
        return cls.from_dict(load_config(path).to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _TopLevel:
    update_every: int = 1
    seed: Optional[int] = None
    device: str = "cpu"


DEFAULT_TRAINER_CONFIG = """
replay:
  capacity: 100000
  batch_size: 64
  alpha: 0.6
  beta: 0.4
  priority_epsilon: 0.00001

network:
  state_dim: 128
  action_dim: 3
  actor_hidden_dims: [256, 128]
  critic_hidden_dims: [256, 128]
  activation: relu
  actor_dropout: 0.2
  actor_l2: 0.01
  critic_l2: 0.01

optimizer:
  actor_lr: 0.0001
  critic_lr: 0.001
  actor_lr_decay: 0.995
  actor_min_lr: 0.00001
  critic_lr_decay: 0.995
  critic_min_lr: 0.0001
  max_grad_norm: 0.5
  gamma: 0.99
  clip_epsilon: 0.2
  entropy_coef: 0.01
  entropy_decay: 0.995
  min_entropy_coef: 0.001
  tau: 0.005

exploration:
  epsilon_start: 1.0
  epsilon_min: 0.01
  epsilon_decay: 0.995

update_every: 1
seed: ${MARKETRL_SEED}
"""


def create_default_config(output_path: str = "trainer.yaml") -> Path:
    """Write the default trainer configuration to ``output_path``."""
    path = Path(output_path)
    path.write_text(DEFAULT_TRAINER_CONFIG)
    return path


__all__ = [
    "Config",
    "load_yaml",
    "load_json",
    "load_config",
    "ReplayConfig",
    "NetworkConfig",
    "OptimizerConfig",
    "ExplorationConfig",
    "TrainerConfig",
    "EXPLORATION_STRATEGIES",
    "DEFAULT_TRAINER_CONFIG",
    "create_default_config",
]
