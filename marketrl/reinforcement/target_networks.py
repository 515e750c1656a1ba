"""Frozen target copies of the actor and critic.

A target starts as an exact copy of its live network (SYNCED). Any gradient
step on the live network moves it to DRIFTING. Soft updates pull it back
toward the live parameters with ``target <- tau * live + (1 - tau) * target``
and only reach SYNCED again at ``tau == 1`` or through a hard copy.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict

import torch
import torch.nn as nn

Tensor = torch.Tensor


class TargetSyncState(Enum):
    SYNCED = "synced"
    DRIFTING = "drifting"


class TargetNetwork:
    """Structural clone of a live network, never trained by gradient descent.

    Args:
        live: The network being trained.
        name: Label used in diagnostics.

    Example:
        >>> critic = CriticNetwork(state_dim=4)
        >>> target = TargetNetwork(critic, "critic")
        >>> target.state
        <TargetSyncState.SYNCED: 'synced'>
    """

    def __init__(self, live: nn.Module, name: str = "target"):
        self.live = live
        self.name = name
        self.network = copy.deepcopy(live)
        self.network.requires_grad_(False)
        self.network.eval()
        self.state = TargetSyncState.SYNCED
        self.num_updates = 0

    @torch.no_grad()
    def __call__(self, x: Tensor):
        return self.network(x)

    def mark_drifting(self) -> None:
        """Record that the live network took a gradient step."""
        self.state = TargetSyncState.DRIFTING

    @torch.no_grad()
    def soft_update(self, tau: float) -> None:
        """Exponential moving-average copy from the live network."""
        if not 0 < tau <= 1:
            raise ValueError(f"tau must be in (0, 1], got {tau}")

        for target_param, param in zip(
            self.network.parameters(), self.live.parameters()
        ):
            target_param.data.copy_(
                tau * param.data + (1 - tau) * target_param.data
            )
        for target_buf, buf in zip(self.network.buffers(), self.live.buffers()):
            target_buf.copy_(buf)

        self.num_updates += 1
        if tau == 1:
            self.state = TargetSyncState.SYNCED

    @torch.no_grad()
    def hard_update(self) -> None:
        """Copy the live parameters exactly."""
        self.network.load_state_dict(self.live.state_dict())
        self.num_updates += 1
        self.state = TargetSyncState.SYNCED

    def max_divergence(self) -> float:
        """Largest absolute elementwise gap between target and live parameters."""
        gaps = [
            (t - p).abs().max().item()
            for t, p in zip(self.network.parameters(), self.live.parameters())
        ]
        return max(gaps) if gaps else 0.0

    def to(self, device: str) -> TargetNetwork:
        self.network.to(device)
        return self

    def state_dict(self) -> Dict[str, Any]:
        return {
            "network": copy.deepcopy(self.network.state_dict()),
            "state": self.state.value,
            "num_updates": self.num_updates,
        }

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        self.network.load_state_dict(state["network"])
        self.state = TargetSyncState(state.get("state", TargetSyncState.DRIFTING.value))
        self.num_updates = int(state.get("num_updates", 0))
