"""
Value Networks for the Policy Trainer.

The critic estimates the expected discounted return V(s) of a market state.

Example:
    >>> from marketrl.reinforcement import CriticNetwork
    >>> critic = CriticNetwork(state_dim=8)
    >>> critic(torch.randn(2, 8)).value.shape
    torch.Size([2])
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import torch

from marketrl.reinforcement.policy_networks import Approximator

Tensor = torch.Tensor


@dataclass
class ValueOutput:
    """Output from a value network.

    Attributes:
        value: Predicted state value, shape (batch_size,).
    """

    value: Tensor

    def detach(self) -> ValueOutput:
        """Detach all tensors from computation graph."""
        return ValueOutput(value=self.value.detach())


class CriticNetwork(Approximator):
    """State value network V(s) with a single linear output.

    Args:
        state_dim: Dimension of state space.
        hidden_dims: List of hidden layer dimensions.
        activation: Activation function name.
        dropout: Dropout rate between hidden layers.
        l2: L2 regularization strength.
    """

    def __init__(
        self,
        state_dim: int,
        hidden_dims: Optional[List[int]] = None,
        activation: str = "relu",
        dropout: float = 0.0,
        l2: float = 0.0,
    ):
        super().__init__(state_dim, 1, hidden_dims, activation, dropout, l2)
        self.state_dim = state_dim

    def forward(self, state: Tensor) -> ValueOutput:
        """Forward pass returning state value."""
        return ValueOutput(value=self.net(state).squeeze(-1))

    def infer(self, state: Tensor) -> ValueOutput:
        """Inference-mode forward pass: no gradients, no dropout."""
        return ValueOutput(value=self._infer_net(state).squeeze(-1))


def create_critic(config) -> CriticNetwork:
    """Build a critic from a ``NetworkConfig``."""
    return CriticNetwork(
        state_dim=config.state_dim,
        hidden_dims=config.critic_hidden_dims,
        activation=config.activation,
        dropout=config.critic_dropout,
        l2=config.critic_l2,
    )
