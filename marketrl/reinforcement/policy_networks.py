"""
Policy Networks for the Policy Trainer.

This module provides the feed-forward approximator shared by the actor and
the critic, and the actor itself: a categorical policy over a small discrete
action set (e.g. buy / hold / sell).

Example:
    >>> from marketrl.reinforcement import ActorNetwork
    >>> actor = ActorNetwork(state_dim=8, action_dim=3, hidden_dims=[64, 64])
    >>> output = actor(torch.randn(2, 8))
    >>> output.probs.sum(dim=-1)
    tensor([1.0000, 1.0000], grad_fn=<SumBackward1>)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F
from torch.distributions import Categorical

Tensor = torch.Tensor
Module = nn.Module


@dataclass
class PolicyOutput:
    """Output from the actor network.

    Attributes:
        logits: Unnormalized action scores.
        probs: Action probabilities (softmax of logits).
        log_probs: Log action probabilities.
        entropy: Entropy of the action distribution, one value per state.
    """

    logits: Tensor
    probs: Tensor
    log_probs: Tensor
    entropy: Tensor

    @property
    def distribution(self) -> Categorical:
        return Categorical(logits=self.logits)

    def detach(self) -> PolicyOutput:
        """Detach all tensors from computation graph."""
        return PolicyOutput(
            logits=self.logits.detach(),
            probs=self.probs.detach(),
            log_probs=self.log_probs.detach(),
            entropy=self.entropy.detach(),
        )


class Approximator(Module):
    """Feed-forward function approximator.

    A stack of ``Linear -> activation [-> Dropout]`` blocks followed by a
    linear output layer.

    Args:
        input_dim: Dimension of the state vector.
        output_dim: Dimension of the output layer.
        hidden_dims: Ordered list of hidden layer widths.
        activation: Activation function name ('relu', 'tanh', 'elu', 'gelu',
            'silu', 'leaky_relu').
        dropout: Dropout rate applied after each hidden activation.
        l2: L2 regularization strength on weight matrices.
    """

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        hidden_dims: Optional[List[int]] = None,
        activation: str = "relu",
        dropout: float = 0.0,
        l2: float = 0.0,
    ):
        super().__init__()
        self.input_dim = input_dim
        self.output_dim = output_dim
        self.hidden_dims = list(hidden_dims) if hidden_dims else [64, 64]
        self.activation = activation
        self.dropout = dropout
        self.l2 = l2

        self.net = self._build_mlp(input_dim, output_dim)

    @staticmethod
    def _get_activation(name: str) -> nn.Module:
        """Get activation function by name."""
        activations = {
            "relu": nn.ReLU,
            "tanh": nn.Tanh,
            "elu": nn.ELU,
            "gelu": nn.GELU,
            "silu": nn.SiLU,
            "leaky_relu": nn.LeakyReLU,
        }
        if name not in activations:
            raise ValueError(
                f"Unknown activation: {name}. Available: {list(activations.keys())}"
            )
        return activations[name]()

    def _build_mlp(self, input_dim: int, output_dim: int) -> nn.Sequential:
        """Build MLP network."""
        layers = []
        prev_dim = input_dim

        for hidden_dim in self.hidden_dims:
            layers.extend(
                [
                    nn.Linear(prev_dim, hidden_dim),
                    self._get_activation(self.activation),
                ]
            )
            if self.dropout > 0:
                layers.append(nn.Dropout(self.dropout))
            prev_dim = hidden_dim

        layers.append(nn.Linear(prev_dim, output_dim))
        return nn.Sequential(*layers)

    @torch.no_grad()
    def _infer_net(self, state: Tensor) -> Tensor:
        # Dropout layers are skipped without flipping self.training, so
        # inference never mutates a network a training cycle is using.
        x = state
        for module in self.net:
            if not isinstance(module, nn.Dropout):
                x = module(x)
        return x

    def l2_penalty(self) -> Tensor:
        """``l2 * sum(||W||^2)`` over weight matrices; biases are excluded."""
        penalty = torch.zeros((), device=self.net[0].weight.device)
        if self.l2 == 0:
            return penalty
        for module in self.net:
            if isinstance(module, nn.Linear):
                penalty = penalty + module.weight.pow(2).sum()
        return self.l2 * penalty


class ActorNetwork(Approximator):
    """Categorical policy network pi(a|s).

    Maps a state vector to a probability distribution over ``action_dim``
    discrete actions.

    Args:
        state_dim: Dimension of state space.
        action_dim: Number of discrete actions.
        hidden_dims: List of hidden layer dimensions.
        activation: Activation function name.
        dropout: Dropout rate between hidden layers.
        l2: L2 regularization strength.
    """

    def __init__(
        self,
        state_dim: int,
        action_dim: int,
        hidden_dims: Optional[List[int]] = None,
        activation: str = "relu",
        dropout: float = 0.0,
        l2: float = 0.0,
    ):
        super().__init__(state_dim, action_dim, hidden_dims, activation, dropout, l2)
        self.state_dim = state_dim
        self.action_dim = action_dim

    def forward(self, state: Tensor) -> PolicyOutput:
        """Forward pass.

        Args:
            state: State tensor of shape (batch_size, state_dim).

        Returns:
            PolicyOutput with logits, probabilities and entropy.
        """
        return self._policy_output(self.net(state))

    def infer(self, state: Tensor) -> PolicyOutput:
        """Inference-mode forward pass: no gradients, no dropout."""
        return self._policy_output(self._infer_net(state))

    @staticmethod
    def _policy_output(logits: Tensor) -> PolicyOutput:
        log_probs = F.log_softmax(logits, dim=-1)
        probs = log_probs.exp()
        entropy = -(probs * log_probs).sum(dim=-1)
        return PolicyOutput(
            logits=logits, probs=probs, log_probs=log_probs, entropy=entropy
        )

    def evaluate_actions(self, state: Tensor, action: Tensor) -> Tuple[Tensor, Tensor]:
        """Log probability of ``action`` and distribution entropy per state."""
        output = self.forward(state)
        log_prob = output.log_probs.gather(-1, action.long().unsqueeze(-1)).squeeze(-1)
        return log_prob, output.entropy


def create_actor(config) -> ActorNetwork:
    """Build an actor from a ``NetworkConfig``."""
    return ActorNetwork(
        state_dim=config.state_dim,
        action_dim=config.action_dim,
        hidden_dims=config.actor_hidden_dims,
        activation=config.activation,
        dropout=config.actor_dropout,
        l2=config.actor_l2,
    )
