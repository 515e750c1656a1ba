"""
Gradient post-processing for the policy optimizer.

Gradients of one network are clipped jointly: the global L2 norm is taken
over every parameter tensor and all tensors are scaled by the same factor
``min(1, max_norm / norm)``, which keeps the relative update direction
intact. Non-finite norms are reported before anything is applied.

Example:
    >>> processor = GradientProcessor(max_norm=0.5)
    >>> grads = processor.collect(actor.parameters())
    >>> result = processor.clip(grads, network="actor")
    >>> processor.assign(actor.parameters(), result.gradients)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

import torch
import torch.nn as nn

from marketrl.errors import DivergentGradientError

Tensor = torch.Tensor


@dataclass
class ClipResult:
    """Processed gradients of one network.

    Attributes:
        gradients: Scaled gradient tensors, one per parameter (None where
            the parameter received no gradient).
        total_norm: Global L2 norm before scaling.
        scale: Factor every tensor was multiplied by.
    """

    gradients: List[Optional[Tensor]]
    total_norm: float
    scale: float

    @property
    def clipped(self) -> bool:
        return self.scale < 1.0


def global_norm(gradients: Iterable[Optional[Tensor]], norm_type: float = 2.0) -> Tensor:
    """Norm of the concatenation of all gradient tensors."""
    norms = [g.detach().norm(p=norm_type) for g in gradients if g is not None]
    if not norms:
        return torch.zeros(())
    return torch.stack(norms).norm(p=norm_type)


class GradientProcessor:
    """Joint global-norm clipping with divergence detection.

    Args:
        max_norm: Maximum global L2 norm of an applied update.
        normalize: Rescale every update to unit global norm before clipping.
        eps: Guards the division when normalizing.
    """

    def __init__(self, max_norm: float = 0.5, normalize: bool = False, eps: float = 1e-8):
        self.max_norm = max_norm
        self.normalize_updates = normalize
        self.eps = eps

    @staticmethod
    def collect(parameters: Iterable[nn.Parameter]) -> List[Optional[Tensor]]:
        """Detached copies of the current ``.grad`` of each parameter."""
        return [
            p.grad.detach().clone() if p.grad is not None else None for p in parameters
        ]

    @staticmethod
    def assign(
        parameters: Iterable[nn.Parameter], gradients: List[Optional[Tensor]]
    ) -> None:
        """Write processed gradients back into ``.grad`` ahead of an optimizer step."""
        for p, g in zip(parameters, gradients):
            p.grad = None if g is None else g.to(p.device)

    def check_finite(self, gradients: List[Optional[Tensor]], network: str = "") -> float:
        norm = global_norm(gradients).item()
        if not math.isfinite(norm):
            raise DivergentGradientError(
                f"Non-finite gradient norm for {network or 'network'}",
                network=network,
                norm=norm,
            )
        return norm

    def normalize(
        self, gradients: List[Optional[Tensor]], network: str = ""
    ) -> List[Optional[Tensor]]:
        """Rescale to unit global norm."""
        norm = self.check_finite(gradients, network)
        factor = 1.0 / (norm + self.eps)
        return [None if g is None else g * factor for g in gradients]

    def clip(
        self,
        gradients: List[Optional[Tensor]],
        max_norm: Optional[float] = None,
        network: str = "",
    ) -> ClipResult:
        """Scale all tensors by ``min(1, max_norm / global_norm)``.

        Raises:
            DivergentGradientError: If the global norm is NaN or infinite.
        """
        max_norm = self.max_norm if max_norm is None else max_norm
        norm = self.check_finite(gradients, network)
        scale = min(1.0, max_norm / norm) if norm > 0 else 1.0
        clipped = [None if g is None else g * scale for g in gradients]
        return ClipResult(gradients=clipped, total_norm=norm, scale=scale)

    def process(
        self, gradients: List[Optional[Tensor]], network: str = ""
    ) -> ClipResult:
        """Optional normalization followed by clipping."""
        if self.normalize_updates:
            raw_norm = self.check_finite(gradients, network)
            result = self.clip(self.normalize(gradients, network), network=network)
            result.total_norm = raw_norm
            return result
        return self.clip(gradients, network=network)
