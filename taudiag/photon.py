"""
Photon probes launched from the emission origin of a flow grid.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

import torch

from .config import IntegratorConfig
from .exceptions import PhotonCreationError
from .grid import DTYPE, FlowGrid

logger = logging.getLogger("taudiag.photon")


class PhotonStatus(Enum):
    ALIVE = "alive"
    ESCAPED = "escaped"
    REACHED_DEPTH = "reached_depth"
    HIT_CENTRAL = "hit_central"
    FAILED = "failed"


@dataclass
class Photon:
    """
    A non-interacting probe photon.

    Attributes
    ----------
    position:
        Current position (cm), shape ``[3]``.
    direction:
        Unit direction of travel, shape ``[3]``.
    frequency:
        Lab-frame frequency (Hz).
    status:
        Updated by the integrator once the photon has been transported.
    """

    position: torch.Tensor
    direction: torch.Tensor
    frequency: float
    status: PhotonStatus = PhotonStatus.ALIVE
    origin: torch.Tensor = field(init=False)

    def __post_init__(self) -> None:
        self.position = torch.as_tensor(self.position, dtype=DTYPE).clone()
        self.direction = torch.as_tensor(self.direction, dtype=DTYPE).clone()
        self.origin = self.position.clone()


class PhotonFactory:
    """
    Create photons at the surface of the central object of ``grid``.

    Photons start a fraction ``config.launch_offset`` of the central radius
    outside the surface so that they begin in the flow rather than on the
    object; with a point source they start exactly at the grid centre.
    """

    def __init__(self, grid: FlowGrid, config: IntegratorConfig | None = None) -> None:
        self.grid = grid
        self.config = config if config is not None else IntegratorConfig()
        self.launch_radius = grid.central_radius * (1.0 + self.config.launch_offset)

    def create(self, frequency: float, direction: Sequence[float] | torch.Tensor) -> Photon:
        if not math.isfinite(frequency) or frequency <= 0.0:
            raise PhotonCreationError(f"photon frequency {frequency!r} must be positive.")

        lmn = torch.as_tensor(direction, dtype=DTYPE)
        if lmn.shape != (3,) or not torch.isfinite(lmn).all():
            raise PhotonCreationError("photon direction must be a finite 3-vector.")
        norm = torch.linalg.vector_norm(lmn)
        if norm <= 0.0:
            raise PhotonCreationError("photon direction must be non-zero.")
        lmn = lmn / norm

        position = self.grid.center_tensor + self.launch_radius * lmn
        if not bool(self.grid.contains(position.unsqueeze(0))[0]):
            raise PhotonCreationError(
                f"photon launched at {position.tolist()} lies outside the grid."
            )
        return Photon(position=position, direction=lmn, frequency=float(frequency))


__all__ = ["Photon", "PhotonFactory", "PhotonStatus"]
