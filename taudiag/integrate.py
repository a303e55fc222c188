"""
Line-of-sight optical depth integration through a flow grid.

Photons are transported in straight lines, one grid cell per step, with all
photons of a call marched together.  In each cell the lab-frame frequency is
shifted into the co-moving frame of the flow and the extinction coefficient
and column density of the cell are accumulated over the path length through
it.  A photon stops when it leaves the grid or, when a stopping depth is
given, at the point where its optical depth reaches that depth.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import torch

from .config import (
    ColumnMode,
    ColumnSpec,
    IntegratorConfig,
    OpacitySource,
    OpacitySpec,
    RelativityMode,
)
from .constants import CONSTANTS
from .exceptions import IntegrationError, TauDiagConfigError
from .grid import DTYPE, FlowGrid
from .photon import Photon, PhotonStatus

logger = logging.getLogger("taudiag.integrate")


class IntegrationStatus(Enum):
    ESCAPED = "escaped"
    REACHED_DEPTH = "reached_depth"
    INVALID_START = "invalid_start"
    HIT_CENTRAL = "hit_central"
    PATH_TOO_LONG = "path_too_long"

    @property
    def succeeded(self) -> bool:
        return self in (IntegrationStatus.ESCAPED, IntegrationStatus.REACHED_DEPTH)


# Integer codes used while marching; index into _STATUSES.
_ALIVE = -1
_STATUSES = tuple(IntegrationStatus)
_CODE = {status: i for i, status in enumerate(_STATUSES)}

_PHOTON_STATUS = {
    IntegrationStatus.ESCAPED: PhotonStatus.ESCAPED,
    IntegrationStatus.REACHED_DEPTH: PhotonStatus.REACHED_DEPTH,
    IntegrationStatus.HIT_CENTRAL: PhotonStatus.HIT_CENTRAL,
    IntegrationStatus.INVALID_START: PhotonStatus.FAILED,
    IntegrationStatus.PATH_TOO_LONG: PhotonStatus.FAILED,
}


@dataclass(frozen=True)
class IntegrationResult:
    """Outcome of integrating one photon."""

    optical_depth: float
    column_density: float
    position: tuple[float, float, float]
    status: IntegrationStatus
    n_steps: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded


def comoving_frequency(
    frequency: torch.Tensor,
    direction: torch.Tensor,
    velocity: torch.Tensor,
    relativity: RelativityMode,
) -> torch.Tensor:
    """Doppler shift lab-frame ``frequency`` into the frame moving with ``velocity``."""

    beta_parallel = (velocity * direction).sum(dim=-1) / CONSTANTS.VLIGHT
    if relativity is RelativityMode.LINEAR:
        return frequency * (1.0 - beta_parallel)
    beta_sq = (velocity * velocity).sum(dim=-1) / CONSTANTS.VLIGHT**2
    gamma = torch.rsqrt(1.0 - beta_sq)
    return frequency * gamma * (1.0 - beta_parallel)


class PathIntegrator:
    """
    Accumulate optical depth and column density along photon paths.

    The integrator holds an explicit reference to a read-only grid; nothing
    outside the photons passed to :meth:`integrate` is modified, so repeated
    calls with identical photons give identical results.
    """

    def __init__(self, grid: FlowGrid, config: IntegratorConfig | None = None) -> None:
        self.grid = grid
        self.config = config if config is not None else IntegratorConfig()

    def _check_request(
        self, opacity: OpacitySpec, column: ColumnSpec, tau_stop: float | None
    ) -> None:
        if opacity.source is OpacitySource.ION:
            self.grid.validate_ion(opacity.ion)
        if column.mode is ColumnMode.ION:
            self.grid.validate_ion(column.ion)
        if tau_stop is not None and not tau_stop >= 0.0:
            raise TauDiagConfigError(f"tau_stop must be non-negative, got {tau_stop}.")

    def integrate(
        self,
        photons: Sequence[Photon],
        *,
        opacity: OpacitySpec | None = None,
        column: ColumnSpec | None = None,
        relativity: RelativityMode = RelativityMode.FULL,
        tau_stop: float | None = None,
    ) -> list[IntegrationResult]:
        """
        Transport ``photons`` through the grid.

        Parameters
        ----------
        photons:
            Photons to transport.  Each photon's position and status are
            updated in place to reflect where and why it stopped.
        opacity:
            Extinction processes contributing to the optical depth; defaults
            to electron scattering plus photoionization.
        column:
            Density accumulated into the column density; defaults to mass.
        relativity:
            Frame transformation used for the Doppler shift.
        tau_stop:
            Optional optical depth at which to stop each photon.

        Returns
        -------
        list[IntegrationResult]
            One result per photon, in order.  Failed integrations report zero
            optical depth and column density.
        """

        opacity = opacity if opacity is not None else OpacitySpec.total()
        column = column if column is not None else ColumnSpec.mass()
        self._check_request(opacity, column, tau_stop)

        n = len(photons)
        if n == 0:
            return []

        grid = self.grid
        pos = torch.stack([p.position.to(DTYPE) for p in photons])
        dirs = torch.stack([p.direction.to(DTYPE) for p in photons])
        dirs = dirs / torch.linalg.vector_norm(dirs, dim=-1, keepdim=True)
        freq = torch.tensor([p.frequency for p in photons], dtype=DTYPE)

        tau = torch.zeros(n, dtype=DTYPE)
        col = torch.zeros(n, dtype=DTYPE)
        steps = torch.zeros(n, dtype=torch.long)
        status = torch.full((n,), _ALIVE, dtype=torch.long)

        box_min = grid.box_min
        spacing = grid.spacing
        shape = torch.tensor(grid.shape, dtype=torch.long)
        center = grid.center_tensor
        radius = grid.central_radius

        invalid = ~grid.contains(pos) | grid.inside_central_object(pos)
        status[invalid] = _CODE[IntegrationStatus.INVALID_START]

        for step in range(self.config.max_steps + 1):
            idx = torch.nonzero(status == _ALIVE, as_tuple=False).squeeze(-1)
            if idx.numel() == 0:
                break

            p = pos[idx]
            d = dirs[idx]
            cells = grid.cell_indices(p, d, self.config.boundary_tolerance)
            outside = ((cells < 0) | (cells >= shape)).any(dim=-1)
            status[idx[outside]] = _CODE[IntegrationStatus.ESCAPED]

            inside = ~outside
            idx, p, d, cells = idx[inside], p[inside], d[inside], cells[inside]
            if idx.numel() == 0 or step == self.config.max_steps:
                continue

            # Distance to the next cell face along each axis
            lower = box_min + cells.to(DTYPE) * spacing
            plane = torch.where(d > 0, lower + spacing, lower)
            safe_d = torch.where(d != 0, d, torch.ones_like(d))
            t_axis = torch.where(
                d != 0, (plane - p) / safe_d, torch.full_like(d, float("inf"))
            ).clamp_min(0.0)
            ds, axis = t_axis.min(dim=-1)

            hit = torch.zeros_like(ds, dtype=torch.bool)
            if radius > 0.0:
                oc = p - center
                b = (oc * d).sum(dim=-1)
                disc = b * b - ((oc * oc).sum(dim=-1) - radius**2)
                s_hit = -b - torch.sqrt(disc.clamp_min(0.0))
                hit = (disc >= 0.0) & (s_hit >= 0.0) & (s_hit < ds)
                ds = torch.where(hit, s_hit, ds)

            nu = comoving_frequency(freq[idx], d, grid.velocity_at(cells), relativity)
            kappa = grid.extinction(cells, nu, opacity)
            density = grid.column_density(cells, column)
            tau_now = tau[idx]

            if tau_stop is not None:
                crossing = (kappa > 0.0) & (tau_now + kappa * ds >= tau_stop)
                safe_kappa = torch.where(kappa > 0.0, kappa, torch.ones_like(kappa))
                partial = torch.minimum(((tau_stop - tau_now) / safe_kappa).clamp_min(0.0), ds)
                path = torch.where(crossing, partial, ds)
                hit = hit & ~crossing
                tau[idx] = torch.where(
                    crossing, torch.full_like(tau_now, tau_stop), tau_now + kappa * path
                )
            else:
                crossing = torch.zeros_like(hit)
                path = ds
                tau[idx] = tau_now + kappa * path

            col[idx] = col[idx] + density * path
            new_pos = p + path.unsqueeze(-1) * d

            # Land exactly on the face that was crossed
            face = ~(crossing | hit)
            rows = torch.arange(idx.numel())
            snapped = new_pos.clone()
            snapped[rows, axis] = plane[rows, axis]
            pos[idx] = torch.where(face.unsqueeze(-1), snapped, new_pos)

            steps[idx] += 1
            status[idx[crossing]] = _CODE[IntegrationStatus.REACHED_DEPTH]
            status[idx[hit]] = _CODE[IntegrationStatus.HIT_CENTRAL]

        status[status == _ALIVE] = _CODE[IntegrationStatus.PATH_TOO_LONG]

        results = []
        for i, photon in enumerate(photons):
            outcome = _STATUSES[int(status[i])]
            photon.position = pos[i].clone()
            photon.status = _PHOTON_STATUS[outcome]
            if outcome.succeeded:
                depth, column_density = float(tau[i]), float(col[i])
            else:
                depth, column_density = 0.0, 0.0
                logger.debug(
                    "Photon %d of frequency %e failed to integrate: %s",
                    i,
                    photon.frequency,
                    outcome.value,
                )
            results.append(
                IntegrationResult(
                    optical_depth=depth,
                    column_density=column_density,
                    position=tuple(pos[i].tolist()),
                    status=outcome,
                    n_steps=int(steps[i]),
                )
            )
        return results

    def integrate_one(self, photon: Photon, **kwargs) -> IntegrationResult:
        """
        Integrate a single photon, raising :class:`IntegrationError` on failure.
        """

        result = self.integrate([photon], **kwargs)[0]
        if not result.succeeded:
            raise IntegrationError(
                f"integration of photon with frequency {photon.frequency:e} failed: "
                f"{result.status.value}",
                status=result.status,
            )
        return result


__all__ = ["IntegrationResult", "IntegrationStatus", "PathIntegrator", "comoving_frequency"]
