"""
Read-only flow grid and opacity state consumed by the path integrator.

The grid is an axis-aligned box of Cartesian cells.  Each cell carries the
mass density, hydrogen and electron number densities, a bulk velocity and the
number densities of the ions listed in an :class:`IonTable`.  All fields are
stored as float64 tensors and are never written after construction, so a
single grid can be shared by any number of integrations.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
import torch

from .config import ColumnMode, ColumnSpec, OpacitySource, OpacitySpec
from .constants import CONSTANTS
from .exceptions import TauDiagConfigError

logger = logging.getLogger("taudiag.grid")

DTYPE = torch.float64


@dataclass(frozen=True)
class IonTable:
    """
    Photoionization data for the ions tracked by a grid.

    Cross-sections follow the hydrogenic approximation
    ``sigma(nu) = sigma0 * (nu / nu_th) ** -3`` above the threshold ``nu_th``.
    """

    element: tuple[str, ...] = ()
    istate: tuple[int, ...] = ()
    nu_th: tuple[float, ...] = ()
    sigma0: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "element", tuple(str(e) for e in self.element))
        object.__setattr__(self, "istate", tuple(int(i) for i in self.istate))
        object.__setattr__(self, "nu_th", tuple(float(v) for v in self.nu_th))
        object.__setattr__(self, "sigma0", tuple(float(s) for s in self.sigma0))
        n = len(self.element)
        if not (len(self.istate) == len(self.nu_th) == len(self.sigma0) == n):
            raise TauDiagConfigError("ion table columns must all have the same length.")
        if any(v <= 0.0 or not math.isfinite(v) for v in self.nu_th):
            raise TauDiagConfigError("ion threshold frequencies must be positive and finite.")
        if any(s < 0.0 or not math.isfinite(s) for s in self.sigma0):
            raise TauDiagConfigError("ion cross-sections must be non-negative and finite.")

    @property
    def n_ions(self) -> int:
        return len(self.element)

    def label(self, ion: int) -> str:
        return f"{self.element[ion]} {self.istate[ion]}"

    def cross_sections(self, frequency: torch.Tensor) -> torch.Tensor:
        """Return ``[N, n_ions]`` photoionization cross-sections (cm^2)."""

        nu_th = torch.tensor(self.nu_th, dtype=frequency.dtype, device=frequency.device)
        sigma0 = torch.tensor(self.sigma0, dtype=frequency.dtype, device=frequency.device)
        ratio = frequency.unsqueeze(-1) / nu_th
        sigma = sigma0 * ratio.clamp_min(1.0).pow(-3)
        return torch.where(ratio >= 1.0, sigma, torch.zeros_like(sigma))


def hydrogen_helium_ions() -> IonTable:
    """A minimal H/He table with the Lyman and helium edges."""

    return IonTable(
        element=("H", "He", "He"),
        istate=(1, 1, 2),
        nu_th=(3.387485e15, 5.9483e15, 1.394384e16),
        sigma0=(6.30e-18, 7.40e-18, 1.58e-18),
    )


def _as_tensor(value: object, name: str) -> torch.Tensor:
    if isinstance(value, torch.Tensor):
        tensor = value.detach().to(dtype=DTYPE, device="cpu").clone()
    else:
        tensor = torch.as_tensor(np.asarray(value, dtype=np.float64), dtype=DTYPE).clone()
    if not torch.isfinite(tensor).all():
        raise TauDiagConfigError(f"{name} contains non-finite values.")
    return tensor


@dataclass(frozen=True, eq=False)
class FlowGrid:
    """
    Immutable Cartesian flow grid.

    Parameters
    ----------
    rho:
        Mass density (g cm^-3), shape ``[nx, ny, nz]``.
    n_h, n_e:
        Hydrogen and electron number densities (cm^-3), same shape as ``rho``.
    velocity:
        Bulk velocity (cm s^-1), shape ``[nx, ny, nz, 3]``.
    origin:
        Position of the low corner of the box (cm).
    cell_size:
        Cell edge lengths along each axis (cm).
    ion_density:
        Ion number densities (cm^-3), shape ``[nx, ny, nz, n_ions]``.
    ions:
        Photoionization data for the ions in ``ion_density``.
    center:
        Centre of the central object and emission origin; defaults to the
        centre of the box.
    central_radius:
        Radius of the opaque central object (cm); zero for a point source.
    """

    rho: torch.Tensor
    n_h: torch.Tensor
    n_e: torch.Tensor
    velocity: torch.Tensor
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0)
    cell_size: tuple[float, float, float] = (1.0, 1.0, 1.0)
    ion_density: torch.Tensor | None = None
    ions: IonTable = field(default_factory=IonTable)
    center: tuple[float, float, float] | None = None
    central_radius: float = 0.0

    def __post_init__(self) -> None:
        rho = _as_tensor(self.rho, "rho")
        if rho.ndim != 3:
            raise TauDiagConfigError("rho must be a 3D array matching the grid shape.")
        shape = tuple(rho.shape)
        if any(n < 1 for n in shape):
            raise TauDiagConfigError("grid shape entries must be >= 1.")

        fields = {"rho": rho}
        for name in ("n_h", "n_e"):
            tensor = _as_tensor(getattr(self, name), name)
            if tuple(tensor.shape) != shape:
                raise TauDiagConfigError(
                    f"{name} shape {tuple(tensor.shape)} does not match grid {shape}."
                )
            fields[name] = tensor

        velocity = _as_tensor(self.velocity, "velocity")
        if tuple(velocity.shape) != (*shape, 3):
            raise TauDiagConfigError(
                f"velocity shape {tuple(velocity.shape)} does not match {(*shape, 3)}."
            )
        speed = torch.linalg.vector_norm(velocity, dim=-1)
        if (speed >= CONSTANTS.VLIGHT).any():
            raise TauDiagConfigError("velocity field contains speeds at or above c.")
        fields["velocity"] = velocity

        if self.ion_density is None:
            ion_density = torch.zeros(*shape, self.ions.n_ions, dtype=DTYPE)
        else:
            ion_density = _as_tensor(self.ion_density, "ion_density")
        if tuple(ion_density.shape) != (*shape, self.ions.n_ions):
            raise TauDiagConfigError(
                f"ion_density shape {tuple(ion_density.shape)} does not match "
                f"{(*shape, self.ions.n_ions)}."
            )
        fields["ion_density"] = ion_density

        for name in ("rho", "n_h", "n_e", "ion_density"):
            if (fields[name] < 0).any():
                raise TauDiagConfigError(f"{name} must be non-negative everywhere.")

        origin = tuple(float(v) for v in self.origin)
        cell_size = tuple(float(v) for v in self.cell_size)
        if len(origin) != 3 or len(cell_size) != 3:
            raise TauDiagConfigError("origin and cell_size must have length 3.")
        if any(v <= 0.0 or not math.isfinite(v) for v in cell_size):
            raise TauDiagConfigError("cell_size entries must be positive.")

        if self.center is None:
            center = tuple(o + 0.5 * n * h for o, n, h in zip(origin, shape, cell_size))
        else:
            center = tuple(float(v) for v in self.center)
            if len(center) != 3:
                raise TauDiagConfigError("center must have length 3.")
        if self.central_radius < 0.0:
            raise TauDiagConfigError("central_radius must be non-negative.")

        for name, tensor in fields.items():
            object.__setattr__(self, name, tensor)
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "cell_size", cell_size)
        object.__setattr__(self, "center", center)
        object.__setattr__(self, "central_radius", float(self.central_radius))

    # ---------------------------------------------------------------- geometry
    @property
    def shape(self) -> tuple[int, int, int]:
        return tuple(self.rho.shape)  # type: ignore[return-value]

    @property
    def box_min(self) -> torch.Tensor:
        return torch.tensor(self.origin, dtype=DTYPE)

    @property
    def box_max(self) -> torch.Tensor:
        extent = [o + n * h for o, n, h in zip(self.origin, self.shape, self.cell_size)]
        return torch.tensor(extent, dtype=DTYPE)

    @property
    def spacing(self) -> torch.Tensor:
        return torch.tensor(self.cell_size, dtype=DTYPE)

    @property
    def center_tensor(self) -> torch.Tensor:
        return torch.tensor(self.center, dtype=DTYPE)

    def contains(self, positions: torch.Tensor) -> torch.Tensor:
        """Boolean mask of positions inside the closed box."""
        return ((positions >= self.box_min) & (positions <= self.box_max)).all(dim=-1)

    def inside_central_object(self, positions: torch.Tensor) -> torch.Tensor:
        if self.central_radius <= 0.0:
            return torch.zeros(positions.shape[0], dtype=torch.bool)
        offset = positions - self.center_tensor
        return (offset * offset).sum(dim=-1) < self.central_radius**2

    def cell_indices(
        self,
        positions: torch.Tensor,
        directions: torch.Tensor | None = None,
        tolerance: float = 0.0,
    ) -> torch.Tensor:
        """
        Integer cell indices ``[N, 3]``; cells outside the grid are not clamped.

        With ``directions``, a position within ``tolerance`` cell widths of a
        cell face is assigned to the cell on the side the photon is heading.
        """

        u = (positions - self.box_min) / self.spacing
        cells = torch.floor(u)
        if directions is not None:
            nearest = torch.round(u)
            on_face = ((u - nearest).abs() <= tolerance) & (directions != 0)
            entering = torch.where(directions < 0, nearest - 1.0, nearest)
            cells = torch.where(on_face, entering, cells)
        return cells.long()

    # ---------------------------------------------------------------- lookups
    def validate_ion(self, ion: int) -> None:
        if ion < 0 or ion > self.ions.n_ions - 1:
            raise TauDiagConfigError(
                f"The ion number {ion} is an invalid ion number: there are "
                f"{self.ions.n_ions} ions which have been loaded."
            )

    def velocity_at(self, cells: torch.Tensor) -> torch.Tensor:
        return self.velocity[cells[:, 0], cells[:, 1], cells[:, 2]]

    def extinction(
        self,
        cells: torch.Tensor,
        frequency: torch.Tensor,
        opacity: OpacitySpec,
    ) -> torch.Tensor:
        """
        Extinction coefficient (cm^-1) in ``cells`` at co-moving ``frequency``.
        """

        i, j, k = cells[:, 0], cells[:, 1], cells[:, 2]
        if opacity.source is OpacitySource.ELECTRON_SCATTERING:
            return self.n_e[i, j, k] * CONSTANTS.THOMSON

        sigma = self.ions.cross_sections(frequency)
        densities = self.ion_density[i, j, k]
        if opacity.source is OpacitySource.ION:
            return densities[:, opacity.ion] * sigma[:, opacity.ion]
        return self.n_e[i, j, k] * CONSTANTS.THOMSON + (densities * sigma).sum(dim=-1)

    def column_density(self, cells: torch.Tensor, column: ColumnSpec) -> torch.Tensor:
        i, j, k = cells[:, 0], cells[:, 1], cells[:, 2]
        if column.mode is ColumnMode.MASS:
            return self.rho[i, j, k]
        if column.mode is ColumnMode.HYDROGEN:
            return self.n_h[i, j, k]
        return self.ion_density[i, j, k, column.ion]

    # ---------------------------------------------------------------- factories
    @classmethod
    def uniform(
        cls,
        shape: Sequence[int],
        cell_size: float | Sequence[float] = 1.0,
        *,
        rho: float = 0.0,
        n_h: float | None = None,
        n_e: float = 0.0,
        velocity: Sequence[float] = (0.0, 0.0, 0.0),
        ion_density: Sequence[float] | None = None,
        ions: IonTable | None = None,
        origin: Sequence[float] = (0.0, 0.0, 0.0),
        center: Sequence[float] | None = None,
        central_radius: float = 0.0,
    ) -> FlowGrid:
        """Build a homogeneous grid, mostly useful for analytic checks."""

        shape = tuple(int(n) for n in shape)
        if isinstance(cell_size, (int, float)):
            cell_size = (float(cell_size),) * 3
        ions = ions if ions is not None else IonTable()
        if n_h is None:
            n_h = rho / CONSTANTS.MPROT
        ones = torch.ones(shape, dtype=DTYPE)
        vel = torch.tensor(velocity, dtype=DTYPE).expand(*shape, 3).clone()
        if ion_density is None:
            ion_field = torch.zeros(*shape, ions.n_ions, dtype=DTYPE)
        else:
            ion_field = torch.tensor(ion_density, dtype=DTYPE).expand(*shape, ions.n_ions).clone()
        return cls(
            rho=ones * rho,
            n_h=ones * n_h,
            n_e=ones * n_e,
            velocity=vel,
            origin=tuple(origin),
            cell_size=tuple(cell_size),
            ion_density=ion_field,
            ions=ions,
            center=None if center is None else tuple(center),
            central_radius=central_radius,
        )


__all__ = ["FlowGrid", "IonTable", "hydrogen_helium_ions", "DTYPE"]
