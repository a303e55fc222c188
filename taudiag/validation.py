"""
Validation helpers for the path integrator.

The routines in this module compare integrations through homogeneous grids
against their analytic solutions.  They are cheap enough to run as smoke tests
before a long diagnostic run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import torch

from .config import IntegratorConfig, OpacitySpec
from .constants import CONSTANTS
from .grid import FlowGrid
from .integrate import PathIntegrator
from .photon import PhotonFactory

logger = logging.getLogger("taudiag.validation")


@dataclass
class ValidationResult:
    """Container for validation metrics."""

    name: str
    passed: bool
    metrics: dict[str, float]


class RadiativeValidator:
    """
    Execute analytic consistency checks on the path integrator.
    """

    def __init__(
        self,
        config: IntegratorConfig | None = None,
        *,
        grid_shape: tuple[int, int, int] = (8, 8, 8),
        cell_size: float = 1.0,
        tolerance: float = 1.0e-6,
    ) -> None:
        self.config = config if config is not None else IntegratorConfig()
        self.grid_shape = grid_shape
        self.cell_size = cell_size
        self.tolerance = tolerance

    def _slab(self, kappa_value: float) -> FlowGrid:
        return FlowGrid.uniform(
            self.grid_shape, self.cell_size, n_e=kappa_value / CONSTANTS.THOMSON
        )

    # ---------------------------------------------------------------- analysis
    def uniform_slab_test(self, *, kappa_value: float = 0.05) -> ValidationResult:
        """
        Optical depth from the centre of a homogeneous electron scattering
        slab to its upper face along +z, compared with ``kappa * L``.
        """

        grid = self._slab(kappa_value)
        photon = PhotonFactory(grid, self.config).create(1.0e15, (0.0, 0.0, 1.0))
        result = PathIntegrator(grid, self.config).integrate_one(
            photon, opacity=OpacitySpec.electron_scattering()
        )

        path_length = grid.box_max[2].item() - grid.center[2]
        analytical = kappa_value * path_length
        rel_error = abs(result.optical_depth - analytical) / max(abs(analytical), 1e-30)

        metrics = {
            "numerical_tau": result.optical_depth,
            "analytic_tau": analytical,
            "relative_error": rel_error,
        }
        return ValidationResult("uniform_slab", rel_error < self.tolerance, metrics)

    def stopping_depth_test(
        self, *, kappa_value: float = 0.05, tau_stop: float = 0.1
    ) -> ValidationResult:
        """
        Distance travelled before reaching ``tau_stop``, compared with
        ``tau_stop / kappa``.
        """

        grid = self._slab(kappa_value)
        photon = PhotonFactory(grid, self.config).create(1.0e15, (0.0, 0.0, 1.0))
        start = photon.position.clone()
        result = PathIntegrator(grid, self.config).integrate_one(
            photon, opacity=OpacitySpec.electron_scattering(), tau_stop=tau_stop
        )

        travelled = float(torch.linalg.vector_norm(photon.position - start))
        analytical = tau_stop / kappa_value
        rel_error = abs(travelled - analytical) / max(analytical, 1e-30)

        metrics = {
            "numerical_distance": travelled,
            "analytic_distance": analytical,
            "relative_error": rel_error,
        }
        return ValidationResult("stopping_depth", rel_error < self.tolerance, metrics)

    def repeatability_test(self, *, kappa_value: float = 0.05) -> ValidationResult:
        """Two integrations of identical photons must agree exactly."""

        grid = self._slab(kappa_value)
        factory = PhotonFactory(grid, self.config)
        integrator = PathIntegrator(grid, self.config)
        direction = (0.3, -0.4, 0.866)

        first = integrator.integrate([factory.create(1.0e15, direction)])[0]
        second = integrator.integrate([factory.create(1.0e15, direction)])[0]
        difference = abs(first.optical_depth - second.optical_depth)

        metrics = {"absolute_difference": difference}
        return ValidationResult(
            "repeatability", difference == 0.0 and first.position == second.position, metrics
        )

    # ---------------------------------------------------------------- orchestrator
    def run_all(self) -> dict[str, ValidationResult]:
        """Execute the full validation suite and return results."""
        results = {
            "uniform_slab": self.uniform_slab_test(),
            "stopping_depth": self.stopping_depth_test(),
            "repeatability": self.repeatability_test(),
        }

        for name, result in results.items():
            status = "PASS" if result.passed else "FAIL"
            logger.info("Validation %s: %s metrics=%s", name, status, result.metrics)
        return results


__all__ = ["RadiativeValidator", "ValidationResult"]
