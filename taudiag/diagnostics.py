"""
Optical depth diagnostic drivers.

Three diagnostics are built on the photon factory and path integrator:

* an optical depth spectrum, tau as a function of frequency for every sightline;
* the optical depth at a fixed set of photoionization edges, together with the
  column density towards each sightline;
* the location of the electron scattering photosphere for every sightline.

Photons launched by the drivers do not interact, so the sightline and
frequency loops are independent.  A photon that cannot be created or
integrated is logged and its result cell keeps its default value; it never
aborts the rest of the batch.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from .config import (
    DEFAULT_N_FREQ_BINS,
    DEFAULT_PHOTOSPHERE_FREQUENCY,
    ColumnSpec,
    IntegratorConfig,
    OpacitySpec,
    RelativityMode,
    SpectrumConfig,
    default_wavelength_range,
)
from .constants import CONSTANTS
from .exceptions import PhotonCreationError, TauDiagConfigError, TauDiagResourceError
from .grid import FlowGrid
from .integrate import IntegrationResult, PathIntegrator
from .monitoring import PerformanceMonitor
from .photon import Photon, PhotonFactory
from .sightlines import SightLine

logger = logging.getLogger("taudiag.diagnostics")

FAILED_POSITION = (-1.0, -1.0, -1.0)


# ---------------------------------------------------------------- results
@dataclass
class OpticalDepthSpectrum:
    """Optical depth indexed by ``[sightline, frequency bin]``."""

    sightlines: list[SightLine]
    frequencies: np.ndarray
    optical_depth: np.ndarray

    @property
    def wavelengths(self) -> np.ndarray:
        """Bin wavelengths in Angstrom."""
        return CONSTANTS.VLIGHT / self.frequencies / CONSTANTS.ANGSTROM

    @property
    def d_freq(self) -> float:
        return float(self.frequencies[1] - self.frequencies[0])


@dataclass
class EdgeReport:
    """
    Optical depth at each photoionization edge for every sightline.

    ``last_edge_column_density`` holds, per sightline, the column density of
    the last edge whose integration succeeded; earlier edges are overwritten.
    """

    sightlines: list[SightLine]
    edges: tuple[tuple[str, float], ...]
    optical_depth: np.ndarray
    last_edge_column_density: np.ndarray
    column: ColumnSpec = field(default_factory=ColumnSpec)


@dataclass
class PhotosphereReport:
    """Terminal photon positions, or ``FAILED_POSITION`` where none exists."""

    sightlines: list[SightLine]
    positions: np.ndarray
    tau_stop: float
    frequency: float

    @property
    def failed(self) -> np.ndarray:
        return np.all(self.positions == np.asarray(FAILED_POSITION), axis=-1)


# ---------------------------------------------------------------- helpers
def _allocate(shape: tuple[int, ...], what: str, fill: float = 0.0) -> np.ndarray:
    try:
        return np.full(shape, fill, dtype=np.float64)
    except (MemoryError, ValueError) as exc:
        raise TauDiagResourceError(
            f"cannot allocate {int(np.prod(shape)) * 8} bytes for {what}"
        ) from exc


def frequency_limits(spectrum: SpectrumConfig | None = None) -> tuple[float, float]:
    """
    Frequency range of the optical depth spectrum.

    The range follows the configured wavelength window.  Without one, or when
    a derived limit is not a positive finite number, the default 100 - 10,000
    Angstrom window supplies that limit.  If the corrected range is inverted the
    whole default window is used.  A configured range whose two valid limits
    are inverted raises ``TauDiagConfigError``.
    """

    default_min, default_max = default_wavelength_range()
    fallback_min = CONSTANTS.VLIGHT / (default_max * CONSTANTS.ANGSTROM)
    fallback_max = CONSTANTS.VLIGHT / (default_min * CONSTANTS.ANGSTROM)

    if spectrum is None or not spectrum.has_wavelength_range:
        logger.info(
            "No spectral wavelength range available, defaulting to %.0f - %.0f Angstrom",
            default_min,
            default_max,
        )
        return fallback_min, fallback_max

    vlight = np.float64(CONSTANTS.VLIGHT)
    with np.errstate(divide="ignore", invalid="ignore"):
        freq_min = float(vlight / np.float64(spectrum.wavelength_max * CONSTANTS.ANGSTROM))
        freq_max = float(vlight / np.float64(spectrum.wavelength_min * CONSTANTS.ANGSTROM))

    substituted = False
    if not math.isfinite(freq_min) or freq_min <= 0.0:
        freq_min, substituted = fallback_min, True
        logger.warning("freq_min has an invalid value, setting to %e", freq_min)
    if not math.isfinite(freq_max) or freq_max <= 0.0:
        freq_max, substituted = fallback_max, True
        logger.warning("freq_max has an invalid value, setting to %e", freq_max)
    if substituted and freq_max <= freq_min:
        logger.warning(
            "Corrected frequency range is not increasing, defaulting to %.0f - %.0f Angstrom",
            default_min,
            default_max,
        )
        return fallback_min, fallback_max
    if freq_max <= freq_min:
        raise TauDiagConfigError(
            f"spectral frequency range [{freq_min:e}, {freq_max:e}] is not increasing."
        )
    return freq_min, freq_max


def frequency_grid(freq_min: float, freq_max: float, n_bins: int) -> np.ndarray:
    """``n_bins`` equally spaced frequencies from ``freq_min`` to ``freq_max`` inclusive."""
    if n_bins < 2:
        raise TauDiagConfigError("n_bins must be >= 2.")
    return np.linspace(freq_min, freq_max, n_bins)


# ---------------------------------------------------------------- drivers
class OpticalDepthDiagnostics:
    """
    Run optical depth diagnostics for a grid along a set of sightlines.

    Parameters
    ----------
    grid:
        Read-only flow grid.
    sightlines:
        Observer directions.
    column:
        Density accumulated into the column densities.
    relativity:
        Frame transformation used for Doppler shifts.
    config:
        Integrator settings, shared with the photon factory.
    monitor:
        Optional timing monitor; one step is recorded per sightline.
    """

    def __init__(
        self,
        grid: FlowGrid,
        sightlines: Sequence[SightLine],
        *,
        column: ColumnSpec | None = None,
        relativity: RelativityMode = RelativityMode.FULL,
        config: IntegratorConfig | None = None,
        monitor: PerformanceMonitor | None = None,
    ) -> None:
        if not sightlines:
            raise TauDiagConfigError("at least one sightline is required.")
        self.grid = grid
        self.sightlines = list(sightlines)
        self.column = column if column is not None else ColumnSpec.mass()
        self.relativity = relativity
        self.config = config if config is not None else IntegratorConfig()
        self.factory = PhotonFactory(grid, self.config)
        self.integrator = PathIntegrator(grid, self.config)
        self.monitor = monitor if monitor is not None else PerformanceMonitor()

    def _launch(
        self, frequencies: Sequence[float], sightline: SightLine
    ) -> tuple[list[int], list[Photon]]:
        slots: list[int] = []
        photons: list[Photon] = []
        for j, frequency in enumerate(frequencies):
            try:
                photons.append(self.factory.create(float(frequency), sightline.direction))
            except PhotonCreationError as exc:
                logger.warning(
                    "%s: skipping photon of frequency %e: %s", sightline.name, frequency, exc
                )
                continue
            slots.append(j)
        return slots, photons

    def _transport(
        self,
        frequencies: Sequence[float],
        sightline: SightLine,
        opacity: OpacitySpec,
        tau_stop: float | None = None,
    ) -> list[tuple[int, IntegrationResult]]:
        slots, photons = self._launch(frequencies, sightline)
        with self.monitor.monitor_step(n_photons=len(photons)):
            results = self.integrator.integrate(
                photons,
                opacity=opacity,
                column=self.column,
                relativity=self.relativity,
                tau_stop=tau_stop,
            )
        self.monitor.maybe_log()

        outcomes = []
        for j, result in zip(slots, results):
            if not result.succeeded:
                logger.warning(
                    "%s: integration failed for photon of frequency %e (%s)",
                    sightline.name,
                    frequencies[j],
                    result.status.value,
                )
                continue
            outcomes.append((j, result))
        return outcomes

    def optical_depth_spectrum(
        self,
        spectrum: SpectrumConfig | None = None,
        n_freq_bins: int = DEFAULT_N_FREQ_BINS,
    ) -> OpticalDepthSpectrum:
        """
        Optical depth as a function of frequency for each sightline.
        """

        freq_min, freq_max = frequency_limits(spectrum)
        frequencies = frequency_grid(freq_min, freq_max, n_freq_bins)
        tau_spectrum = _allocate((len(self.sightlines), n_freq_bins), "tau_spectrum")
        opacity = OpacitySpec.total()

        logger.info("Creating optical depth spectra")
        for i, sightline in enumerate(self.sightlines):
            logger.info("  - Creating spectrum: %s", sightline.name)
            for j, result in self._transport(frequencies, sightline, opacity):
                tau_spectrum[i, j] = result.optical_depth

        return OpticalDepthSpectrum(
            sightlines=list(self.sightlines),
            frequencies=frequencies,
            optical_depth=tau_spectrum,
        )

    def photoionization_edges(
        self, edges: Sequence[tuple[str, float]] | None = None
    ) -> EdgeReport:
        """
        Optical depth at each photoionization edge and the column density.
        """

        edges = tuple(edges) if edges is not None else CONSTANTS.EDGES
        if not edges:
            raise TauDiagConfigError("at least one edge is required.")
        optical_depths = _allocate((len(self.sightlines), len(edges)), "optical_depths")
        column_densities = _allocate((len(self.sightlines),), "column_densities")
        frequencies = [freq for _, freq in edges]
        opacity = OpacitySpec.total()

        for i, sightline in enumerate(self.sightlines):
            for j, result in self._transport(frequencies, sightline, opacity):
                optical_depths[i, j] = result.optical_depth
                column_densities[i] = result.column_density

        return EdgeReport(
            sightlines=list(self.sightlines),
            edges=edges,
            optical_depth=optical_depths,
            last_edge_column_density=column_densities,
            column=self.column,
        )

    def photosphere(
        self,
        tau_stop: float,
        frequency: float = DEFAULT_PHOTOSPHERE_FREQUENCY,
    ) -> PhotosphereReport:
        """
        Locate the surface of electron scattering optical depth ``tau_stop``.
        """

        positions = _allocate((len(self.sightlines), 3), "positions", fill=FAILED_POSITION[0])
        opacity = OpacitySpec.electron_scattering()

        logger.info(
            "Locating electron scattering photosphere surface for tau_es = %f", tau_stop
        )
        for i, sightline in enumerate(self.sightlines):
            for _, result in self._transport([frequency], sightline, opacity, tau_stop):
                positions[i] = result.position

        return PhotosphereReport(
            sightlines=list(self.sightlines),
            positions=positions,
            tau_stop=tau_stop,
            frequency=frequency,
        )


# ---------------------------------------------------------------- functional forms
def create_optical_depth_spectrum(
    grid: FlowGrid,
    sightlines: Sequence[SightLine],
    spectrum: SpectrumConfig | None = None,
    *,
    n_freq_bins: int = DEFAULT_N_FREQ_BINS,
    **kwargs,
) -> OpticalDepthSpectrum:
    """One-shot form of :meth:`OpticalDepthDiagnostics.optical_depth_spectrum`."""
    diagnostics = OpticalDepthDiagnostics(grid, sightlines, **kwargs)
    return diagnostics.optical_depth_spectrum(spectrum, n_freq_bins)


def evaluate_photoionization_edges(
    grid: FlowGrid,
    sightlines: Sequence[SightLine],
    edges: Sequence[tuple[str, float]] | None = None,
    **kwargs,
) -> EdgeReport:
    return OpticalDepthDiagnostics(grid, sightlines, **kwargs).photoionization_edges(edges)


def find_photosphere(
    grid: FlowGrid,
    sightlines: Sequence[SightLine],
    tau_stop: float,
    frequency: float = DEFAULT_PHOTOSPHERE_FREQUENCY,
    **kwargs,
) -> PhotosphereReport:
    return OpticalDepthDiagnostics(grid, sightlines, **kwargs).photosphere(tau_stop, frequency)


__all__ = [
    "EdgeReport",
    "FAILED_POSITION",
    "OpticalDepthDiagnostics",
    "OpticalDepthSpectrum",
    "PhotosphereReport",
    "create_optical_depth_spectrum",
    "evaluate_photoionization_edges",
    "find_photosphere",
    "frequency_limits",
    "frequency_grid",
]
