"""
Configuration objects and enumerations for the optical depth diagnostics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .constants import CONSTANTS
from .exceptions import TauDiagConfigError

logger = logging.getLogger("taudiag.config")

DEFAULT_N_FREQ_BINS = 10000
DEFAULT_PHOTOSPHERE_FREQUENCY = 8.0e14  # Hz
DEFAULT_PHASE = 0.5
DEFAULT_INCLINATIONS: tuple[float, ...] = (0.0, 10.0, 30.0, 45.0, 60.0, 75.0, 85.0, 90.0)


class RelativityMode(Enum):
    FULL = "full"
    LINEAR = "linear"


class OpacitySource(Enum):
    ELECTRON_SCATTERING = "electron_scattering"
    TOTAL = "total"
    ION = "ion"


class ColumnMode(Enum):
    MASS = "mass"
    HYDROGEN = "hydrogen"
    ION = "ion"


class RunMode(Enum):
    TAU_INTEGRATE = "tau_integrate"
    ES_PHOTOSPHERE = "es_photosphere"


def _check_ion(mode: Enum, ion: int | None, ion_mode: Enum) -> None:
    if mode is ion_mode:
        if ion is None:
            raise TauDiagConfigError(f"{mode.value} mode requires an ion index.")
        if ion < 0:
            raise TauDiagConfigError("ion index cannot be negative.")
    elif ion is not None:
        raise TauDiagConfigError(f"ion index is only meaningful in {ion_mode.value} mode.")


@dataclass(frozen=True)
class ColumnSpec:
    """Which density is accumulated into the column density."""

    mode: ColumnMode = ColumnMode.MASS
    ion: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.mode, ColumnMode):
            raise TauDiagConfigError("mode must be a ColumnMode enum value.")
        _check_ion(self.mode, self.ion, ColumnMode.ION)

    @classmethod
    def mass(cls) -> ColumnSpec:
        return cls(ColumnMode.MASS)

    @classmethod
    def hydrogen(cls) -> ColumnSpec:
        return cls(ColumnMode.HYDROGEN)

    @classmethod
    def for_ion(cls, ion: int) -> ColumnSpec:
        return cls(ColumnMode.ION, ion)


@dataclass(frozen=True)
class OpacitySpec:
    """Which extinction processes contribute to the optical depth."""

    source: OpacitySource = OpacitySource.TOTAL
    ion: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.source, OpacitySource):
            raise TauDiagConfigError("source must be an OpacitySource enum value.")
        _check_ion(self.source, self.ion, OpacitySource.ION)

    @classmethod
    def electron_scattering(cls) -> OpacitySpec:
        return cls(OpacitySource.ELECTRON_SCATTERING)

    @classmethod
    def total(cls) -> OpacitySpec:
        return cls(OpacitySource.TOTAL)

    @classmethod
    def for_ion(cls, ion: int) -> OpacitySpec:
        return cls(OpacitySource.ION, ion)


@dataclass
class IntegratorConfig:
    max_steps: int = 1_000_000
    launch_offset: float = 1.0e-6
    boundary_tolerance: float = 1.0e-9

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.max_steps <= 0:
            raise TauDiagConfigError("max_steps must be positive.")
        if self.launch_offset < 0.0:
            raise TauDiagConfigError("launch_offset must be non-negative.")
        if not (0.0 < self.boundary_tolerance < 1.0e-3):
            raise TauDiagConfigError("boundary_tolerance must be in (0, 1e-3).")


@dataclass
class SpectrumConfig:
    """
    Observer and spectral window settings, as recorded by a spectral cycle.

    Wavelengths are in Angstrom. A configuration with both wavelength bounds
    at zero is treated as absent and the default window is used instead.
    """

    wavelength_min: float = 0.0
    wavelength_max: float = 0.0
    angles: tuple[float, ...] = ()
    phases: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        self.angles = tuple(float(a) for a in self.angles)
        self.phases = tuple(float(p) for p in self.phases)
        if self.phases and len(self.phases) != len(self.angles):
            raise TauDiagConfigError("phases must match angles in length.")
        if not self.phases:
            self.phases = tuple(DEFAULT_PHASE for _ in self.angles)
        for angle in self.angles:
            if not 0.0 <= angle <= 180.0:
                raise TauDiagConfigError(f"inclination {angle} must lie within [0, 180] degrees.")

    @property
    def has_wavelength_range(self) -> bool:
        return not (self.wavelength_min == 0.0 and self.wavelength_max == 0.0)


@dataclass
class DiagnosticConfig:
    """
    High-level configuration of one diagnostic invocation.
    """

    root: str
    domain: int = 0
    run_mode: RunMode = RunMode.TAU_INTEGRATE
    tau_stop: float = 0.0
    column: ColumnSpec = field(default_factory=ColumnSpec)
    relativity: RelativityMode = RelativityMode.FULL
    n_freq_bins: int = DEFAULT_N_FREQ_BINS
    photosphere_frequency: float = DEFAULT_PHOTOSPHERE_FREQUENCY
    integrator: IntegratorConfig = field(default_factory=IntegratorConfig)

    def __post_init__(self) -> None:
        if not self.root:
            raise TauDiagConfigError("a model root name is required.")
        if self.domain < 0:
            raise TauDiagConfigError("domain index cannot be negative.")
        if not isinstance(self.run_mode, RunMode):
            raise TauDiagConfigError("run_mode must be a RunMode enum value.")
        if not isinstance(self.relativity, RelativityMode):
            raise TauDiagConfigError("relativity must be a RelativityMode enum value.")
        if self.tau_stop < 0.0:
            raise TauDiagConfigError("tau_stop must be non-negative.")
        if self.n_freq_bins < 2:
            raise TauDiagConfigError("n_freq_bins must be >= 2.")
        if self.photosphere_frequency <= 0.0:
            raise TauDiagConfigError("photosphere_frequency must be positive.")
        if self.run_mode is RunMode.ES_PHOTOSPHERE and self.column.mode is ColumnMode.ION:
            logger.warning("Ion column density is ignored when searching for the photosphere.")


def default_wavelength_range() -> tuple[float, float]:
    return CONSTANTS.DEFAULT_WAVELENGTH_MIN, CONSTANTS.DEFAULT_WAVELENGTH_MAX


__all__ = [
    "ColumnMode",
    "ColumnSpec",
    "DiagnosticConfig",
    "IntegratorConfig",
    "OpacitySource",
    "OpacitySpec",
    "RelativityMode",
    "RunMode",
    "SpectrumConfig",
    "DEFAULT_INCLINATIONS",
    "DEFAULT_N_FREQ_BINS",
    "DEFAULT_PHASE",
    "DEFAULT_PHOTOSPHERE_FREQUENCY",
    "default_wavelength_range",
]
