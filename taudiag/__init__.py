"""
taudiag optical depth diagnostics.

This package computes optical depths, column densities and electron
scattering photosphere locations along observer sightlines through the flow
grid of a Monte Carlo radiative transfer model.
"""

__version__ = "0.1.0"

from .bands import Band, BandMode, BandTable, UserBandConfig, init_bands, populate_bands
from .config import (
    ColumnMode,
    ColumnSpec,
    DiagnosticConfig,
    IntegratorConfig,
    OpacitySource,
    OpacitySpec,
    RelativityMode,
    RunMode,
    SpectrumConfig,
)
from .constants import CONSTANTS, PhysicsConstants
from .data import load_grid, load_spectrum_config, save_grid
from .diagnostics import (
    EdgeReport,
    OpticalDepthDiagnostics,
    OpticalDepthSpectrum,
    PhotosphereReport,
    create_optical_depth_spectrum,
    evaluate_photoionization_edges,
    find_photosphere,
)
from .exceptions import (
    BandConfigError,
    IntegrationError,
    PhotonCreationError,
    TauDiagConfigError,
    TauDiagError,
    TauDiagResourceError,
)
from .export import ReportExporter
from .grid import FlowGrid, IonTable, hydrogen_helium_ions
from .integrate import IntegrationResult, IntegrationStatus, PathIntegrator
from .monitoring import PerformanceMonitor
from .photon import Photon, PhotonFactory, PhotonStatus
from .sightlines import SightLine, initialize_sightlines
from .validation import RadiativeValidator, ValidationResult

__all__ = [
    "Band",
    "BandMode",
    "BandTable",
    "UserBandConfig",
    "init_bands",
    "populate_bands",
    "ColumnMode",
    "ColumnSpec",
    "DiagnosticConfig",
    "IntegratorConfig",
    "OpacitySource",
    "OpacitySpec",
    "RelativityMode",
    "RunMode",
    "SpectrumConfig",
    "CONSTANTS",
    "PhysicsConstants",
    "load_grid",
    "load_spectrum_config",
    "save_grid",
    "EdgeReport",
    "OpticalDepthDiagnostics",
    "OpticalDepthSpectrum",
    "PhotosphereReport",
    "create_optical_depth_spectrum",
    "evaluate_photoionization_edges",
    "find_photosphere",
    "ReportExporter",
    "FlowGrid",
    "IonTable",
    "hydrogen_helium_ions",
    "IntegrationResult",
    "IntegrationStatus",
    "PathIntegrator",
    "PerformanceMonitor",
    "Photon",
    "PhotonFactory",
    "PhotonStatus",
    "SightLine",
    "initialize_sightlines",
    "RadiativeValidator",
    "ValidationResult",
    "TauDiagError",
    "TauDiagConfigError",
    "BandConfigError",
    "TauDiagResourceError",
    "PhotonCreationError",
    "IntegrationError",
]
