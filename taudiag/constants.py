from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class PhysicsConstants:
    """Physical constants used by the diagnostics, in cgs units."""

    # Fundamental
    VLIGHT: float = 2.997925e10  # cm/s
    PLANCK: float = 6.6262e-27  # erg*s
    BOLTZMANN: float = 1.38062e-16  # erg/K
    HEV: float = 4.13620e-15  # Planck constant in eV*s, converts eV <-> Hz
    ANGSTROM: float = 1.0e-8  # cm
    THOMSON: float = 0.66524e-24  # cm^2
    MPROT: float = 1.672661e-24  # g

    # Photoionization edges used by the edge diagnostic (name, Hz)
    EDGES: Tuple[Tuple[str, float], ...] = field(
        default_factory=lambda: (
            ("HLymanEdge", 3.387485e15),
            ("HBalmerEdge", 8.293014e14),
            ("HeI24eVEdge", 5.9483e15),
            ("HeII54eVEdge", 1.394384e16),
        )
    )

    # Default spectral window for optical depth spectra
    DEFAULT_WAVELENGTH_MIN: float = 100.0  # Angstrom
    DEFAULT_WAVELENGTH_MAX: float = 10000.0  # Angstrom


CONSTANTS = PhysicsConstants()

__all__ = ["PhysicsConstants", "CONSTANTS"]
