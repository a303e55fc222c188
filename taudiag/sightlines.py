"""
Observer lines of sight along which the diagnostics are evaluated.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .config import DEFAULT_INCLINATIONS, DEFAULT_PHASE, SpectrumConfig
from .exceptions import TauDiagConfigError

logger = logging.getLogger("taudiag.sightlines")


@dataclass(frozen=True)
class SightLine:
    name: str
    direction: tuple[float, float, float]
    angle: float
    phase: float


def observer_direction(angle: float, phase: float) -> tuple[float, float, float]:
    """Direction cosines towards an observer at inclination ``angle`` (deg) and ``phase``."""

    inclination = math.radians(angle)
    azimuth = -2.0 * math.pi * phase
    return (
        math.sin(inclination) * math.cos(azimuth),
        math.sin(inclination) * math.sin(azimuth),
        math.cos(inclination),
    )


def sightline_name(angle: float, phase: float) -> str:
    return f"A{angle:02.0f}P{phase:04.2f}"


def initialize_sightlines(spectrum: SpectrumConfig | None = None) -> list[SightLine]:
    """
    Return the observer sightlines for a model.

    The observers recorded in ``spectrum`` are used when present, otherwise a
    default set of inclinations at phase 0.5.
    """

    if spectrum is None or not spectrum.angles:
        logger.info("No spectrum inclination angles found, using the default inclination angles")
        angles: tuple[float, ...] = DEFAULT_INCLINATIONS
        phases: tuple[float, ...] = tuple(DEFAULT_PHASE for _ in angles)
    else:
        angles, phases = spectrum.angles, spectrum.phases

    sightlines = [
        SightLine(
            name=sightline_name(angle, phase),
            direction=observer_direction(angle, phase),
            angle=angle,
            phase=phase,
        )
        for angle, phase in zip(angles, phases)
    ]
    if not sightlines:
        raise TauDiagConfigError("no sightlines are available.")
    return sightlines


__all__ = ["SightLine", "initialize_sightlines", "observer_direction", "sightline_name"]
