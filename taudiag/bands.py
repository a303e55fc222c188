"""
Frequency band stratification for photon generation.

Photon frequencies are sampled band by band so that bundles are guaranteed at
frequencies (generally high ones) whose intrinsic luminosity share is too
small for pure luminosity-weighted sampling to populate.  A :class:`BandTable`
describes the bands and the minimum fraction of the photon budget each band
must receive; :func:`populate_bands` turns a table into a concrete allocation.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

from .constants import CONSTANTS
from .exceptions import BandConfigError

logger = logging.getLogger("taudiag.bands")

MAX_BANDS = 10
_FRACTION_TOLERANCE = 1.0e-12

# Tuned band edges in eV and the minimum fraction of photons in each band
CV_EDGES_EV: tuple[float, ...] = (13.599, 24.588, 54.418)
CV_MIN_FRACTIONS: tuple[float, ...] = (0.0, 0.1, 0.1, 0.1)
YSO_EDGES_EV: tuple[float, ...] = (1.511, 3.3998, 6.0)
YSO_MIN_FRACTIONS: tuple[float, ...] = (0.0, 0.1, 0.2, 0.2)


class BandMode(Enum):
    TEMPERATURE = 0
    RANGE = 1
    CV = 2
    YSO = 3
    USER_DEFINED = 4


@dataclass(frozen=True)
class Band:
    """One contiguous frequency interval and its sampling bookkeeping."""

    f1: float
    f2: float
    min_fraction: float
    nat_fraction: float = 0.0
    used_fraction: float = 0.0
    flux: float = 0.0
    weight: float = 0.0
    nphot: int = 0


@dataclass(frozen=True)
class BandTable:
    """
    Ordered, contiguous sequence of frequency bands.

    The table is validated on construction and never changes afterwards;
    operations that fill in the sampling bookkeeping return a new table.
    """

    bands: tuple[Band, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "bands", tuple(self.bands))
        _check_table(self.bands)

    def __len__(self) -> int:
        return len(self.bands)

    def __iter__(self) -> Iterator[Band]:
        return iter(self.bands)

    def __getitem__(self, index: int) -> Band:
        return self.bands[index]

    @property
    def nbands(self) -> int:
        return len(self.bands)

    @property
    def f_min(self) -> float:
        return self.bands[0].f1

    @property
    def f_max(self) -> float:
        return self.bands[-1].f2

    @property
    def boundaries(self) -> np.ndarray:
        """Band edges as an array of length ``nbands + 1``."""
        if not self.bands:
            return np.empty(0)
        return np.array([band.f1 for band in self.bands] + [self.bands[-1].f2])

    @property
    def min_fractions(self) -> np.ndarray:
        return np.array([band.min_fraction for band in self.bands])

    def band_index(self, frequency: float) -> int:
        """Return the index of the band containing ``frequency`` or -1."""
        for i, band in enumerate(self.bands):
            if band.f1 <= frequency < band.f2:
                return i
        if self.bands and frequency == self.bands[-1].f2:
            return len(self.bands) - 1
        return -1


@dataclass(frozen=True)
class UserBandConfig:
    """
    Caller supplied description of an arbitrary band layout.

    Energies are in eV.  ``boundaries`` holds the ``n_bands - 1`` interior
    band edges in increasing order; ``min_fractions`` one entry per band.
    """

    n_bands: int
    energy_min: float
    energy_max: float
    boundaries: tuple[float, ...] = ()
    min_fractions: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "boundaries", tuple(float(b) for b in self.boundaries))
        object.__setattr__(self, "min_fractions", tuple(float(f) for f in self.min_fractions))
        self.validate()

    def validate(self) -> None:
        if self.n_bands < 1:
            raise BandConfigError("n_bands must be >= 1.")
        if self.n_bands > MAX_BANDS:
            raise BandConfigError(
                f"n_bands ({self.n_bands}) exceeds the maximum number of bands ({MAX_BANDS})."
            )
        if not (0.0 <= self.energy_min < self.energy_max):
            raise BandConfigError(
                f"energy range [{self.energy_min}, {self.energy_max}] eV is not increasing."
            )
        if len(self.boundaries) != self.n_bands - 1:
            raise BandConfigError(
                f"expected {self.n_bands - 1} band boundaries, got {len(self.boundaries)}."
            )
        edges = (self.energy_min, *self.boundaries, self.energy_max)
        if any(hi <= lo for lo, hi in zip(edges[:-1], edges[1:])):
            raise BandConfigError(
                "band boundaries must increase strictly between the lowest and highest energy."
            )
        if len(self.min_fractions) != self.n_bands:
            raise BandConfigError(
                f"expected {self.n_bands} minimum fractions, got {len(self.min_fractions)}."
            )
        if any(not 0.0 <= f <= 1.0 for f in self.min_fractions):
            raise BandConfigError("minimum fractions must lie within [0, 1].")
        if sum(self.min_fractions) > 1.0 + _FRACTION_TOLERANCE:
            raise BandConfigError(
                f"minimum fractions sum to {sum(self.min_fractions):.3f}, which exceeds 1."
            )


def _check_table(bands: Sequence[Band]) -> None:
    if len(bands) > MAX_BANDS:
        raise BandConfigError(f"{len(bands)} bands exceeds the maximum of {MAX_BANDS}.")
    total = 0.0
    for i, band in enumerate(bands):
        if not (math.isfinite(band.f1) and math.isfinite(band.f2)):
            raise BandConfigError(f"band {i} has non-finite limits.")
        if band.f1 < 0.0 or band.f2 < band.f1:
            raise BandConfigError(
                f"band {i} limits [{band.f1:.3e}, {band.f2:.3e}] are not increasing."
            )
        if not 0.0 <= band.min_fraction <= 1.0:
            raise BandConfigError(f"band {i} min_fraction {band.min_fraction} outside [0, 1].")
        if i > 0 and band.f1 != bands[i - 1].f2:
            raise BandConfigError(f"band {i} is not contiguous with band {i - 1}.")
        total += band.min_fraction
    if total > 1.0 + _FRACTION_TOLERANCE:
        raise BandConfigError(f"minimum fractions sum to {total:.3f}, which exceeds 1.")


def _tuned_bands(
    f1: float,
    f2: float,
    edges_ev: Sequence[float],
    min_fractions: Sequence[float],
) -> tuple[Band, ...]:
    edges = [e / CONSTANTS.HEV for e in edges_ev]
    if f1 > edges[0]:
        raise BandConfigError(
            f"f1 ({f1:e}) lies above the first band edge {edges_ev[0]}/HEV ({edges[0]:e})."
        )
    if f2 < edges[-1]:
        raise BandConfigError(
            f"f2 ({f2:e}) lies below the last band edge {edges_ev[-1]}/HEV ({edges[-1]:e})."
        )
    limits = [f1, *edges, f2]
    return tuple(
        Band(f1=lo, f2=hi, min_fraction=frac)
        for lo, hi, frac in zip(limits[:-1], limits[1:], min_fractions)
    )


def init_bands(
    t: float,
    f1: float,
    f2: float,
    mode: BandMode | int,
    user: UserBandConfig | None = None,
) -> BandTable:
    """
    Build the frequency bands used to stratify photon generation.

    Parameters
    ----------
    t:
        Temperature (K) setting the single band in ``TEMPERATURE`` mode.
    f1, f2:
        Global frequency limits (Hz).  The tuned modes place their fixed
        edges between these limits and require the limits to contain them.
    mode:
        A :class:`BandMode` or its integer value.
    user:
        Band layout for ``USER_DEFINED`` mode.  Its energy range replaces
        ``f1``/``f2``.

    Raises
    ------
    BandConfigError
        For an unknown mode, limits that do not contain the tuned edges, or
        an invalid user layout.
    """

    try:
        mode = BandMode(mode)
    except ValueError as exc:
        raise BandConfigError(f"Unknown band mode {mode!r}.") from exc

    if mode is BandMode.TEMPERATURE:
        if t <= 0.0:
            raise BandConfigError(f"temperature must be positive, got {t}.")
        kt_h = CONSTANTS.BOLTZMANN * t / CONSTANTS.PLANCK
        bands: tuple[Band, ...] = (Band(f1=0.05 * kt_h, f2=20.0 * kt_h, min_fraction=1.0),)
    elif mode is BandMode.RANGE:
        if not (0.0 <= f1 < f2):
            raise BandConfigError(f"frequency range [{f1:e}, {f2:e}] is not increasing.")
        bands = (Band(f1=f1, f2=f2, min_fraction=1.0),)
    elif mode is BandMode.CV:
        bands = _tuned_bands(f1, f2, CV_EDGES_EV, CV_MIN_FRACTIONS)
    elif mode is BandMode.YSO:
        bands = _tuned_bands(f1, f2, YSO_EDGES_EV, YSO_MIN_FRACTIONS)
    else:
        if user is None:
            raise BandConfigError("user defined bands require a UserBandConfig.")
        logger.info(
            "Lowest photon energy is %f eV (%.2e Hz), highest %f eV (%.2e Hz)",
            user.energy_min,
            user.energy_min / CONSTANTS.HEV,
            user.energy_max,
            user.energy_max / CONSTANTS.HEV,
        )
        limits = [e / CONSTANTS.HEV for e in (user.energy_min, *user.boundaries, user.energy_max)]
        bands = tuple(
            Band(f1=lo, f2=hi, min_fraction=frac)
            for lo, hi, frac in zip(limits[:-1], limits[1:], user.min_fractions)
        )

    table = BandTable(bands)
    for i, band in enumerate(table):
        logger.debug(
            "For band %d, f1=%10.3e, f2=%10.3e, frac=%.2f", i, band.f1, band.f2, band.min_fraction
        )
    return table


def blackbody_band_flux(t: float, f1: float, f2: float, n_samples: int = 2000) -> float:
    """
    Frequency integral of the Planck function ``B_nu(t)`` over ``[f1, f2]``.

    Only ratios between bands are used, so the result is left per unit area
    and solid angle (erg s^-1 cm^-2 sr^-1).
    """

    if f2 <= f1:
        return 0.0
    lo = max(f1, 1.0e-6 * f2)
    freq = np.geomspace(lo, f2, n_samples)
    x = CONSTANTS.PLANCK * freq / (CONSTANTS.BOLTZMANN * t)
    with np.errstate(over="ignore"):
        b_nu = 2.0 * CONSTANTS.PLANCK * freq**3 / CONSTANTS.VLIGHT**2 / np.expm1(x)
    return float(np.trapezoid(b_nu, freq))


def populate_bands(
    table: BandTable,
    n_photons: int,
    *,
    t: float | None = None,
    band_flux: Sequence[float] | Callable[[float, float], float] | None = None,
) -> BandTable:
    """
    Distribute a photon budget over the bands of ``table``.

    Each band with non-zero flux receives its minimum fraction of the budget
    plus a share of the remainder proportional to its natural (luminosity)
    fraction.  Photon weights correct for the over- or under-sampling so that
    each band still carries its true flux.

    Parameters
    ----------
    table:
        Table built by :func:`init_bands`.
    n_photons:
        Total number of photons to allot.
    t:
        Blackbody temperature used when ``band_flux`` is omitted.
    band_flux:
        Per-band fluxes, or a callable ``flux(f1, f2)``.

    Returns
    -------
    BandTable
        A new table with ``flux``, ``nat_fraction``, ``used_fraction``,
        ``nphot`` and ``weight`` filled in.
    """

    if n_photons < 0:
        raise BandConfigError("n_photons must be non-negative.")
    if table.nbands == 0:
        return table

    if band_flux is None:
        if t is None or t <= 0.0:
            raise BandConfigError("a positive temperature or explicit band fluxes are required.")
        fluxes = np.array([blackbody_band_flux(t, b.f1, b.f2) for b in table])
    elif callable(band_flux):
        fluxes = np.array([band_flux(b.f1, b.f2) for b in table], dtype=float)
    else:
        fluxes = np.asarray(band_flux, dtype=float)
        if fluxes.shape != (table.nbands,):
            raise BandConfigError(
                f"expected {table.nbands} band fluxes, got shape {fluxes.shape}."
            )
    if not np.all(np.isfinite(fluxes)) or np.any(fluxes < 0.0):
        raise BandConfigError("band fluxes must be finite and non-negative.")

    total = fluxes.sum()
    if total <= 0.0:
        raise BandConfigError("no band carries any flux; cannot allocate photons.")

    nat = fluxes / total
    active = fluxes > 0.0
    reserved = float(table.min_fractions[active].sum())
    used = np.where(active, table.min_fractions + (1.0 - reserved) * nat, 0.0)
    used = used / used.sum()

    raw = used * n_photons
    nphot = np.floor(raw).astype(int)
    remainder = n_photons - int(nphot.sum())
    if remainder > 0:
        order = np.argsort(-(raw - nphot), kind="stable")
        order = order[active[order]]
        for i in order[:remainder]:
            nphot[i] += 1
        nphot[order[0]] += n_photons - int(nphot.sum())

    populated = []
    for i, band in enumerate(table):
        weight = fluxes[i] / nphot[i] if nphot[i] > 0 else 0.0
        populated.append(
            replace(
                band,
                flux=float(fluxes[i]),
                nat_fraction=float(nat[i]),
                used_fraction=float(used[i]),
                nphot=int(nphot[i]),
                weight=float(weight),
            )
        )
        logger.debug(
            "Band %d: nat_fraction=%.3f used_fraction=%.3f nphot=%d",
            i,
            nat[i],
            used[i],
            nphot[i],
        )
    return BandTable(tuple(populated))


__all__ = [
    "Band",
    "BandMode",
    "BandTable",
    "UserBandConfig",
    "MAX_BANDS",
    "CV_EDGES_EV",
    "YSO_EDGES_EV",
    "init_bands",
    "populate_bands",
    "blackbody_band_flux",
]
