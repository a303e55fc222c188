"""
Model archive loading.

A model named ``root`` is stored as a NumPy archive ``<root>.grid.npz``.  Each
domain ``n`` contributes arrays prefixed with ``d<n>_``; an archive holding a
single domain may drop the prefix.  Observer settings recorded by a spectral
cycle are read from the optional ``<root>.observers.json``.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Union

import numpy as np

from .config import SpectrumConfig
from .exceptions import TauDiagConfigError
from .grid import FlowGrid, IonTable

logger = logging.getLogger("taudiag.data")

SupportedPath = Union[str, Path]

REQUIRED_KEYS: tuple[str, ...] = ("rho", "n_h", "n_e", "velocity", "origin", "cell_size")
ION_KEYS: tuple[str, ...] = ("ion_element", "ion_istate", "ion_nu_th", "ion_sigma0")
_DOMAIN_KEY = re.compile(r"^d\d+_")


def grid_path(root: SupportedPath) -> Path:
    root = Path(root)
    return root.with_name(root.name + ".grid.npz")


def observers_path(root: SupportedPath) -> Path:
    root = Path(root)
    return root.with_name(root.name + ".observers.json")


def _domain_arrays(archive: np.lib.npyio.NpzFile, domain: int) -> dict[str, np.ndarray]:
    prefix = f"d{domain}_"
    arrays = {
        key[len(prefix):]: archive[key] for key in archive.files if key.startswith(prefix)
    }
    if arrays:
        return arrays
    if domain == 0 and not any(_DOMAIN_KEY.match(key) for key in archive.files):
        return {key: archive[key] for key in archive.files}
    raise TauDiagConfigError(f"domain {domain} is not present in the model archive.")


def _ion_table(arrays: dict[str, np.ndarray]) -> IonTable:
    present = [key for key in ION_KEYS if key in arrays]
    if not present:
        return IonTable()
    if len(present) != len(ION_KEYS):
        missing = sorted(set(ION_KEYS) - set(present))
        raise TauDiagConfigError(f"incomplete ion table, missing {', '.join(missing)}.")
    return IonTable(
        element=tuple(str(e) for e in arrays["ion_element"]),
        istate=tuple(int(i) for i in arrays["ion_istate"]),
        nu_th=tuple(float(v) for v in arrays["ion_nu_th"]),
        sigma0=tuple(float(s) for s in arrays["ion_sigma0"]),
    )


def load_grid(root: SupportedPath, domain: int = 0) -> FlowGrid:
    """
    Read domain ``domain`` of the model archive for ``root``.

    Raises
    ------
    TauDiagConfigError
        If the archive is missing, the domain is absent or the arrays do not
        describe a valid grid.
    """

    path = grid_path(root)
    if not path.exists():
        raise TauDiagConfigError(f"model archive does not exist: {path}")

    try:
        with np.load(path, allow_pickle=False) as archive:
            arrays = _domain_arrays(archive, domain)
    except TauDiagConfigError:
        raise
    except (OSError, ValueError) as exc:
        raise TauDiagConfigError(f"unable to read model archive {path}: {exc}") from exc

    missing = [key for key in REQUIRED_KEYS if key not in arrays]
    if missing:
        raise TauDiagConfigError(
            f"domain {domain} of {path} is missing required arrays: {', '.join(missing)}"
        )

    center = arrays.get("center")
    central_radius = arrays.get("central_radius")
    grid = FlowGrid(
        rho=arrays["rho"],
        n_h=arrays["n_h"],
        n_e=arrays["n_e"],
        velocity=arrays["velocity"],
        origin=tuple(np.asarray(arrays["origin"], dtype=np.float64).tolist()),
        cell_size=tuple(np.asarray(arrays["cell_size"], dtype=np.float64).tolist()),
        ion_density=arrays.get("ion_density"),
        ions=_ion_table(arrays),
        center=None if center is None else tuple(np.asarray(center, dtype=np.float64).tolist()),
        central_radius=0.0 if central_radius is None else float(central_radius),
    )
    logger.info(
        "Loaded domain %d of %s: shape %s, %d ions", domain, path, grid.shape, grid.ions.n_ions
    )
    return grid


def save_grid(root: SupportedPath, grids: dict[int, FlowGrid]) -> Path:
    """Write ``grids`` keyed by domain index to the model archive for ``root``."""

    path = grid_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    arrays: dict[str, np.ndarray] = {}
    for domain, grid in grids.items():
        prefix = f"d{domain}_"
        arrays.update(
            {
                prefix + "rho": grid.rho.numpy(),
                prefix + "n_h": grid.n_h.numpy(),
                prefix + "n_e": grid.n_e.numpy(),
                prefix + "velocity": grid.velocity.numpy(),
                prefix + "origin": np.asarray(grid.origin),
                prefix + "cell_size": np.asarray(grid.cell_size),
                prefix + "center": np.asarray(grid.center),
                prefix + "central_radius": np.asarray(grid.central_radius),
            }
        )
        if grid.ions.n_ions:
            arrays.update(
                {
                    prefix + "ion_density": grid.ion_density.numpy(),
                    prefix + "ion_element": np.asarray(grid.ions.element),
                    prefix + "ion_istate": np.asarray(grid.ions.istate),
                    prefix + "ion_nu_th": np.asarray(grid.ions.nu_th),
                    prefix + "ion_sigma0": np.asarray(grid.ions.sigma0),
                }
            )
    np.savez(path, **arrays)
    return path


def load_spectrum_config(root: SupportedPath) -> SpectrumConfig | None:
    """
    Read the observer settings for ``root``, or ``None`` when none were recorded.
    """

    path = observers_path(root)
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise TauDiagConfigError(f"failed to parse {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise TauDiagConfigError(f"{path} must contain a JSON object.")

    try:
        return SpectrumConfig(
            wavelength_min=float(payload.get("wavelength_min", 0.0)),
            wavelength_max=float(payload.get("wavelength_max", 0.0)),
            angles=tuple(payload.get("angles", ())),
            phases=tuple(payload.get("phases", ())),
        )
    except TauDiagConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise TauDiagConfigError(f"invalid observer settings in {path}: {exc}") from exc


__all__ = [
    "grid_path",
    "load_grid",
    "load_spectrum_config",
    "observers_path",
    "save_grid",
]
