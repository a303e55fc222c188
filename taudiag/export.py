"""
Plain-text report writers for the optical depth diagnostics.

Every report is written next to the model, named after its root:
``<root>.tau_spec.diag``, ``<root>.tau_edges.diag`` and ``<root>.photosphere``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from .config import ColumnMode, ColumnSpec
from .diagnostics import EdgeReport, OpticalDepthSpectrum, PhotosphereReport

logger = logging.getLogger("taudiag.export")

_COLUMN_WIDTH = 15


def _column_label(column: ColumnSpec) -> str:
    if column.mode is ColumnMode.MASS:
        return "MassColumn"
    if column.mode is ColumnMode.HYDROGEN:
        return "HColumn"
    return f"Ion{column.ion}Column"


def _row(values: list[str]) -> str:
    return " ".join(f"{value:<{_COLUMN_WIDTH}}" for value in values).rstrip()


class ReportExporter:
    """Write diagnostic results to files prefixed by ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, suffix: str) -> Path:
        path = self.root.with_name(self.root.name + suffix)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def write_spectrum(self, spectrum: OpticalDepthSpectrum) -> Path:
        """
        One row per frequency bin: frequency (Hz), wavelength (Angstrom) and
        the optical depth towards each sightline.
        """

        path = self._path(".tau_spec.diag")
        header = _row(["Frequency", "Lambda", *(s.name for s in spectrum.sightlines)])
        data = np.column_stack(
            [spectrum.frequencies, spectrum.wavelengths, spectrum.optical_depth.T]
        )
        np.savetxt(path, data, fmt=f"%-{_COLUMN_WIDTH}e", header=header, comments="")
        logger.info("Optical depth spectra written to %s", path)
        return path

    def write_edges(self, report: EdgeReport) -> Path:
        path = self._path(".tau_edges.diag")
        names = [name for name, _ in report.edges]
        lines = [_row(["Sightline", *names, _column_label(report.column)])]
        for i, sightline in enumerate(report.sightlines):
            values = [f"{tau:e}" for tau in report.optical_depth[i]]
            values.append(f"{report.last_edge_column_density[i]:e}")
            lines.append(_row([sightline.name, *values]))
        path.write_text("\n".join(lines) + "\n")
        logger.info("Edge optical depths written to %s", path)
        return path

    def write_photosphere(self, report: PhotosphereReport) -> Path:
        path = self._path(".photosphere")
        lines = [
            f"# Electron scattering photosphere locations for tau_es = {report.tau_stop:f}",
            _row(["Sightline", "x", "y", "z"]),
        ]
        for sightline, position in zip(report.sightlines, report.positions):
            lines.append(_row([sightline.name, *(f"{x:e}" for x in position)]))
        path.write_text("\n".join(lines) + "\n")
        logger.info("Photosphere locations written to %s", path)
        return path


def log_edge_report(report: EdgeReport) -> None:
    """Print the edge optical depths in the log, one line per sightline."""

    label = _column_label(report.column)
    for i, sightline in enumerate(report.sightlines):
        depths = " ".join(
            f"{name} {tau:9.2e}" for (name, _), tau in zip(report.edges, report.optical_depth[i])
        )
        logger.info(
            "%-10s %s %s %9.2e", sightline.name, depths, label, report.last_edge_column_density[i]
        )


__all__ = ["ReportExporter", "log_edge_report"]
