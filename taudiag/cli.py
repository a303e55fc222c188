"""
Command line entry point: ``taudiag [-h] [-d ndom] [-p tau_stop] [-cion nion] [-classic] root``.

In its default mode the optical depth at the photoionization edges and the
optical depth spectrum are computed for every observer sightline of the model
``root``.  With ``-p`` the electron scattering photosphere at the given depth
is located instead.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from . import __version__
from ._logging import configure_logging
from .config import ColumnMode, ColumnSpec, DiagnosticConfig, RelativityMode, RunMode
from .data import load_grid, load_spectrum_config
from .diagnostics import OpticalDepthDiagnostics
from .exceptions import TauDiagError
from .export import ReportExporter, log_edge_report
from .monitoring import PerformanceMonitor
from .sightlines import initialize_sightlines

logger = logging.getLogger("taudiag.cli")


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="taudiag",
        description="Optical depth diagnostics for a Monte Carlo outflow model.",
    )
    parser.add_argument("root", help="root name of the model, without extension")
    parser.add_argument(
        "-d", dest="domain", type=int, default=0, metavar="ndom", help="domain to analyse"
    )
    parser.add_argument(
        "-p",
        dest="tau_stop",
        type=float,
        default=None,
        metavar="tau_stop",
        help="locate the electron scattering photosphere at this optical depth",
    )
    parser.add_argument(
        "-cion",
        dest="ion",
        type=int,
        default=None,
        metavar="nion",
        help="report the column density of ion nion instead of the mass column",
    )
    parser.add_argument(
        "-classic",
        dest="classic",
        action="store_true",
        help="use linear Doppler shifts instead of the full relativistic treatment",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> DiagnosticConfig:
    column = ColumnSpec.for_ion(args.ion) if args.ion is not None else ColumnSpec.mass()
    if args.tau_stop is None:
        run_mode, tau_stop = RunMode.TAU_INTEGRATE, 0.0
    else:
        run_mode, tau_stop = RunMode.ES_PHOTOSPHERE, args.tau_stop
    return DiagnosticConfig(
        root=args.root,
        domain=args.domain,
        run_mode=run_mode,
        tau_stop=tau_stop,
        column=column,
        relativity=RelativityMode.LINEAR if args.classic else RelativityMode.FULL,
    )


def run(config: DiagnosticConfig, monitor: PerformanceMonitor | None = None) -> list[Path]:
    """
    Load the model for ``config.root``, run the requested diagnostics and
    write their reports.  Returns the paths of the written reports.
    """

    grid = load_grid(config.root, config.domain)
    if config.run_mode is RunMode.TAU_INTEGRATE and config.column.mode is ColumnMode.ION:
        grid.validate_ion(config.column.ion)
        logger.info(
            "Using ion %d (%s) for the column density",
            config.column.ion,
            grid.ions.label(config.column.ion),
        )

    spectrum = load_spectrum_config(config.root)
    sightlines = initialize_sightlines(spectrum)
    exporter = ReportExporter(config.root)

    if config.run_mode is RunMode.ES_PHOTOSPHERE:
        diagnostics = OpticalDepthDiagnostics(
            grid,
            sightlines,
            relativity=config.relativity,
            config=config.integrator,
            monitor=monitor,
        )
        report = diagnostics.photosphere(config.tau_stop, config.photosphere_frequency)
        return [exporter.write_photosphere(report)]

    diagnostics = OpticalDepthDiagnostics(
        grid,
        sightlines,
        column=config.column,
        relativity=config.relativity,
        config=config.integrator,
        monitor=monitor,
    )
    edges = diagnostics.photoionization_edges()
    log_edge_report(edges)
    spectrum_report = diagnostics.optical_depth_spectrum(spectrum, config.n_freq_bins)
    return [exporter.write_edges(edges), exporter.write_spectrum(spectrum_report)]


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    configure_logging()

    with PerformanceMonitor() as monitor:
        try:
            run(config_from_args(args), monitor)
        except TauDiagError as exc:
            logger.error("%s", exc)
            return 1
        logger.info("Completed optical depth diagnostics. The elapsed TIME was %f", monitor.elapsed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
