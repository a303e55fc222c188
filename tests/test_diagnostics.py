import logging

import numpy as np
import pytest

torch = pytest.importorskip("torch")

import taudiag.diagnostics
from taudiag.config import ColumnSpec, IntegratorConfig, SpectrumConfig
from taudiag.constants import CONSTANTS
from taudiag.diagnostics import (
    FAILED_POSITION,
    OpticalDepthDiagnostics,
    create_optical_depth_spectrum,
    evaluate_photoionization_edges,
    find_photosphere,
    frequency_grid,
    frequency_limits,
)
from taudiag.exceptions import TauDiagConfigError, TauDiagResourceError
from taudiag.export import ReportExporter
from taudiag.grid import FlowGrid, hydrogen_helium_ions
from taudiag.sightlines import initialize_sightlines, observer_direction, sightline_name

RHO = 3.0e-14


def _slab(kappa: float, shape=(4, 4, 4), **kwargs) -> FlowGrid:
    return FlowGrid.uniform(shape, 1.0, rho=RHO, n_e=kappa / CONSTANTS.THOMSON, **kwargs)


def _axis_sightlines():
    # Along +z and along -x
    return initialize_sightlines(SpectrumConfig(angles=(0.0, 90.0)))


def test_default_sightlines() -> None:
    sightlines = initialize_sightlines()

    assert [s.name for s in sightlines] == [
        "A00P0.50",
        "A10P0.50",
        "A30P0.50",
        "A45P0.50",
        "A60P0.50",
        "A75P0.50",
        "A85P0.50",
        "A90P0.50",
    ]
    for sightline in sightlines:
        assert np.linalg.norm(sightline.direction) == pytest.approx(1.0)


def test_configured_sightlines() -> None:
    sightlines = initialize_sightlines(SpectrumConfig(angles=(62.5,), phases=(0.25,)))

    assert sightline_name(62.5, 0.25) == "A62P0.25"
    assert sightlines[0].direction == observer_direction(62.5, 0.25)
    assert observer_direction(90.0, 0.5) == pytest.approx((-1.0, 0.0, 0.0), abs=1e-12)


def test_default_frequency_limits() -> None:
    freq_min, freq_max = frequency_limits(None)

    assert freq_min == pytest.approx(CONSTANTS.VLIGHT / (10000.0 * CONSTANTS.ANGSTROM))
    assert freq_max == pytest.approx(CONSTANTS.VLIGHT / (100.0 * CONSTANTS.ANGSTROM))


def test_invalid_frequency_limit_falls_back_to_default(caplog) -> None:
    spectrum = SpectrumConfig(wavelength_min=-5.0, wavelength_max=1000.0)

    with caplog.at_level(logging.WARNING, logger="taudiag.diagnostics"):
        freq_min, freq_max = frequency_limits(spectrum)

    assert freq_min == pytest.approx(CONSTANTS.VLIGHT / (1000.0 * CONSTANTS.ANGSTROM))
    assert freq_max == pytest.approx(CONSTANTS.VLIGHT / (100.0 * CONSTANTS.ANGSTROM))
    assert "freq_max has an invalid value" in caplog.text


def test_inverted_corrected_frequency_limits_use_default_window(caplog) -> None:
    spectrum = SpectrumConfig(wavelength_min=-5.0, wavelength_max=50.0)

    with caplog.at_level(logging.WARNING, logger="taudiag.diagnostics"):
        freq_min, freq_max = frequency_limits(spectrum)

    assert freq_min == pytest.approx(CONSTANTS.VLIGHT / (10000.0 * CONSTANTS.ANGSTROM))
    assert freq_max == pytest.approx(CONSTANTS.VLIGHT / (100.0 * CONSTANTS.ANGSTROM))
    assert "Corrected frequency range is not increasing" in caplog.text


def test_inverted_configured_frequency_limits_are_rejected() -> None:
    with pytest.raises(TauDiagConfigError, match="not increasing"):
        frequency_limits(SpectrumConfig(wavelength_min=2000.0, wavelength_max=1000.0))


def test_frequency_grid_requires_two_bins() -> None:
    with pytest.raises(TauDiagConfigError):
        frequency_grid(1.0e14, 1.0e15, 1)


def test_optical_depth_spectrum_default_range(slab_kappa) -> None:
    diagnostics = OpticalDepthDiagnostics(_slab(slab_kappa), _axis_sightlines())

    spectrum = diagnostics.optical_depth_spectrum(n_freq_bins=100)

    freq = spectrum.frequencies
    assert freq.shape == (100,)
    assert np.all(np.diff(freq) > 0.0)
    assert np.allclose(np.diff(freq), spectrum.d_freq, rtol=1e-9)
    assert freq[0] == pytest.approx(CONSTANTS.VLIGHT / (10000.0 * CONSTANTS.ANGSTROM))
    assert freq[-1] == pytest.approx(CONSTANTS.VLIGHT / (100.0 * CONSTANTS.ANGSTROM))
    assert spectrum.wavelengths[0] == pytest.approx(10000.0)
    assert spectrum.optical_depth.shape == (2, 100)
    assert np.allclose(spectrum.optical_depth, 2.0 * slab_kappa, rtol=1e-12)


def test_optical_depth_spectrum_configured_range(slab_kappa) -> None:
    diagnostics = OpticalDepthDiagnostics(_slab(slab_kappa), _axis_sightlines())
    config = SpectrumConfig(wavelength_min=1000.0, wavelength_max=2000.0)

    spectrum = diagnostics.optical_depth_spectrum(config, n_freq_bins=10)

    assert spectrum.wavelengths[0] == pytest.approx(2000.0)
    assert spectrum.wavelengths[-1] == pytest.approx(1000.0)


def test_edge_report_includes_photoionization(slab_kappa) -> None:
    ions = hydrogen_helium_ions()
    n_h1 = 1.0e15
    grid = _slab(slab_kappa, ions=ions, ion_density=(n_h1, 0.0, 0.0))
    diagnostics = OpticalDepthDiagnostics(grid, _axis_sightlines())

    report = diagnostics.photoionization_edges()

    names = [name for name, _ in report.edges]
    lyman, balmer = names.index("HLymanEdge"), names.index("HBalmerEdge")
    assert report.optical_depth.shape == (2, 4)
    assert report.optical_depth[0, balmer] == pytest.approx(2.0 * slab_kappa, rel=1e-12)
    assert report.optical_depth[0, lyman] == pytest.approx(
        2.0 * (slab_kappa + n_h1 * ions.sigma0[0]), rel=1e-12
    )
    assert report.last_edge_column_density == pytest.approx([2.0 * RHO, 2.0 * RHO])


def test_edge_report_ion_column(slab_kappa) -> None:
    grid = _slab(slab_kappa, ions=hydrogen_helium_ions(), ion_density=(0.0, 5.0, 2.0))
    diagnostics = OpticalDepthDiagnostics(grid, _axis_sightlines(), column=ColumnSpec.for_ion(2))

    report = diagnostics.photoionization_edges([("HLymanEdge", 3.387485e15)])

    assert report.last_edge_column_density == pytest.approx([4.0, 4.0])


def test_failed_edge_keeps_last_successful_column(slab_kappa) -> None:
    diagnostics = OpticalDepthDiagnostics(_slab(slab_kappa), _axis_sightlines())

    report = diagnostics.photoionization_edges([("good", 1.0e15), ("bad", -1.0)])

    assert report.optical_depth[:, 0] == pytest.approx([2.0 * slab_kappa, 2.0 * slab_kappa])
    assert np.all(report.optical_depth[:, 1] == 0.0)
    assert report.last_edge_column_density == pytest.approx([2.0 * RHO, 2.0 * RHO])


def test_photosphere_positions(slab_kappa) -> None:
    diagnostics = OpticalDepthDiagnostics(_slab(slab_kappa), _axis_sightlines())

    report = diagnostics.photosphere(slab_kappa)

    assert report.positions[0] == pytest.approx([2.0, 2.0, 3.0])
    assert report.positions[1] == pytest.approx([1.0, 2.0, 2.0])
    assert not report.failed.any()


def test_photosphere_unreachable_depth_reports_boundary(slab_kappa) -> None:
    diagnostics = OpticalDepthDiagnostics(_slab(slab_kappa), _axis_sightlines())

    report = diagnostics.photosphere(100.0)

    assert report.positions[0] == pytest.approx([2.0, 2.0, 4.0])
    assert report.positions[1] == pytest.approx([0.0, 2.0, 2.0])


def test_failed_sightline_does_not_affect_others(slab_kappa, caplog) -> None:
    # The +z path needs 20 cell crossings, the -x path only 2
    grid = _slab(slab_kappa, shape=(4, 4, 40))
    diagnostics = OpticalDepthDiagnostics(
        grid, _axis_sightlines(), config=IntegratorConfig(max_steps=5)
    )

    with caplog.at_level(logging.WARNING, logger="taudiag.diagnostics"):
        spectrum = diagnostics.optical_depth_spectrum(n_freq_bins=5)
        photosphere = diagnostics.photosphere(100.0)

    assert np.all(spectrum.optical_depth[0] == 0.0)
    assert np.allclose(spectrum.optical_depth[1], 2.0 * slab_kappa, rtol=1e-12)
    assert tuple(photosphere.positions[0]) == FAILED_POSITION
    assert photosphere.failed.tolist() == [True, False]
    assert "path_too_long" in caplog.text


def test_photon_creation_failures_are_skipped(slab_kappa, caplog) -> None:
    grid = _slab(slab_kappa, central_radius=10.0)
    diagnostics = OpticalDepthDiagnostics(grid, _axis_sightlines())

    with caplog.at_level(logging.WARNING, logger="taudiag.diagnostics"):
        report = diagnostics.photoionization_edges()

    assert np.all(report.optical_depth == 0.0)
    assert np.all(report.last_edge_column_density == 0.0)
    assert "skipping photon" in caplog.text


def test_buffer_allocation_failure_raises_resource_error(slab_kappa, monkeypatch) -> None:
    diagnostics = OpticalDepthDiagnostics(_slab(slab_kappa), _axis_sightlines())

    def no_memory(*args, **kwargs):
        raise MemoryError

    monkeypatch.setattr(taudiag.diagnostics.np, "full", no_memory)

    with pytest.raises(TauDiagResourceError):
        diagnostics.optical_depth_spectrum(n_freq_bins=4)
    with pytest.raises(TauDiagResourceError):
        diagnostics.photoionization_edges()
    with pytest.raises(TauDiagResourceError):
        diagnostics.photosphere(slab_kappa)


def test_drivers_require_sightlines(slab_kappa) -> None:
    with pytest.raises(TauDiagConfigError):
        OpticalDepthDiagnostics(_slab(slab_kappa), [])


def test_report_files(tmp_path, slab_kappa) -> None:
    diagnostics = OpticalDepthDiagnostics(_slab(slab_kappa), _axis_sightlines())
    exporter = ReportExporter(tmp_path / "out" / "model")

    spec_path = exporter.write_spectrum(diagnostics.optical_depth_spectrum(n_freq_bins=7))
    edge_path = exporter.write_edges(diagnostics.photoionization_edges())
    phot_path = exporter.write_photosphere(diagnostics.photosphere(slab_kappa))

    assert spec_path.name == "model.tau_spec.diag"
    header = spec_path.read_text().splitlines()[0].split()
    assert header == ["Frequency", "Lambda", "A00P0.50", "A90P0.50"]
    table = np.loadtxt(spec_path, skiprows=1)
    assert table.shape == (7, 4)
    assert np.allclose(table[:, 2:], 2.0 * slab_kappa, rtol=1e-5)

    edge_lines = edge_path.read_text().splitlines()
    assert edge_path.name == "model.tau_edges.diag"
    assert edge_lines[0].split() == [
        "Sightline",
        "HLymanEdge",
        "HBalmerEdge",
        "HeI24eVEdge",
        "HeII54eVEdge",
        "MassColumn",
    ]
    assert [line.split()[0] for line in edge_lines[1:]] == ["A00P0.50", "A90P0.50"]
    assert float(edge_lines[1].split()[-1]) == pytest.approx(2.0 * RHO, rel=1e-5)

    phot_lines = phot_path.read_text().splitlines()
    assert phot_path.name == "model.photosphere"
    assert phot_lines[0].startswith("#")
    name, *xyz = phot_lines[2].split()
    assert name == "A00P0.50"
    assert [float(v) for v in xyz] == pytest.approx([2.0, 2.0, 3.0], rel=1e-5)


def test_functional_forms_match_driver_methods(slab_kappa) -> None:
    grid = _slab(slab_kappa)
    sightlines = _axis_sightlines()
    diagnostics = OpticalDepthDiagnostics(grid, sightlines)

    spectrum = create_optical_depth_spectrum(grid, sightlines, n_freq_bins=4)
    edges = evaluate_photoionization_edges(grid, sightlines, column=ColumnSpec.hydrogen())
    photosphere = find_photosphere(grid, sightlines, 100.0)

    assert np.array_equal(
        spectrum.optical_depth, diagnostics.optical_depth_spectrum(n_freq_bins=4).optical_depth
    )
    assert edges.column == ColumnSpec.hydrogen()
    assert np.array_equal(photosphere.positions, diagnostics.photosphere(100.0).positions)
