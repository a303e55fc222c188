import math

import pytest

torch = pytest.importorskip("torch")

from taudiag.config import ColumnSpec, IntegratorConfig, OpacitySpec, RelativityMode
from taudiag.constants import CONSTANTS
from taudiag.exceptions import IntegrationError, PhotonCreationError, TauDiagConfigError
from taudiag.grid import FlowGrid, hydrogen_helium_ions
from taudiag.integrate import IntegrationStatus, PathIntegrator, comoving_frequency
from taudiag.photon import Photon, PhotonFactory, PhotonStatus


def _slab(kappa: float, shape=(4, 4, 10), cell_size=2.0, **kwargs) -> FlowGrid:
    return FlowGrid.uniform(shape, cell_size, n_e=kappa / CONSTANTS.THOMSON, **kwargs)


def test_uniform_slab_optical_depth_matches_kappa_times_length(slab_kappa) -> None:
    grid = _slab(slab_kappa, rho=2.0e-15)
    photon = PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))

    result = PathIntegrator(grid).integrate_one(photon, opacity=OpacitySpec.electron_scattering())

    path_length = 10.0  # from z = 10 to the upper face at z = 20
    assert result.status is IntegrationStatus.ESCAPED
    assert result.optical_depth == pytest.approx(slab_kappa * path_length, rel=1e-12)
    assert result.column_density == pytest.approx(2.0e-15 * path_length, rel=1e-12)
    assert result.n_steps == 5
    assert result.position[2] == pytest.approx(20.0)
    assert photon.status is PhotonStatus.ESCAPED


def test_oblique_path_length_is_exact(slab_kappa) -> None:
    grid = _slab(slab_kappa, shape=(10, 10, 10), cell_size=1.0)
    direction = torch.tensor([1.0, 1.0, 1.0]) / math.sqrt(3.0)
    photon = PhotonFactory(grid).create(1.0e15, direction)

    result = PathIntegrator(grid).integrate_one(photon)

    assert result.optical_depth == pytest.approx(slab_kappa * 5.0 * math.sqrt(3.0), rel=1e-10)


def test_hydrogen_column_defaults_to_mass_over_proton_mass() -> None:
    grid = _slab(0.01, rho=CONSTANTS.MPROT * 1.0e3)
    photon = PhotonFactory(grid).create(1.0e15, (0.0, 0.0, -1.0))

    result = PathIntegrator(grid).integrate_one(photon, column=ColumnSpec.hydrogen())

    assert result.column_density == pytest.approx(1.0e3 * 10.0, rel=1e-12)


def test_photoionization_opacity_above_and_below_threshold() -> None:
    ions = hydrogen_helium_ions()
    grid = FlowGrid.uniform(
        (4, 4, 10), 2.0, ions=ions, ion_density=(1.0e3, 0.0, 0.0)
    )
    factory = PhotonFactory(grid)
    integrator = PathIntegrator(grid)
    nu_th = ions.nu_th[0]

    above = integrator.integrate_one(
        factory.create(2.0 * nu_th, (0.0, 0.0, 1.0)),
        opacity=OpacitySpec.for_ion(0),
        column=ColumnSpec.for_ion(0),
    )
    below = integrator.integrate_one(
        factory.create(0.5 * nu_th, (0.0, 0.0, 1.0)), opacity=OpacitySpec.total()
    )

    sigma = ions.sigma0[0] / 8.0
    assert above.optical_depth == pytest.approx(1.0e3 * sigma * 10.0, rel=1e-12)
    assert above.column_density == pytest.approx(1.0e3 * 10.0, rel=1e-12)
    assert below.optical_depth == 0.0


def test_comoving_frequency_full_and_linear() -> None:
    frequency = torch.tensor([1.0e15], dtype=torch.float64)
    direction = torch.tensor([[0.0, 0.0, 1.0]], dtype=torch.float64)
    velocity = torch.tensor([[0.0, 0.0, 0.1 * CONSTANTS.VLIGHT]], dtype=torch.float64)

    linear = comoving_frequency(frequency, direction, velocity, RelativityMode.LINEAR)
    full = comoving_frequency(frequency, direction, velocity, RelativityMode.FULL)

    assert linear.item() == pytest.approx(0.9e15, rel=1e-12)
    assert full.item() == pytest.approx(0.9e15 / math.sqrt(0.99), rel=1e-12)


def test_doppler_shift_moves_photon_across_edge() -> None:
    ions = hydrogen_helium_ions()
    nu_th = ions.nu_th[0]
    grid = FlowGrid.uniform(
        (4, 4, 10),
        2.0,
        ions=ions,
        ion_density=(1.0e3, 0.0, 0.0),
        velocity=(0.0, 0.0, 0.2 * CONSTANTS.VLIGHT),
    )
    photon = PhotonFactory(grid).create(1.1 * nu_th, (0.0, 0.0, 1.0))

    result = PathIntegrator(grid).integrate_one(photon, relativity=RelativityMode.LINEAR)

    # Redshifted below the Lyman edge in the co-moving frame
    assert result.optical_depth == 0.0


def test_stop_depth_zero_returns_start_position(slab_kappa) -> None:
    grid = _slab(slab_kappa)
    photon = PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))
    start = photon.position.clone()

    result = PathIntegrator(grid).integrate_one(
        photon, opacity=OpacitySpec.electron_scattering(), tau_stop=0.0
    )

    assert result.status is IntegrationStatus.REACHED_DEPTH
    assert result.optical_depth == 0.0
    assert torch.equal(photon.position, start)


def test_stop_depth_is_reached_at_analytic_distance(slab_kappa) -> None:
    grid = _slab(slab_kappa)
    photon = PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))

    result = PathIntegrator(grid).integrate_one(
        photon, opacity=OpacitySpec.electron_scattering(), tau_stop=0.3
    )

    assert result.status is IntegrationStatus.REACHED_DEPTH
    assert result.optical_depth == pytest.approx(0.3)
    assert result.position[2] == pytest.approx(10.0 + 0.3 / slab_kappa, rel=1e-10)
    assert photon.status is PhotonStatus.REACHED_DEPTH


def test_unreachable_stop_depth_returns_boundary_crossing(slab_kappa) -> None:
    grid = _slab(slab_kappa)
    photon = PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))

    result = PathIntegrator(grid).integrate_one(
        photon, opacity=OpacitySpec.electron_scattering(), tau_stop=1.0e6
    )

    assert result.status is IntegrationStatus.ESCAPED
    assert result.position == pytest.approx((4.0, 4.0, 20.0))


def test_start_outside_grid_is_invalid(slab_kappa) -> None:
    grid = _slab(slab_kappa)
    photon = Photon(position=(-1.0, 0.0, 0.0), direction=(1.0, 0.0, 0.0), frequency=1.0e15)
    integrator = PathIntegrator(grid)

    result = integrator.integrate([photon])[0]
    assert result.status is IntegrationStatus.INVALID_START
    assert result.optical_depth == 0.0
    assert result.column_density == 0.0
    assert photon.status is PhotonStatus.FAILED

    with pytest.raises(IntegrationError) as excinfo:
        integrator.integrate_one(photon)
    assert excinfo.value.status is IntegrationStatus.INVALID_START


def test_photon_heading_into_central_object_fails(slab_kappa) -> None:
    grid = _slab(slab_kappa, shape=(10, 10, 10), cell_size=1.0, central_radius=1.0)
    photon = Photon(position=(5.0, 5.0, 0.5), direction=(0.0, 0.0, 1.0), frequency=1.0e15)

    result = PathIntegrator(grid).integrate([photon])[0]

    assert result.status is IntegrationStatus.HIT_CENTRAL
    assert not result.succeeded
    assert photon.status is PhotonStatus.HIT_CENTRAL
    assert photon.position[2].item() == pytest.approx(4.0)


def test_step_budget_is_enforced(slab_kappa) -> None:
    grid = _slab(slab_kappa, shape=(4, 4, 10), cell_size=1.0)

    def run(max_steps: int):
        config = IntegratorConfig(max_steps=max_steps)
        photon = PhotonFactory(grid, config).create(1.0e15, (0.0, 0.0, 1.0))
        return PathIntegrator(grid, config).integrate([photon])[0]

    assert run(5).status is IntegrationStatus.ESCAPED
    assert run(4).status is IntegrationStatus.PATH_TOO_LONG


def test_direction_with_rounding_noise_does_not_stall(slab_kappa) -> None:
    grid = _slab(slab_kappa, shape=(4, 4, 4), cell_size=1.0)
    direction = (-1.0, math.sin(-math.pi), math.cos(math.pi / 2.0))
    photon = PhotonFactory(grid, IntegratorConfig(max_steps=10)).create(1.0e15, direction)

    result = PathIntegrator(grid, IntegratorConfig(max_steps=10)).integrate([photon])[0]

    assert result.status is IntegrationStatus.ESCAPED
    assert result.n_steps == 2
    assert result.optical_depth == pytest.approx(2.0 * slab_kappa)


def test_integration_is_repeatable(slab_kappa) -> None:
    grid = _slab(slab_kappa, shape=(6, 6, 6), cell_size=1.5, velocity=(1.0e8, 0.0, 0.0))
    factory = PhotonFactory(grid)
    integrator = PathIntegrator(grid)
    directions = [(0.3, -0.4, 0.866), (0.0, 1.0, 0.0), (-0.7, 0.1, -0.2)]

    first = integrator.integrate([factory.create(1.0e15, d) for d in directions])
    second = integrator.integrate([factory.create(1.0e15, d) for d in directions])

    assert first == second


def test_failing_photon_does_not_affect_others(slab_kappa) -> None:
    grid = _slab(slab_kappa)
    integrator = PathIntegrator(grid)
    good = PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))
    alone = integrator.integrate([PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))])[0]
    bad = Photon(position=(100.0, 0.0, 0.0), direction=(1.0, 0.0, 0.0), frequency=1.0e15)

    results = integrator.integrate([bad, good])

    assert results[0].status is IntegrationStatus.INVALID_START
    assert results[1].status is alone.status
    assert results[1].optical_depth == pytest.approx(alone.optical_depth, rel=1e-15)
    assert results[1].position == pytest.approx(alone.position)


def test_invalid_requests_are_fatal(slab_kappa) -> None:
    grid = _slab(slab_kappa, ions=hydrogen_helium_ions())
    integrator = PathIntegrator(grid)
    photon = PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))

    with pytest.raises(TauDiagConfigError, match="invalid ion number"):
        integrator.integrate([photon], column=ColumnSpec.for_ion(3))
    with pytest.raises(TauDiagConfigError):
        integrator.integrate([photon], opacity=OpacitySpec.for_ion(7))
    with pytest.raises(TauDiagConfigError):
        integrator.integrate([photon], tau_stop=-1.0)


def test_photon_factory_launches_outside_central_object() -> None:
    grid = _slab(0.01, shape=(10, 10, 10), cell_size=1.0, central_radius=2.0)
    factory = PhotonFactory(grid)

    photon = factory.create(1.0e15, (0.0, 3.0, 4.0))

    offset = photon.position - grid.center_tensor
    assert torch.linalg.vector_norm(offset).item() == pytest.approx(2.0 * (1.0 + 1.0e-6))
    assert photon.direction.tolist() == pytest.approx([0.0, 0.6, 0.8])
    assert photon.status is PhotonStatus.ALIVE


@pytest.mark.parametrize(
    ("frequency", "direction"),
    [(0.0, (0.0, 0.0, 1.0)), (float("nan"), (0.0, 0.0, 1.0)), (1.0e15, (0.0, 0.0, 0.0))],
)
def test_photon_factory_rejects_bad_requests(frequency, direction) -> None:
    grid = _slab(0.01)
    with pytest.raises(PhotonCreationError):
        PhotonFactory(grid).create(frequency, direction)


def test_photon_factory_rejects_launch_outside_grid() -> None:
    grid = _slab(0.01, shape=(2, 2, 2), cell_size=1.0, central_radius=5.0)
    with pytest.raises(PhotonCreationError):
        PhotonFactory(grid).create(1.0e15, (0.0, 0.0, 1.0))


def test_grid_validation() -> None:
    ones = torch.ones(2, 2, 2, dtype=torch.float64)
    still = torch.zeros(2, 2, 2, 3, dtype=torch.float64)

    with pytest.raises(TauDiagConfigError):
        FlowGrid(rho=ones, n_h=torch.ones(2, 2, 3), n_e=ones, velocity=still)
    with pytest.raises(TauDiagConfigError):
        FlowGrid(rho=-ones, n_h=ones, n_e=ones, velocity=still)
    with pytest.raises(TauDiagConfigError):
        FlowGrid(rho=ones, n_h=ones, n_e=ones, velocity=still + CONSTANTS.VLIGHT)
    with pytest.raises(TauDiagConfigError):
        FlowGrid(rho=ones, n_h=ones, n_e=ones, velocity=still, cell_size=(1.0, 0.0, 1.0))
