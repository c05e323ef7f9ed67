from runtests.mpi import MPITest
from polykit import setup_logging, set_options
from polykit.algorithms import (compute_power_spectrum, compute_power_spectrum_interlacing,
                                compute_power_spectrum_direct_summation, bin_up_power_spectrum,
                                particles_to_fourier_space)
from polykit.binning import PowerSpectrumBinning
from polykit.meshtools import make_mesh, fourier_slabs
from polykit.particles import UniformCatalog, ParticleCatalog
from numpy.testing import assert_array_equal, assert_allclose
from mpi4py import MPI
import numpy
import pytest

setup_logging("debug")

@MPITest([1, 4])
def test_poisson_shotnoise(comm):

    # no clustering: only shot noise, which is subtracted
    cat = UniformCatalog(100000, seed=42, comm=comm)
    shotnoise = 1e-5

    for func in [compute_power_spectrum, compute_power_spectrum_interlacing]:
        pofk = PowerSpectrumBinning(1, 2 * numpy.pi, 16 * numpy.pi)
        func(32, cat, pofk, scheme='cic', comm=comm)

        assert pofk.normalized
        assert pofk.count[0] > 1000
        assert abs(pofk.pofk[0]) < 0.2 * shotnoise

@MPITest([1, 4])
def test_concrete_scenario(comm):

    cat = UniformCatalog(1000, seed=42, comm=comm)
    pofk = PowerSpectrumBinning(8, 2 * numpy.pi, 16 * numpy.pi, log=True)
    compute_power_spectrum(16, cat, pofk, scheme='ngp', comm=comm)

    assert len(pofk.pofk) == 8
    assert numpy.isfinite(pofk.pofk).all()
    assert numpy.isfinite(pofk.kmean).all()

    # the weighted number of modes is the number of grid modes in range;
    # modes exactly at the edges may fall either way
    n = numpy.arange(-8, 8)
    n2 = n[:, None, None]**2 + n[None, :, None]**2 + n[None, None, :]**2
    lower = ((n2 > 1) & (n2 < 64)).sum()
    upper = ((n2 >= 1) & (n2 <= 64)).sum()
    assert lower <= pofk.count.sum() <= upper

@MPITest([1, 4])
def test_rank_invariance(comm):

    cat = UniformCatalog(5000, seed=84, comm=comm)
    pofk = PowerSpectrumBinning(6, 2 * numpy.pi, 14 * numpy.pi)
    compute_power_spectrum(16, cat, pofk, scheme='tsc', comm=comm)

    full = cat.gather(root=Ellipsis)
    pofk1 = PowerSpectrumBinning(6, 2 * numpy.pi, 14 * numpy.pi)
    compute_power_spectrum(16, full.position, pofk1, scheme='tsc', comm=MPI.COMM_SELF)

    assert_allclose(pofk.count, pofk1.count)
    assert_allclose(pofk.kmean, pofk1.kmean)
    assert_allclose(pofk.pofk, pofk1.pofk, rtol=1e-8, atol=1e-14)

@MPITest([1, 4])
def test_interlacing_keeps_positions(comm):

    cat = UniformCatalog(1000, seed=42, comm=comm)
    position = cat.position.copy()

    pofk = PowerSpectrumBinning(4, 2 * numpy.pi, 16 * numpy.pi)
    compute_power_spectrum_interlacing(16, cat, pofk, scheme='pcs', comm=comm)

    assert_array_equal(cat.position, position)
    assert numpy.isfinite(pofk.pofk).all()

@MPITest([1, 4])
def test_bin_up_single_mode(comm):

    pm = make_mesh(8, ndim=3, comm=comm)
    cfield = pm.create(type='complex', value=0)

    # a unit amplitude at n = (0, 0, 1), stored for its partner too
    for slab, value in fourier_slabs(cfield):
        if value.size == 0: continue
        k = [numpy.broadcast_to(slab.coords(i), slab.shape) for i in range(3)]
        mask = numpy.isclose(k[0], 0) & numpy.isclose(k[1], 0) & numpy.isclose(k[2], 2 * numpy.pi)
        value[mask] = 1.0

    pofk = PowerSpectrumBinning(1, numpy.pi, 2.5 * numpy.pi)
    bin_up_power_spectrum(cfield, pofk)

    # the 6 modes with |n| = 1
    assert_allclose(pofk.count, [6.])
    assert_allclose(pofk.pofk, [2. / 6.])
    assert_allclose(pofk.kmean, [2 * numpy.pi])

@MPITest([1, 4])
def test_direct_summation_two_particles(comm):

    # every rank holds the full set
    position = numpy.array([[0.1, 0.2, 0.3], [0.6, 0.2, 0.3]])

    # with a separation of half the box along x, P = (-1)^n_x / 2
    pofk = PowerSpectrumBinning(1, 0.9 * 2 * numpy.pi, 1.1 * 2 * numpy.pi)
    with set_options(direct_summation_chunk_size=1):
        compute_power_spectrum_direct_summation(8, position, pofk, comm=comm)

    assert_allclose(pofk.count, [6.])
    assert_allclose(pofk.pofk, [1. / 6.], atol=1e-12)

@MPITest([1])
def test_direct_summation_single_particle(comm):

    # a single particle has no pairs: the power is all shot noise
    pofk = PowerSpectrumBinning(4, 2 * numpy.pi, 8 * numpy.pi)
    compute_power_spectrum_direct_summation(8, numpy.array([[0.3, 0.7, 0.1]]), pofk, comm=comm)
    assert_allclose(pofk.pofk, 0., atol=1e-12)

@MPITest([1, 4])
def test_direct_summation_vs_fft(comm):

    # a catalog replicated on all ranks
    cat = UniformCatalog(200, seed=42, comm=MPI.COMM_SELF)

    kmin, kmax = 1.5 * numpy.pi, 4.5 * numpy.pi
    pofk1 = PowerSpectrumBinning(2, kmin, kmax)
    compute_power_spectrum_direct_summation(16, cat, pofk1, comm=comm)

    particles = ParticleCatalog(cat.position if comm.rank == 0 else numpy.empty((0, 3)), comm=comm)
    pofk2 = PowerSpectrumBinning(2, kmin, kmax)
    compute_power_spectrum_interlacing(64, particles, pofk2, scheme='pcs', comm=comm)

    # far below the Nyquist frequency of the grid the two agree
    assert_allclose(pofk1.count, pofk2.count)
    assert_allclose(pofk1.pofk, pofk2.pofk, rtol=1e-2, atol=1e-4)

@MPITest([1])
def test_direct_summation_empty(comm):

    pofk = PowerSpectrumBinning(4, 2 * numpy.pi, 8 * numpy.pi)
    with pytest.raises(ValueError):
        compute_power_spectrum_direct_summation(8, numpy.empty((0, 3)), pofk, comm=comm)

@MPITest([1])
def test_bad_grid(comm):

    cat = UniformCatalog(100, seed=42, comm=comm)
    pofk = PowerSpectrumBinning(4, 2 * numpy.pi, 8 * numpy.pi)

    with pytest.raises(ValueError):
        compute_power_spectrum(0, cat, pofk, comm=comm)
    with pytest.raises(ValueError):
        compute_power_spectrum_interlacing(7.5, cat, pofk, comm=comm)

@MPITest([1, 4])
def test_fourier_space_attrs(comm):

    cat = UniformCatalog(500, ndim=2, seed=42, comm=comm)
    cfield = particles_to_fourier_space(16, cat, scheme='tsc', comm=comm)

    assert cfield.attrs['N'] == 500
    assert_allclose(cfield.attrs['shotnoise'], 1. / 500)

    # the zero mode is removed
    for slab, value in fourier_slabs(cfield):
        if value.size == 0: continue
        assert_allclose(value[slab.norm2() == 0], 0.)
