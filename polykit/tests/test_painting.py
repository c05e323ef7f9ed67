from runtests.mpi import MPITest
from polykit import setup_logging, set_options
from polykit.meshtools import make_mesh, fourier_slabs
from polykit.painting import (assign_particles_to_grid, deconvolve_window,
                              slices_needed, scheme_order, get_resampler)
from polykit.particles import UniformCatalog
from numpy.testing import assert_array_equal, assert_allclose
import numpy
import pytest

setup_logging("debug")

def test_slices_needed():
    assert slices_needed('ngp') == (0, 0)
    assert slices_needed('cic') == (0, 1)
    assert slices_needed('tsc') == (1, 1)
    assert slices_needed('pcs') == (1, 2)

    assert [scheme_order(s) for s in ['NGP', 'CIC', 'TSC', 'PCS']] == [1, 2, 3, 4]

def test_unknown_scheme():
    with pytest.raises(ValueError):
        scheme_order('sph')
    with pytest.raises(ValueError):
        get_resampler('nearest')

@MPITest([1, 4])
def test_paint_normalization(comm):

    pm = make_mesh(8, ndim=3, comm=comm)
    cat = UniformCatalog(1000, seed=42, comm=comm)

    for scheme in ['ngp', 'cic', 'tsc', 'pcs']:
        real = assign_particles_to_grid(pm, cat.position, scheme=scheme)
        assert real.attrs['N'] == 1000
        assert_allclose(real.attrs['num_per_cell'], 1000. / 8**3)
        assert_allclose(real.attrs['shotnoise'], 1e-3)

        # the field is 1 + delta
        mean = comm.allreduce(real.value.sum()) / 8**3
        assert_allclose(mean, 1.0)

@MPITest([1, 4])
def test_paint_ngp_cells(comm):

    pm = make_mesh(4, ndim=2, comm=comm)

    # one particle per cell, at the grid points
    if comm.rank == 0:
        i, j = numpy.meshgrid(numpy.arange(4), numpy.arange(4), indexing='ij')
        position = numpy.column_stack([i.ravel(), j.ravel()]) / 4.
    else:
        position = numpy.empty((0, 2))

    real = assign_particles_to_grid(pm, position, scheme='ngp')
    assert_allclose(real.value, 1.0)

@MPITest([1, 4])
def test_paint_shift_keeps_positions(comm):

    pm = make_mesh(8, ndim=3, comm=comm)
    cat = UniformCatalog(500, seed=84, comm=comm)
    position = cat.position.copy()

    real = assign_particles_to_grid(pm, cat.position, scheme='tsc', shift=0.5)
    assert_array_equal(cat.position, position)

    mean = comm.allreduce(real.value.sum()) / 8**3
    assert_allclose(mean, 1.0)

@MPITest([1, 4])
def test_paint_chunks(comm):

    pm = make_mesh(8, ndim=3, comm=comm)
    cat = UniformCatalog(1000, seed=42, comm=comm)

    real1 = assign_particles_to_grid(pm, cat.position, scheme='cic')
    with set_options(paint_chunk_size=77):
        real2 = assign_particles_to_grid(pm, cat.position, scheme='cic')

    assert_allclose(real1.value, real2.value)

@MPITest([1])
def test_paint_empty(comm):

    pm = make_mesh(8, ndim=3, comm=comm)

    with pytest.warns(RuntimeWarning):
        real = assign_particles_to_grid(pm, numpy.empty((0, 3)), scheme='cic')

    assert_array_equal(real.value, 1.0)
    assert real.attrs['N'] == 0

@MPITest([1])
def test_paint_bad_shape(comm):

    pm = make_mesh(8, ndim=3, comm=comm)
    with pytest.raises(ValueError):
        assign_particles_to_grid(pm, numpy.zeros((10, 2)), scheme='cic')

@MPITest([1, 4])
def test_deconvolve_window(comm):

    pm = make_mesh(8, ndim=3, comm=comm)

    for scheme in ['ngp', 'cic', 'tsc', 'pcs']:
        cfield = pm.create(type='complex', value=1.0)
        deconvolve_window(cfield, scheme)

        for slab, value in fourier_slabs(cfield):
            if value.size == 0: continue
            k = slab.norm()

            # the zero mode is untouched, the others are boosted
            assert_allclose(value[k == 0], 1.0)
            assert (abs(value) >= 1.0).all()
