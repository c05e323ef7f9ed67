from runtests.mpi import MPITest
from polykit import setup_logging, CurrentMPIComm
from polykit.particles import ParticleCatalog, UniformCatalog
from polykit.meshtools import make_mesh
from polykit.io.gadget import write_gadget
from numpy.testing import assert_array_equal, assert_allclose
from mpi4py import MPI
import numpy
import os
import shutil
import tempfile
import pytest

setup_logging("debug")

@MPITest([1, 4])
def test_uniform(comm):

    cat = UniformCatalog(1000, ndim=3, seed=42, comm=comm)
    assert cat.csize == 1000
    assert cat.ndim == 3
    assert cat.velocity is None
    assert ((cat.position >= 0) & (cat.position < 1)).all()

    # the sizes add up
    assert comm.allreduce(cat.size) == 1000

@MPITest([1, 4])
def test_uniform_rank_invariant(comm):

    cat = UniformCatalog(1000, ndim=2, seed=42, velocity_scale=3.0, comm=comm)
    full = cat.gather(root=Ellipsis)

    serial = UniformCatalog(1000, ndim=2, seed=42, velocity_scale=3.0, comm=MPI.COMM_SELF)
    assert_array_equal(full.position, serial.position)
    assert_array_equal(full.velocity, serial.velocity)
    assert (abs(serial.velocity) <= 3.0).all()

@MPITest([4])
def test_uniform_seed_bcast(comm):

    # a random seed is shared by all ranks
    cat = UniformCatalog(100, seed=None, comm=comm)
    seeds = comm.allgather(cat.attrs['seed'])
    assert all(s == seeds[0] for s in seeds)

@MPITest([1])
def test_bad_catalog(comm):

    with pytest.raises(ValueError):
        ParticleCatalog(numpy.zeros(10), comm=comm)
    with pytest.raises(ValueError):
        ParticleCatalog(numpy.zeros((10, 3)), velocity=numpy.zeros((10, 2)), comm=comm)
    with pytest.raises(ValueError):
        UniformCatalog(0, comm=comm)

@MPITest([1, 4])
def test_current_comm(comm):

    with CurrentMPIComm.enter(comm):
        cat = UniformCatalog(100, seed=1)
    assert cat.comm is comm

@MPITest([1, 4])
def test_redistribute(comm):

    cat = UniformCatalog(1000, seed=42, velocity_scale=1.0, comm=comm)
    pm = make_mesh(8, ndim=3, comm=comm)

    cat2 = cat.redistribute(pm)
    assert cat2.csize == cat.csize

    # the particles are the same, perhaps in a different order
    p1 = cat.gather(root=Ellipsis)
    p2 = cat2.gather(root=Ellipsis)
    i1 = numpy.lexsort(p1.position.T)
    i2 = numpy.lexsort(p2.position.T)
    assert_array_equal(p1.position[i1], p2.position[i2])
    assert_array_equal(p1.velocity[i1], p2.velocity[i2])

    # a second exchange moves nothing
    cat3 = cat2.redistribute(pm)
    assert cat3.size == cat2.size

@MPITest([1, 4])
def test_gather_root(comm):

    cat = UniformCatalog(100, seed=42, comm=comm)
    full = cat.gather(root=0)
    if comm.rank == 0:
        assert full.size == 100
        assert full.comm is MPI.COMM_SELF
    else:
        assert full is None

@MPITest([1, 4])
def test_from_gadget(comm):

    BoxSize = 100.
    N = 64
    rng = numpy.random.RandomState(42)
    position = rng.uniform(0, BoxSize, size=(N, 3))
    velocity = rng.normal(size=(N, 3))

    if comm.rank == 0:
        tmpdir = tempfile.mkdtemp()
        path = os.path.join(tmpdir, 'snapshot')
        write_gadget(path, position, velocity, numpy.arange(N), BoxSize=BoxSize, aexp=0.25,
                     OmegaM=0.3, OmegaLambda=0.7, HubbleParam=0.7)
    else:
        tmpdir = path = None
    path = comm.bcast(path)
    tmpdir = comm.bcast(tmpdir)

    cat = ParticleCatalog.from_gadget(path, comm=comm)
    assert cat.csize == N
    assert_allclose(cat.attrs['BoxSize'], BoxSize)
    assert_allclose(cat.attrs['Time'], 0.25)

    full = cat.gather(root=Ellipsis)
    assert_allclose(full.position, (position.astype('f4') / BoxSize) % 1.0, rtol=1e-6)
    assert_allclose(full.velocity, velocity.astype('f4') * 0.5, rtol=1e-6)
    assert ((full.position >= 0) & (full.position < 1)).all()

    comm.barrier()
    if comm.rank == 0:
        shutil.rmtree(tmpdir)
