from runtests.mpi import MPITest
from polykit import setup_logging, set_options
from polykit.mpirng import MPIRandomState
from numpy.testing import assert_array_equal
import numpy
from mpi4py import MPI

setup_logging("debug")

def _serial(rng):
    # the same stream drawn on a single rank
    return MPIRandomState(MPI.COMM_SELF, seed=rng.seed, size=rng.csize, chunksize=rng.chunksize)

@MPITest([4])
def test_mpirng_rank_invariant(comm):

    # chunks larger than the local sizes, and smaller
    for size, chunksize in [(1, 10), (10, 3)]:
        rng = MPIRandomState(comm, seed=1234, size=size, chunksize=chunksize)
        serial = _serial(rng)

        local = rng.normal(itemshape=(2,))
        assert local.shape == (size, 2)
        full = numpy.concatenate(comm.allgather(local), axis=0)
        assert_array_equal(full, serial.normal(itemshape=(2,)))

        local = rng.uniform()
        full = numpy.concatenate(comm.allgather(local), axis=0)
        assert_array_equal(full, serial.uniform())

@MPITest([4])
def test_mpirng_uneven(comm):
    # one rank without items
    size = [0, 5, 7, 3][comm.rank]
    rng = MPIRandomState(comm, seed=42, size=size, chunksize=4)

    local = rng.uniform(low=2., high=3.)
    assert len(local) == size
    all = numpy.concatenate(comm.allgather(local), axis=0)

    rng1 = MPIRandomState(MPI.COMM_SELF, seed=42, size=15, chunksize=4)
    assert_array_equal(all, rng1.uniform(low=2., high=3.))
    assert ((all >= 2.) & (all < 3.)).all()

@MPITest([4])
def test_mpirng_unique(comm):
    rng = MPIRandomState(comm, seed=1234, size=10, chunksize=3)

    local1 = rng.uniform()
    local2 = rng.uniform()

    # it shouldn't be the same!
    assert (local1 != local2).any()

@MPITest([1])
def test_mpirng_default_chunksize(comm):
    with set_options(rng_chunk_size=16):
        rng = MPIRandomState(comm, seed=1234, size=10)
    assert rng.chunksize == 16
