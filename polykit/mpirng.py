from numpy.random import RandomState
import numpy
from polykit import _global_options

class MPIRandomState:
    """ A random number generator that is invariant against the number of ranks,
        when the collective size of the random numbers requested is kept the same.

        The collective sequence is cut into chunks of ``chunksize`` items; each
        chunk is drawn from its own :class:`numpy.random.RandomState`, seeded from
        a table that is generated by a serial RNG seeded with ``seed``. A rank
        draws the chunks overlapping its slice ``[start, start + size)`` and
        discards the items owned by the previous rank.

        The sampler methods are collective calls; multiple calls will return
        uncorrelated results.

        Parameters
        ----------
        comm : MPI communicator
            the communicator
        seed : int
            the global seed
        size : int
            the number of items drawn on this rank
        chunksize : int, optional
            the number of items per seed; defaults to the ``rng_chunk_size``
            global option
    """
    def __init__(self, comm, seed, size, chunksize=None):
        if chunksize is None:
            chunksize = _global_options['rng_chunk_size']

        self.comm = comm
        self.seed = seed
        self.chunksize = chunksize

        sizes = comm.allgather(size)
        self.size = size
        self.csize = sum(sizes)

        self._start = sum(sizes[:comm.rank])
        self._first_ichunk = self._start // chunksize

        # items of the first chunk that belong to the previous ranks
        self._skip = self._start - self._first_ichunk * chunksize

        self.nchunks = (self.csize + chunksize - 1) // chunksize

        self._serial_rng = RandomState(seed)

    def uniform(self, low=0., high=1.0, itemshape=(), dtype='f8'):
        """ Produce `self.size` uniforms, each of shape itemshape. This is a collective MPI call. """
        def sampler(rng, size):
            return rng.uniform(low=low, high=high, size=size)
        return self._call_rngmethod(sampler, itemshape, dtype)

    def normal(self, loc=0., scale=1.0, itemshape=(), dtype='f8'):
        """ Produce `self.size` normals, each of shape itemshape. This is a collective MPI call. """
        def sampler(rng, size):
            return rng.normal(loc=loc, scale=scale, size=size)
        return self._call_rngmethod(sampler, itemshape, dtype)

    def _call_rngmethod(self, sampler, itemshape, dtype):
        """
            Walk the seed table from the first chunk touching this rank and fill
            a buffer that starts at the chunk boundary; the leading ``_skip``
            items are dropped from the result.
        """
        # every rank advances the serial rng by the same amount
        seeds = self._serial_rng.randint(0, high=0xffffffff, size=self.nchunks)

        r = numpy.empty((self._skip + self.size,) + tuple(itemshape), dtype=dtype)

        ichunk = self._first_ichunk
        offset = 0
        while offset < len(r):
            nreq = min(len(r) - offset, self.chunksize)
            rng = RandomState(seeds[ichunk])
            r[offset:offset + nreq] = sampler(rng, size=(nreq,) + tuple(itemshape))
            offset += nreq
            ichunk += 1

        return r[self._skip:]
