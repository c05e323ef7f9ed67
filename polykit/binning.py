import numpy
import logging
import itertools

from polykit import CurrentMPIComm

def _check_geometry(nbins, kmin, kmax, log):
    if int(nbins) != nbins or nbins <= 0:
        raise ValueError("number of bins should be a positive integer; got %s" % str(nbins))
    if not kmax > kmin or kmin < 0:
        raise ValueError("bin range should satisfy kmax > kmin >= 0; got kmin = %g, kmax = %g" % (kmin, kmax))
    if log and kmin <= 0:
        raise ValueError("logarithmic bins require kmin > 0; got kmin = %g" % kmin)

def _spacing(kmin, kmax, num, log):
    if log:
        return numpy.logspace(numpy.log10(kmin), numpy.log10(kmax), num)
    return numpy.linspace(kmin, kmax, num)

class BinningBase(object):
    """
    Persistence shared by the binning results; subclasses provide
    :func:`__getstate__` and :func:`__setstate__`.
    """
    @CurrentMPIComm.enable
    def save(self, output, comm=None):
        """
        Save the result to disk. The format is currently JSON.

        Only the root rank writes.
        """
        import json
        from polykit.utils import JSONEncoder

        if comm.rank == 0:
            self.logger.info('saving %s to %s' % (self.__class__.__name__, output))
            with open(output, 'w') as ff:
                json.dump(self.__getstate__(), ff, cls=JSONEncoder)

    @classmethod
    @CurrentMPIComm.enable
    def load(cls, output, comm=None):
        """
        Load a saved result. The result has been saved to disk with :func:`save`.
        """
        import json
        from polykit.utils import JSONDecoder
        if comm.rank == 0:
            with open(output, 'r') as ff:
                state = json.load(ff, cls=JSONDecoder)
        else:
            state = None
        state = comm.bcast(state)
        return cls.from_state(state)

    @classmethod
    def from_state(kls, state):
        obj = object.__new__(kls)
        obj.__setstate__(state)
        return obj

    def copy(self):
        """ Return a deep copy of the binning """
        state = self.__getstate__()
        state = dict((k, v.copy() if isinstance(v, numpy.ndarray) else v) for k, v in state.items())
        return self.from_state(state)

class PowerSpectrumBinning(BinningBase):
    """
    A one dimensional histogram over the wavenumber magnitude, accumulating
    the number of modes, the sum of the statistic and the sum of the
    wavenumber in each bin.

    The life cycle is ``reset()`` -> ``add_to_bin(...)`` (any number of times,
    on every rank) -> ``normalize(comm)`` (once, collectively) -> optionally
    ``scale(...)`` (once).

    Parameters
    ----------
    nbins : int
        the number of bins
    kmin, kmax : float
        the lower edge of the first bin and the upper edge of the last bin
    log : bool, optional
        if True, the bin edges are logarithmically spaced

    Attributes
    ----------
    edges : array_like, (nbins+1,)
        the bin edges
    k : array_like, (nbins,)
        the bin centers; geometric centers for logarithmic bins
    count : array_like, (nbins,)
        the (weighted) number of modes in each bin
    raw_sum : array_like, (nbins,)
        the accumulated (weighted) statistic
    kmean : array_like, (nbins,)
        the mean wavenumber of the modes in each bin, after normalization
    pofk : array_like, (nbins,)
        the normalized statistic; zero for empty bins
    """
    logger = logging.getLogger('PowerSpectrumBinning')

    def __init__(self, nbins, kmin, kmax, log=False):

        _check_geometry(nbins, kmin, kmax, log)

        self.nbins = int(nbins)
        self.kmin = float(kmin)
        self.kmax = float(kmax)
        self.log = bool(log)

        self.edges = _spacing(self.kmin, self.kmax, self.nbins + 1, self.log)
        if self.log:
            self.k = (self.edges[1:] * self.edges[:-1]) ** 0.5
        else:
            self.k = 0.5 * (self.edges[1:] + self.edges[:-1])

        self.reset()

    def __repr__(self):
        args = (self.__class__.__name__, self.nbins, self.kmin, self.kmax, 'log' if self.log else 'linear')
        return "<%s: nbins=%d, k=[%g, %g), %s>" % args

    def reset(self):
        """ Zero the accumulators and clear the normalization state """
        self.count = numpy.zeros(self.nbins)
        self.raw_sum = numpy.zeros(self.nbins)
        self.kmean = numpy.zeros(self.nbins)
        self.pofk = numpy.zeros(self.nbins)
        self.normalized = False
        self.scaled = False

    def bin_index(self, kmag):
        """
        Return the bin index of each wavenumber; -1 for values outside
        of ``[kmin, kmax)``.
        """
        kmag = numpy.asarray(kmag, dtype='f8')
        index = numpy.digitize(kmag, self.edges) - 1

        # round-off at the last edge of logspace
        index[index >= self.nbins] = self.nbins - 1
        index[(kmag < self.kmin) | (kmag >= self.kmax)] = -1
        return index

    def add_to_bin(self, kmag, value, weight=1.0):
        """
        Accumulate ``weight * value`` into the bins selected by ``kmag``.

        Values outside ``[kmin, kmax)`` are dropped.

        Parameters
        ----------
        kmag : float, array_like
            the wavenumber magnitude
        value : float, array_like
            the statistic; broadcast against ``kmag``
        weight : float, array_like, optional
            the weight of each value, e.g. 2 for modes standing in for their
            Hermitian partner
        """
        if self.normalized:
            raise RuntimeError("cannot add to a normalized binning; call reset() first")

        kmag, value, weight = numpy.broadcast_arrays(kmag, value, weight)
        kmag = kmag.ravel()
        value = value.ravel()
        weight = weight.ravel()

        index = self.bin_index(kmag)
        valid = index >= 0
        if not valid.any(): return

        index = index[valid]
        weight = weight[valid]

        self.count += numpy.bincount(index, weights=weight, minlength=self.nbins)
        self.raw_sum += numpy.bincount(index, weights=weight * value[valid], minlength=self.nbins)
        self.kmean += numpy.bincount(index, weights=weight * kmag[valid], minlength=self.nbins)

    def normalize(self, comm=None):
        """
        Sum the accumulators over all ranks and divide by the number of modes.

        This is a collective operation and must run exactly once per
        accumulation pass. Empty bins get a value of zero and the bin
        center as the mean wavenumber.

        Parameters
        ----------
        comm : MPI communicator, optional
            the communicator to reduce over; if None, the accumulators are
            assumed to be complete already
        """
        if self.normalized:
            raise RuntimeError("binning is already normalized; call reset() before accumulating again")

        if comm is not None:
            self.count = comm.allreduce(self.count)
            self.raw_sum = comm.allreduce(self.raw_sum)
            self.kmean = comm.allreduce(self.kmean)

        nonempty = self.count > 0
        self.pofk = numpy.zeros(self.nbins)
        self.pofk[nonempty] = self.raw_sum[nonempty] / self.count[nonempty]

        kmean = self.k.copy()
        kmean[nonempty] = self.kmean[nonempty] / self.count[nonempty]
        self.kmean = kmean

        self.normalized = True

    def subtract_shotnoise(self, shotnoise):
        """ Subtract a constant (the shot noise) from every bin """
        if not self.normalized:
            raise RuntimeError("shot noise is subtracted from the normalized value; call normalize() first")
        self.pofk -= shotnoise

    def scale(self, k_factor, value_factor):
        """
        Convert from grid units, by multiplying the wavenumbers by ``k_factor``
        and the normalized value by ``value_factor``.

        For a box of side ``L`` in ``N`` dimensions, ``k_factor = 1/L`` and
        ``value_factor = L**N``. This may be applied only once, after
        normalization.
        """
        if not self.normalized:
            raise RuntimeError("scale() must be called after normalize()")
        if self.scaled:
            raise RuntimeError("binning has already been scaled")

        self.edges = self.edges * k_factor
        self.k = self.k * k_factor
        self.kmean = self.kmean * k_factor
        self.pofk = self.pofk * value_factor
        self.scaled = True

    def compatible(self, other):
        """ Whether two binnings share the same geometry """
        return (isinstance(other, PowerSpectrumBinning)
                and self.nbins == other.nbins
                and numpy.allclose(self.edges, other.edges))

    def __iadd__(self, other):
        if not self.compatible(other):
            raise ValueError("cannot combine %r with %r: bin edges mismatch" % (self, other))

        self.count = self.count + other.count
        self.raw_sum = self.raw_sum + other.raw_sum
        self.kmean = self.kmean + other.kmean
        self.pofk = self.pofk + other.pofk
        return self

    def __itruediv__(self, factor):
        self.count = self.count / factor
        self.raw_sum = self.raw_sum / factor
        self.kmean = self.kmean / factor
        self.pofk = self.pofk / factor
        return self

    def __getstate__(self):
        return dict(nbins=self.nbins, kmin=self.kmin, kmax=self.kmax, log=self.log,
                    edges=self.edges, k=self.k,
                    count=self.count, raw_sum=self.raw_sum, kmean=self.kmean, pofk=self.pofk,
                    normalized=self.normalized, scaled=self.scaled)

    def __setstate__(self, state):
        self.__dict__.update(state)
        for name in ['edges', 'k', 'count', 'raw_sum', 'kmean', 'pofk']:
            self.__dict__[name] = numpy.asarray(state[name], dtype='f8')

class PolyspectrumBinning(BinningBase):
    """
    The result of a polyspectrum estimator of order ``order``: the value and
    the number of mode tuples for every tuple of radial bins
    ``(i_1, ..., i_order)``, stored as flat arrays of length ``nbins**order``
    in row-major order.

    The bins are spherical shells around the centers ``k``. The edges are
    placed at the midpoints between the centers; the first shell starts at
    ``k[0]`` and the last shell ends at ``k[-1]``.

    Parameters
    ----------
    nbins : int
        the number of radial bins
    kmin, kmax : float
        the first and the last bin center
    order : int
        the order of the spectrum; 3 for the bispectrum
    log : bool, optional
        if True, the bin centers are logarithmically spaced

    Attributes
    ----------
    k : array_like, (nbins,)
        the requested bin centers
    klow, khigh, kbin : array_like, (nbins,)
        the lower edge, upper edge and center of each shell
    deltak : float
        the spacing of the first two bins
    kmean : array_like, (nbins,)
        the mean wavenumber of the modes in each shell
    pofk : array_like, (nbins,)
        the mean of the squared field amplitude in each shell
    P123 : array_like, (nbins**order,)
        the value for each tuple of bins
    N123 : array_like, (nbins**order,)
        the (normalized) number of mode tuples for each tuple of bins
    computed : array_like, (nbins**order,)
        whether the entry has been set by the estimator
    """
    logger = logging.getLogger('PolyspectrumBinning')

    def __init__(self, nbins, kmin, kmax, order, log=False):

        _check_geometry(nbins, kmin, kmax, log)
        if int(order) != order or order < 2:
            raise ValueError("order of the polyspectrum should be an integer > 1; got %s" % str(order))

        self.nbins = int(nbins)
        self.kmin = float(kmin)
        self.kmax = float(kmax)
        self.order = int(order)
        self.log = bool(log)

        if self.nbins == 1:
            self.k = numpy.array([0.5 * (self.kmin + self.kmax)])
            self.klow = numpy.array([self.kmin])
            self.khigh = numpy.array([self.kmax])
            self.deltak = self.kmax - self.kmin
        else:
            self.k = _spacing(self.kmin, self.kmax, self.nbins, self.log)
            self.deltak = self.k[1] - self.k[0]

            self.khigh = numpy.empty(self.nbins)
            self.khigh[:-1] = self.k[:-1] + 0.5 * numpy.diff(self.k)
            self.khigh[-1] = self.k[-1]

            self.klow = numpy.empty(self.nbins)
            self.klow[0] = self.k[0]
            self.klow[1:] = self.khigh[:-1]

        self.kbin = 0.5 * (self.klow + self.khigh)
        self.scaled = False
        self.reset()

    def __repr__(self):
        args = (self.__class__.__name__, self.order, self.nbins, self.kmin, self.kmax)
        return "<%s: order=%d, nbins=%d, k=[%g, %g]>" % args

    @property
    def shape(self):
        """ The shape of the unflattened result """
        return (self.nbins,) * self.order

    def reset(self):
        """ Zero the results """
        size = self.nbins ** self.order
        self.P123 = numpy.zeros(size)
        self.N123 = numpy.zeros(size)
        self.computed = numpy.zeros(size, dtype='?')
        self.kmean = self.kbin.copy()
        self.pofk = numpy.zeros(self.nbins)

    def index(self, *bins):
        """ The flat index of a tuple of bin indices """
        if len(bins) != self.order:
            raise ValueError("expected %d bin indices, got %d" % (self.order, len(bins)))
        return int(numpy.ravel_multi_index(bins, self.shape))

    def value(self, *bins):
        """ The value for a tuple of bin indices """
        return self.P123[self.index(*bins)]

    def count(self, *bins):
        """ The number of mode tuples for a tuple of bin indices """
        return self.N123[self.index(*bins)]

    def sorted_tuples(self):
        """ Iterate over the tuples of bin indices in non-decreasing order """
        return itertools.combinations_with_replacement(range(self.nbins), self.order)

    def complete_symmetry(self):
        """
        Copy the value of every sorted tuple of bins to all of its
        permutations that have not been set yet.
        """
        for bins in itertools.product(range(self.nbins), repeat=self.order):
            index = self.index(*bins)
            if self.computed[index]:
                continue
            source = self.index(*sorted(bins))
            if not self.computed[source]:
                continue
            self._copy_entry(source, index)
            self.computed[index] = True

    def _copy_entry(self, source, dest):
        self.P123[dest] = self.P123[source]
        self.N123[dest] = self.N123[source]

    def scale(self, k_factor, value_factor=1.0, pofk_factor=1.0):
        """
        Convert from grid units by multiplying the wavenumbers by ``k_factor``,
        the polyspectrum by ``value_factor`` and the per-shell power by
        ``pofk_factor``. This may be applied only once.
        """
        if self.scaled:
            raise RuntimeError("binning has already been scaled")
        for name in ['k', 'klow', 'khigh', 'kbin', 'kmean']:
            setattr(self, name, getattr(self, name) * k_factor)
        self.deltak = self.deltak * k_factor
        self.P123 = self.P123 * value_factor
        self.pofk = self.pofk * pofk_factor
        self.scaled = True

    def __getstate__(self):
        return dict(nbins=self.nbins, kmin=self.kmin, kmax=self.kmax, order=self.order, log=self.log,
                    k=self.k, klow=self.klow, khigh=self.khigh, kbin=self.kbin, deltak=self.deltak,
                    kmean=self.kmean, pofk=self.pofk,
                    P123=self.P123, N123=self.N123, computed=self.computed,
                    scaled=self.scaled)

    def __setstate__(self, state):
        self.__dict__.update(state)
        for name in ['k', 'klow', 'khigh', 'kbin', 'kmean', 'pofk', 'P123', 'N123']:
            self.__dict__[name] = numpy.asarray(state[name], dtype='f8')
        self.computed = numpy.asarray(state['computed'], dtype='?')

class BispectrumBinning(PolyspectrumBinning):
    """
    A :class:`PolyspectrumBinning` of order 3, which also holds the reduced
    bispectrum

    .. math::

        Q(k_1, k_2, k_3) = \\frac{B(k_1, k_2, k_3)}{P(k_1)P(k_2) + P(k_2)P(k_3) + P(k_3)P(k_1)}

    Parameters
    ----------
    nbins : int
        the number of radial bins
    kmin, kmax : float
        the first and the last bin center
    log : bool, optional
        if True, the bin centers are logarithmically spaced
    """
    logger = logging.getLogger('BispectrumBinning')

    def __init__(self, nbins, kmin, kmax, log=False):
        PolyspectrumBinning.__init__(self, nbins, kmin, kmax, order=3, log=log)

    def reset(self):
        PolyspectrumBinning.reset(self)
        self.Q123 = numpy.zeros(self.nbins ** 3)

    @property
    def B123(self):
        """ The bispectrum; an alias of :attr:`P123` """
        return self.P123

    def reduced(self, i, j, k):
        """ The reduced bispectrum for a triple of bin indices """
        return self.Q123[self.index(i, j, k)]

    def _copy_entry(self, source, dest):
        PolyspectrumBinning._copy_entry(self, source, dest)
        self.Q123[dest] = self.Q123[source]

    def __getstate__(self):
        state = PolyspectrumBinning.__getstate__(self)
        state['Q123'] = self.Q123
        return state

    def __setstate__(self, state):
        PolyspectrumBinning.__setstate__(self, state)
        self.Q123 = numpy.asarray(state['Q123'], dtype='f8')
