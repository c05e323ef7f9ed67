import numpy
import logging
import time

from polykit import CurrentMPIComm
from polykit.binning import BispectrumBinning
from polykit.meshtools import fourier_slabs
from polykit.algorithms.fftpower import particles_to_fourier_space
from polykit.utils import timer

logger = logging.getLogger('Polyspectrum')

def _shell_fields(cfield, polyofk, comm):
    """
    Split ``cfield`` into the radial shells of ``polyofk``, returning for
    every shell the real space field and the real space shell indicator;
    also sets the mean wavenumber and the mean power of each shell.
    """
    fields = []
    counts = []
    for i in range(polyofk.nbins):

        if comm.rank == 0:
            logger.debug("shell %d / %d: k = [%g, %g)" % (i+1, polyofk.nbins, polyofk.klow[i], polyofk.khigh[i]))

        kmag2_min = polyofk.klow[i] ** 2
        kmag2_max = polyofk.khigh[i] ** 2

        F = cfield.copy()
        N = cfield.pm.create(type='complex', value=0)

        kmean = 0.
        power = 0.
        nk = 0.
        for (slab, f), (_, n) in zip(fourier_slabs(F), fourier_slabs(N)):
            if f.size == 0: continue
            kmag2 = slab.norm2()
            inside = (kmag2 < kmag2_max) & (kmag2 >= kmag2_min)

            kmean += (kmag2[inside] ** 0.5).sum()
            power += (f.real[inside]**2 + f.imag[inside]**2).sum()
            nk += inside.sum()

            f[~inside] = 0.
            n[inside] = 1.

        kmean = comm.allreduce(kmean)
        power = comm.allreduce(power)
        nk = comm.allreduce(nk)

        polyofk.kmean[i] = kmean / nk if nk > 0 else polyofk.kbin[i]
        polyofk.pofk[i] = power / nk if nk > 0 else 0.

        fields.append(F.c2r(out=Ellipsis))
        counts.append(N.c2r(out=Ellipsis))

    return fields, counts

def _local_product_sum(fields, bins):
    prod = fields[bins[0]].value.copy()
    for b in bins[1:]:
        prod *= fields[b].value
    return prod.sum()

def _polyspectrum(cfield, polyofk, comm):
    # fills the sorted tuples of polyofk; the permutations are left unset

    Nmesh = cfield.pm.Nmesh[0]
    ndim = len(cfield.pm.Nmesh)
    order = polyofk.order

    if polyofk.nbins <= 0:
        raise ValueError("binning should have at least one bin")
    if Nmesh <= 0:
        raise ValueError("grid should have Nmesh > 0")

    polyofk.reset()

    fields, counts = _shell_fields(cfield, polyofk, comm)

    # dx^N / (2pi)^N
    norm = (1.0 / Nmesh / (2 * numpy.pi)) ** ndim

    kbin = polyofk.kbin
    deltak = polyofk.deltak

    tuples = list(polyofk.sorted_tuples())
    for itup, bins in enumerate(tuples):

        if comm.rank == 0 and (itup * 10) // len(tuples) != ((itup + 1) * 10) // len(tuples):
            logger.debug("integrating up %d %%" % (100 * (itup + 1) // len(tuples)))

        index = polyofk.index(*bins)
        polyofk.computed[index] = True

        # no closed polygons if the largest side exceeds the sum of the others
        if sum(kbin[b] for b in bins[:-1]) < kbin[bins[-1]] - order * deltak / 2.:
            polyofk.P123[index] = 0.
            polyofk.N123[index] = 0.
            continue

        N123 = comm.allreduce(_local_product_sum(counts, bins)) * norm
        F123 = comm.allreduce(_local_product_sum(fields, bins)) * norm

        polyofk.P123[index] = F123 / N123 if N123 > 0 else 0.
        polyofk.N123[index] = N123 if N123 > 0 else 0.

    return polyofk

def compute_polyspectrum_from_field(cfield, polyofk, comm=None):
    """
    Estimate the polyspectrum :math:`\\langle \\delta(k_1) \\cdots \\delta(k_n) \\rangle`
    of a Fourier space field, for every tuple of radial shells of ``polyofk``.

    Each shell is transformed back to real space, both the field restricted
    to the shell, :math:`F_i(x)`, and the shell indicator, :math:`N_i(x)`.
    The sum over closed polygons :math:`k_1 + \\cdots + k_n = 0` with each
    side in its shell is then a sum over cells of :math:`\\prod_j F_{i_j}(x)`,
    and the number of such polygons is the sum of :math:`\\prod_j N_{i_j}(x)`.

    Only tuples with ``i_1 <= ... <= i_n`` are computed; the others are
    filled by symmetry. Tuples that cannot form a closed polygon are zero.

    .. note::

        All ``2 * nbins`` real space shell grids are held in memory at the
        same time.

    Parameters
    ----------
    cfield : :class:`pmesh.pm.ComplexField`
        the Fourier space density field
    polyofk : :class:`~polykit.binning.PolyspectrumBinning`
        the binning to fill
    comm : MPI communicator, optional
        the communicator; default is the one of ``cfield``

    Returns
    -------
    polyofk :
        the input binning
    """
    if comm is None:
        comm = cfield.pm.comm

    t0 = time.time()
    _polyspectrum(cfield, polyofk, comm)
    polyofk.complete_symmetry()

    if comm.rank == 0:
        logger.info("polyspectrum of order %d with %d bins done in %s"
                    % (polyofk.order, polyofk.nbins, timer(t0, time.time())))
    return polyofk

def compute_bispectrum_from_field(cfield, bofk, comm=None):
    """
    Estimate the bispectrum :math:`B(k_1, k_2, k_3)` of a Fourier space field,
    along with the reduced bispectrum

    .. math::

        Q(k_1, k_2, k_3) = \\frac{B(k_1, k_2, k_3)}{P(k_1)P(k_2) + P(k_2)P(k_3) + P(k_3)P(k_1)}

    where :math:`P(k_i)` is the mean power in shell :math:`i`. When the
    denominator vanishes, :math:`Q = B`.

    See :func:`compute_polyspectrum_from_field` for the method.

    Parameters
    ----------
    cfield : :class:`pmesh.pm.ComplexField`
        the Fourier space density field
    bofk : :class:`~polykit.binning.BispectrumBinning`
        the binning to fill
    comm : MPI communicator, optional
        the communicator; default is the one of ``cfield``
    """
    if not isinstance(bofk, BispectrumBinning):
        raise TypeError("the bispectrum is stored in a BispectrumBinning, not %s" % type(bofk).__name__)

    if comm is None:
        comm = cfield.pm.comm

    t0 = time.time()
    _polyspectrum(cfield, bofk, comm)

    P = bofk.pofk
    for i, j, k in bofk.sorted_tuples():
        index = bofk.index(i, j, k)
        denom = P[i] * P[j] + P[j] * P[k] + P[k] * P[i]
        bofk.Q123[index] = bofk.B123[index] / denom if denom > 0 else bofk.B123[index]

    bofk.complete_symmetry()

    if comm.rank == 0:
        logger.info("bispectrum with %d bins done in %s" % (bofk.nbins, timer(t0, time.time())))
    return bofk

@CurrentMPIComm.enable
def compute_bispectrum(Nmesh, particles, bofk, scheme='cic', comm=None):
    """
    Estimate the bispectrum of a set of particles in a periodic unit box.

    The particles are assigned to a grid and Fourier transformed, see
    :func:`~polykit.algorithms.fftpower.particles_to_fourier_space`, before
    :func:`compute_bispectrum_from_field`.
    No shot noise is subtracted.

    Parameters
    ----------
    Nmesh : int
        the number of cells per side of the grid
    particles : :class:`~polykit.particles.ParticleCatalog`, array_like
        the particles, or their local positions in ``[0, 1)``
    bofk : :class:`~polykit.binning.BispectrumBinning`
        the binning to fill
    scheme : str, optional
        the assignment scheme
    comm :
        the MPI communicator
    """
    if int(Nmesh) != Nmesh or Nmesh <= 0:
        raise ValueError("grid size should be a positive integer; got %s" % str(Nmesh))

    cfield = particles_to_fourier_space(Nmesh, particles, scheme=scheme, comm=comm)
    return compute_bispectrum_from_field(cfield, bofk, comm=comm)

@CurrentMPIComm.enable
def compute_polyspectrum(Nmesh, particles, polyofk, scheme='cic', comm=None):
    """
    Estimate the polyspectrum of a set of particles in a periodic unit box.

    As :func:`compute_bispectrum`, for a binning of any order.
    """
    if int(Nmesh) != Nmesh or Nmesh <= 0:
        raise ValueError("grid size should be a positive integer; got %s" % str(Nmesh))

    cfield = particles_to_fourier_space(Nmesh, particles, scheme=scheme, comm=comm)
    return compute_polyspectrum_from_field(cfield, polyofk, comm=comm)
