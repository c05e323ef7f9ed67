import numpy
import logging
import time

from polykit import CurrentMPIComm
from polykit.meshtools import make_mesh, fourier_slabs
from polykit.painting import assign_particles_to_grid, deconvolve_window
from polykit.particles import ParticleCatalog
from polykit.algorithms.fftpower import clear_zero_mode
from polykit.utils import timer

logger = logging.getLogger('Multipoles')

def legendre_coefficient(k, ell):
    """
    The coefficient of :math:`\\mu^{\\ell-2k}` in the Legendre polynomial
    :math:`L_\\ell(\\mu)`,

    .. math::

        c(k, \\ell) = (-1)^k \\binom{\\ell}{k} \\binom{2\\ell-2k}{\\ell} 2^{-\\ell}
    """
    from scipy.special import comb
    sign = 1. if k % 2 == 0 else -1.
    return sign * comb(ell, k, exact=True) * comb(2*ell - 2*k, ell, exact=True) / 2.**ell

def _check_los(los, ndim):
    los = numpy.asarray(los, dtype='f8')
    if los.shape != (ndim,):
        raise ValueError("line-of-sight should be a vector of length %d; got %s" % (ndim, str(los.shape)))
    norm = numpy.sum(los**2) ** 0.5
    if not norm > 0:
        raise ValueError("line-of-sight vector has zero length")
    return los / norm

def compute_power_spectrum_multipoles_from_field(cfield, Pell, los, comm=None):
    """
    Compute the multipoles of the power spectrum of a Fourier space field
    with respect to a fixed line-of-sight.

    ``Pell`` is a list of binnings; on return, ``Pell[ell]`` holds

    .. math::

        P_\\ell(k) = \\langle L_\\ell(\\mu) |\\delta(k)|^2 \\rangle

    averaged over the modes in each bin, where :math:`\\mu` is the cosine of
    the angle between the wavevector and the line-of-sight. Note that there
    is no :math:`2\\ell+1` prefactor.

    The moments :math:`\\langle \\mu^n |\\delta|^2 \\rangle` are binned first,
    and combined into Legendre multipoles after normalization. Odd moments
    vanish for every mode that stands in for its unstored partner
    :math:`-k`, since :math:`\\mu` changes sign.

    Parameters
    ----------
    cfield : :class:`pmesh.pm.ComplexField`
        the Fourier space density field
    Pell : list of :class:`~polykit.binning.PowerSpectrumBinning`
        the binnings of the multipoles ``0, 1, ..., len(Pell)-1``
    los : array_like
        the line-of-sight direction; it need not be normalized
    comm : MPI communicator, optional
        the communicator; default is the one of ``cfield``
    """
    if comm is None:
        comm = cfield.pm.comm

    if len(Pell) == 0:
        raise ValueError("at least one multipole binning is needed")
    los = _check_los(los, len(cfield.x))

    for pofk in Pell:
        pofk.reset()

    # bin up mu^ell |delta|^2
    for slab, value in fourier_slabs(cfield):
        if value.size == 0: continue

        kmag = slab.norm()
        mu = slab.mu(los)
        power = value.real**2 + value.imag**2
        weights = slab.hermitian_weights

        mutoell = numpy.ones(slab.shape)
        for ell, pofk in enumerate(Pell):
            y = power * mutoell
            if ell % 2:
                y[slab.nonsingular] = 0.
            pofk.add_to_bin(kmag, y, weights)
            mutoell = mutoell * mu

    for pofk in Pell:
        pofk.normalize(comm)

    # go from <mu^n |delta|^2> to <L_ell(mu) |delta|^2>
    moments = [pofk.pofk.copy() for pofk in Pell]
    for ell, pofk in enumerate(Pell):
        pofk.pofk = sum(legendre_coefficient(k, ell) * moments[ell - 2*k] for k in range(ell // 2 + 1))

    return Pell

@CurrentMPIComm.enable
def compute_power_spectrum_multipoles(Nmesh, particles, velocity_to_displacement, Pell, scheme='cic', comm=None):
    """
    Estimate the redshift space power spectrum multipoles of a simulation.

    For each coordinate axis in turn, the particles are moved to redshift
    space with that axis as the line-of-sight, :math:`x_d \\to x_d +
    \\alpha v_d`, and the multipoles are computed with
    :func:`compute_power_spectrum_multipoles_from_field`. The result is the
    mean over the axes, with the shot noise subtracted from the monopole.

    The displaced positions are a copy; the input particles are not modified.

    Parameters
    ----------
    Nmesh : int
        the number of cells per side of the grid
    particles : :class:`~polykit.particles.ParticleCatalog`
        the particles; they must carry velocities
    velocity_to_displacement : float
        the factor :math:`\\alpha` converting a velocity into a displacement
        in box units, e.g. :math:`1/(aH L)` for peculiar velocities
    Pell : list of :class:`~polykit.binning.PowerSpectrumBinning`
        the binnings of the multipoles ``0, 1, ..., len(Pell)-1``
    scheme : str, optional
        the assignment scheme
    comm :
        the MPI communicator
    """
    if int(Nmesh) != Nmesh or Nmesh <= 0:
        raise ValueError("grid size should be a positive integer; got %s" % str(Nmesh))
    if len(Pell) == 0:
        raise ValueError("at least one multipole binning is needed")
    if getattr(particles, 'velocity', None) is None:
        raise ValueError("redshift space multipoles need particles with velocities")

    t0 = time.time()
    position = particles.position
    velocity = particles.velocity
    ndim = position.shape[1]

    pm = make_mesh(Nmesh, ndim=ndim, comm=comm)

    N = None
    for axis in range(ndim):

        if comm.rank == 0:
            logger.info("computing multipoles with line-of-sight along axis %d" % axis)

        los = numpy.zeros(ndim)
        los[axis] = 1.

        # to redshift space, on a copy of the positions
        vr = velocity[:, axis] * velocity_to_displacement
        displaced = position.copy()
        displaced[:, axis] = (displaced[:, axis] + vr) % 1.0

        displaced = ParticleCatalog(displaced, comm=comm).redistribute(pm)

        real = assign_particles_to_grid(pm, displaced.position, scheme=scheme)
        N = real.attrs['N']

        cfield = real.r2c(out=Ellipsis)
        clear_zero_mode(cfield)
        deconvolve_window(cfield, scheme)

        if axis == 0:
            compute_power_spectrum_multipoles_from_field(cfield, Pell, los, comm=comm)
        else:
            current = [pofk.copy() for pofk in Pell]
            compute_power_spectrum_multipoles_from_field(cfield, current, los, comm=comm)
            for pofk, other in zip(Pell, current):
                pofk += other

    for pofk in Pell:
        pofk /= ndim

    # shot noise only affects the monopole
    if N > 0:
        Pell[0].subtract_shotnoise(1. / N)

    if comm.rank == 0:
        logger.info("multipoles of %d particles done in %s" % (N, timer(t0, time.time())))
    return Pell
