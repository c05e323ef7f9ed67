import numpy
import logging
import time
from mpi4py import MPI

from polykit import CurrentMPIComm, _global_options
from polykit.meshtools import make_mesh, fourier_slabs
from polykit.painting import assign_particles_to_grid, deconvolve_window
from polykit.utils import timer

logger = logging.getLogger('FFTPower')

def _get_position(particles):
    # a catalog, or a bare (N, ndim) array of positions
    return numpy.asarray(getattr(particles, 'position', particles))

def _check_mesh(Nmesh, binning):
    if int(Nmesh) != Nmesh or Nmesh <= 0:
        raise ValueError("grid size should be a positive integer; got %s" % str(Nmesh))
    if binning.nbins <= 0:
        raise ValueError("binning should have at least one bin")

def _zero_mode(cfield):
    # yields the local slabs with a mask selecting the k = 0 mode
    for i, s0 in zip(cfield.slabs.i, cfield.slabs):
        mask = True
        for i1 in i:
            mask = mask & (i1 == 0)
        yield s0, mask

def clear_zero_mode(cfield):
    """ Set the :math:`k=0` mode of a :class:`pmesh.pm.ComplexField` to zero, in place """
    for s0, mask in _zero_mode(cfield):
        s0[mask] = 0
    return cfield

def bin_up_power_spectrum(cfield, pofk, comm=None):
    """
    Bin :math:`|\\delta(k)|^2` of a Fourier space field in spherical shells.

    Only half of the modes are stored along the last axis of ``cfield``;
    modes whose conjugate partner is not stored count twice.

    The binning is reset first and normalized at the end, which is a
    collective operation.

    Parameters
    ----------
    cfield : :class:`pmesh.pm.ComplexField`
        the Fourier space density field
    pofk : :class:`~polykit.binning.PowerSpectrumBinning`
        the binning to fill
    comm : MPI communicator, optional
        the communicator; default is the one of ``cfield``

    Returns
    -------
    pofk :
        the input binning, normalized
    """
    if comm is None:
        comm = cfield.pm.comm

    pofk.reset()
    for slab, value in fourier_slabs(cfield):
        if value.size == 0: continue
        power = value.real**2 + value.imag**2
        pofk.add_to_bin(slab.norm(), power, slab.hermitian_weights)

    pofk.normalize(comm)
    return pofk

@CurrentMPIComm.enable
def particles_to_fourier_space(Nmesh, particles, scheme='cic', comm=None):
    """
    Assign particles to a new grid of ``Nmesh`` cells per side, and return
    its Fourier transform with the zero mode removed and the assignment
    window deconvolved.

    The ``attrs`` of the returned :class:`pmesh.pm.ComplexField` hold the
    number of particles ``N`` and the ``shotnoise`` :math:`1/N`.
    """
    position = _get_position(particles)
    pm = make_mesh(Nmesh, ndim=position.shape[1], comm=comm)

    real = assign_particles_to_grid(pm, position, scheme=scheme)

    cfield = real.r2c(out=Ellipsis)
    cfield.attrs = dict(real.attrs)
    clear_zero_mode(cfield)
    deconvolve_window(cfield, scheme)
    return cfield

@CurrentMPIComm.enable
def compute_power_spectrum(Nmesh, particles, pofk, scheme='cic', comm=None):
    """
    Estimate the power spectrum of a set of particles in a periodic unit box.

    The particles are assigned to a grid of ``Nmesh`` cells per side with the
    chosen ``scheme``, Fourier transformed, deconvolved with the assignment
    window, and binned; the Poisson shot noise :math:`1/N` is subtracted.

    Parameters
    ----------
    Nmesh : int
        the number of cells per side of the grid
    particles : :class:`~polykit.particles.ParticleCatalog`, array_like
        the particles, or their local positions in ``[0, 1)``
    pofk : :class:`~polykit.binning.PowerSpectrumBinning`
        the binning to fill; wavenumbers are in grid units, :math:`2\\pi n`
    scheme : str, optional
        the assignment scheme; one of 'ngp', 'cic', 'tsc', 'pcs'
    comm :
        the MPI communicator

    Returns
    -------
    pofk :
        the input binning, holding the shot noise subtracted power spectrum
    """
    _check_mesh(Nmesh, pofk)

    t0 = time.time()
    cfield = particles_to_fourier_space(Nmesh, particles, scheme=scheme, comm=comm)

    bin_up_power_spectrum(cfield, pofk, comm=comm)
    pofk.subtract_shotnoise(cfield.attrs['shotnoise'])

    if comm.rank == 0:
        logger.info("power spectrum with Nmesh = %d done in %s" % (Nmesh, timer(t0, time.time())))
    return pofk

@CurrentMPIComm.enable
def compute_power_spectrum_interlacing(Nmesh, particles, pofk, scheme='cic', comm=None):
    """
    Estimate the power spectrum with the interlacing technique of
    `Sefusatti et al. 2015 <https://arxiv.org/abs/1512.07295>`_, which removes
    the leading contribution of aliasing.

    A second grid is painted with every particle displaced by half a cell
    along all axes; in Fourier space the two grids are combined as

    .. math::

        \\delta(k) = \\frac{1}{2}\\left[ \\delta_1(k) + e^{i k \\cdot s} \\delta_2(k) \\right]

    with :math:`s` the displacement. The displacement is applied while
    painting, and the particle positions are left untouched.

    Parameters are as for :func:`compute_power_spectrum`.
    """
    _check_mesh(Nmesh, pofk)
    position = _get_position(particles)

    t0 = time.time()
    pm = make_mesh(Nmesh, ndim=position.shape[1], comm=comm)

    # in mesh units
    shift = 0.5
    H = pm.BoxSize / pm.Nmesh

    real1 = assign_particles_to_grid(pm, position, scheme=scheme)
    real2 = assign_particles_to_grid(pm, position, scheme=scheme, shift=shift)
    shotnoise = real1.attrs['shotnoise']

    def filter(k, v):
        kH = sum(ki * Hi for ki, Hi in zip(k, shift * H))
        return numpy.exp(1j * kH) * v

    c1 = real1.r2c(out=Ellipsis)
    c2 = real2.r2c(out=Ellipsis).apply(filter, out=Ellipsis)

    # compose the two interlaced fields into the final result.
    c1[...] = 0.5 * (c1[...] + c2[...])

    clear_zero_mode(c1)
    deconvolve_window(c1, scheme)

    bin_up_power_spectrum(c1, pofk, comm=comm)
    pofk.subtract_shotnoise(shotnoise)

    if comm.rank == 0:
        logger.info("interlaced power spectrum with Nmesh = %d done in %s" % (Nmesh, timer(t0, time.time())))
    return pofk

@CurrentMPIComm.enable
def compute_power_spectrum_direct_summation(Nmesh, particles, pofk, comm=None):
    """
    Estimate the power spectrum without any assignment window or aliasing,
    by summing :math:`\\sum_p e^{-i k \\cdot x_p}` over all particles for
    every mode of the grid.

    The cost scales as the number of particles times the number of modes, so
    this is only useful for testing on small sets. Every rank must hold the
    full, identical set of particles; each rank computes the modes it owns.

    Parameters
    ----------
    Nmesh : int
        the number of cells per side; selects the modes that are computed
    particles : :class:`~polykit.particles.ParticleCatalog`, array_like
        the full set of particles
    pofk : :class:`~polykit.binning.PowerSpectrumBinning`
        the binning to fill
    comm :
        the MPI communicator

    Returns
    -------
    pofk :
        the input binning, holding the shot noise subtracted power spectrum
    """
    _check_mesh(Nmesh, pofk)
    position = _get_position(particles)
    NumPart = len(position)

    if comm.size > 1 and comm.rank == 0:
        logger.warning("direct summation running on %d ranks; every rank must hold all particles" % comm.size)

    if comm.allreduce(NumPart, op=MPI.MIN) == 0:
        raise ValueError("direct summation needs the particles on every rank")

    t0 = time.time()
    pm = make_mesh(Nmesh, ndim=position.shape[1], comm=comm)
    cfield = pm.create(type='complex', value=0)

    chunksize = _global_options['direct_summation_chunk_size']
    for slab, value in fourier_slabs(cfield):
        if value.size == 0: continue
        kvec = [numpy.broadcast_to(slab.coords(i), slab.shape)[..., None] for i in range(slab.ndim)]

        total = numpy.zeros(slab.shape, dtype='c16')
        for i in range(0, NumPart, chunksize):
            p = position[i:i+chunksize]
            kx = sum(kvec[d] * p[:, d] for d in range(slab.ndim))
            total += numpy.exp(-1j * kx).sum(axis=-1)

        value[...] = total

    # remove the self pair from the k = 0 mode
    for s0, mask in _zero_mode(cfield):
        s0[mask] -= 1.

    cfield[...] /= NumPart

    bin_up_power_spectrum(cfield, pofk, comm=comm)
    pofk.subtract_shotnoise(1. / NumPart)

    if comm.rank == 0:
        logger.info("direct summation over %d particles done in %s" % (NumPart, timer(t0, time.time())))
    return pofk
