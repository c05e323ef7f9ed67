"""
Particle to grid mass assignment and the matching window deconvolution.
"""
import numpy
import logging
import warnings

from polykit import _global_options

logger = logging.getLogger('Painting')

# scheme name -> (pmesh resampler, order of the window)
ASSIGNMENT_SCHEMES = {
    'ngp' : ('nnb', 1),
    'cic' : ('cic', 2),
    'tsc' : ('tsc', 3),
    'pcs' : ('pcs', 4),
}

def _lookup(scheme):
    key = str(scheme).lower()
    if key not in ASSIGNMENT_SCHEMES:
        raise ValueError("unknown assignment scheme '%s'; valid choices are %s"
                % (scheme, ', '.join(sorted(ASSIGNMENT_SCHEMES))))
    return ASSIGNMENT_SCHEMES[key]

def scheme_order(scheme):
    """ The order of the assignment window, i.e. the number of cells it spans """
    return _lookup(scheme)[1]

def get_resampler(scheme):
    """ The :mod:`pmesh.window` resampler for an assignment scheme """
    from pmesh import window
    return window.methods[_lookup(scheme)[0]]

def slices_needed(scheme):
    """
    The number of extra cells needed on the left and on the right of a
    local slab to hold the contributions of particles owned by this rank.

    Returns
    -------
    left, right : int
        ``(p-1)//2`` and ``p//2`` for a window of order ``p``
    """
    p = scheme_order(scheme)
    return (p - 1) // 2, p // 2

def assign_particles_to_grid(pm, position, scheme='cic', shift=0.):
    """
    Paint particles of unit mass to a new :class:`pmesh.pm.RealField`,
    normalized to the density contrast :math:`1+\\delta`.

    This is a collective operation; particles may live on any rank, they are
    exchanged to the rank owning their grid region (plus ghost cells) while
    painting.

    .. note::

        The density field on the mesh is normalized as :math:`1+\\delta`,
        such that the collective mean of the field is unity.

    Parameters
    ----------
    pm : :class:`pmesh.pm.ParticleMesh`
        the mesh, of unit box size
    position : array_like, (N, ndim)
        the local particle positions, in ``[0, 1)``
    scheme : str
        the assignment scheme; one of 'ngp', 'cic', 'tsc', 'pcs'
    shift : float, optional
        shift all particles by this amount in units of the cell size, along
        every axis; the positions themselves are never modified

    Returns
    -------
    real : :class:`pmesh.pm.RealField`
        the painted field; the ``attrs`` dict stores the total number of
        particles ``N``, the mean number per cell ``num_per_cell`` and
        the ``shotnoise``, all in grid units
    """
    resampler = get_resampler(scheme)
    left, right = slices_needed(scheme)

    position = numpy.asarray(position)
    if position.ndim != 2 or position.shape[1] != pm.ndim:
        raise ValueError("position should have shape (N, %d); got %s" % (pm.ndim, str(position.shape)))

    real = pm.create(type='real', value=0)

    # ghost layers for the window; twice that when shifted
    if shift:
        smoothing = 1.0 * resampler.support
        transform = pm.affine.shift(shift)
    else:
        smoothing = 0.5 * resampler.support
        transform = None

    if pm.comm.rank == 0:
        logger.debug("painting with '%s' window, ghost cells %d + %d, shift %g" % (scheme, left, right, shift))

    # ensure the chunks are synced, since decomposition is collective
    Nlocal = len(position)
    Nlocalmax = max(pm.comm.allgather(Nlocal))

    chunksize = _global_options['paint_chunk_size']
    for i in range(0, Nlocalmax, chunksize):
        s = slice(i, i + chunksize)

        layout = pm.decompose(position[s], smoothing=smoothing)
        p = layout.exchange(position[s])
        pm.paint(p, mass=1.0, resampler=resampler, transform=transform, hold=True, out=real)

    N = pm.comm.allreduce(Nlocal)
    nbar = 1. * N / numpy.prod(pm.Nmesh)

    # make sure we painted something or nbar is nan; in which case
    # we set the density to uniform everywhere.
    if N == 0:
        warnings.warn(("trying to paint particles to mesh, "
                       "but no particles were found!"),
                        RuntimeWarning
                    )

    real.attrs = {}
    real.attrs['N'] = N
    real.attrs['num_per_cell'] = nbar
    real.attrs['shotnoise'] = 1. / N if N > 0 else 0.

    if pm.comm.rank == 0:
        logger.info("painted %d objects to mesh" % N)
        logger.info("mean particles per cell is %g", nbar)

    if nbar > 0:
        real[...] /= nbar
    else:
        real[...] = 1

    return real

def deconvolve_window(cfield, scheme):
    """
    Divide a :class:`pmesh.pm.ComplexField` in place by the Fourier transform
    of the assignment window,

    .. math::

        W(k) = \\prod_i \\left[ \\mathrm{sinc}\\left(\\frac{\\omega_i}{2}\\right) \\right]^p

    where :math:`\\omega_i \\in [-\\pi, \\pi)` is the circular frequency.

    .. note::
        see equation 18 of
        `Jing et al 2005 <https://arxiv.org/abs/astro-ph/0409240>`_

    Returns
    -------
    cfield : :class:`pmesh.pm.ComplexField`
        the input field
    """
    p = scheme_order(scheme)

    def compensate(w, v):
        for wi in w:
            v = v / numpy.sinc(0.5 * wi / numpy.pi) ** p
        return v

    return cfield.apply(compensate, kind='circular', out=Ellipsis)
