import numpy

class FourierFilter(object):
    """
    Base class of the low-pass filters, defined in Fourier space.

    Subclasses implement :func:`filter`, which follows the signature of
    :func:`pmesh.pm.ComplexField.apply` with ``kind='wavenumber'``.
    """
    kind = 'wavenumber'
    mode = 'complex'

    def __init__(self, r):
        """
            Parameters
            ----------
            r : float
                the smoothing scale, in units of the box size
        """
        self.r = r

    def __repr__(self):
        return "%s(r=%g)" % (self.__class__.__name__, self.r)

    def filter(self, k, v):
        raise NotImplementedError

    def apply(self, cfield):
        """ Multiply a :class:`pmesh.pm.ComplexField` by the filter, in place """
        return cfield.apply(self.filter, kind=self.kind, out=Ellipsis)

class TopHat(FourierFilter):
    """ A TopHat filter defined in Fourier space; the transform of a
        sphere in 3D and of a disk in 2D.

        Notes
        -----
        A fourier space filter is different from a configuration space
        filter. The TopHat in fourier space creates ringing effects
        due to the truncation / discretization of modes.

    """
    def filter(self, k, v):
        ndim = len(k)
        if ndim not in (2, 3):
            raise ValueError("TopHat filter is only defined in 2 and 3 dimensions; got %d" % ndim)

        k = sum(ki ** 2 for ki in k) ** 0.5
        kr = numpy.asarray(k * self.r, dtype='f8')

        small = kr < 1e-5
        kr = numpy.where(small, 1.0, kr)
        if ndim == 3:
            w = 3 * (numpy.sin(kr) - kr * numpy.cos(kr)) / kr ** 3
        else:
            w = 2 * (1 - numpy.cos(kr)) / kr ** 2
        w[small] = 1.0
        return w * v

class Gaussian(FourierFilter):
    """ A gaussian filter

        .. math ::

            G(k) = exp(-0.5 k^2 r^2)

    """
    def filter(self, k, v):
        r = self.r
        k2 = sum(ki ** 2 for ki in k)
        return numpy.exp(- 0.5 * k2 * r**2) * v

class SharpK(FourierFilter):
    """ A sharp cut in Fourier space, keeping the modes with :math:`kr < 1` """
    def filter(self, k, v):
        k = sum(ki ** 2 for ki in k) ** 0.5
        return (k * self.r < 1.0) * v

FILTERS = {
    'tophat' : TopHat,
    'gaussian' : Gaussian,
    'sharpk' : SharpK,
}

def smoothing_filter_fourier_space(cfield, smoothing_scale, smoothing_method):
    """
    Smooth a Fourier space field in place with a low-pass filter.

    Parameters
    ----------
    cfield : :class:`pmesh.pm.ComplexField`
        the field
    smoothing_scale : float
        the smoothing radius, in units of the box size
    smoothing_method : str
        one of 'sharpk', 'gaussian' or 'tophat'; the tophat filter is
        only available in 2 and 3 dimensions
    """
    if smoothing_method not in FILTERS:
        raise ValueError("unknown filter '%s'; options are %s" % (smoothing_method, ', '.join(sorted(FILTERS))))

    ndim = len(cfield.x)
    if smoothing_method == 'tophat' and ndim not in (2, 3):
        raise ValueError("TopHat filter is only defined in 2 and 3 dimensions; got %d" % ndim)

    return FILTERS[smoothing_method](smoothing_scale).apply(cfield)
