import numpy
from polykit import CurrentMPIComm

@CurrentMPIComm.enable
def make_mesh(Nmesh, ndim=3, comm=None):
    """
    Create a :class:`pmesh.pm.ParticleMesh` with ``Nmesh`` cells per side in
    a periodic box of unit side length.

    In these grid units the fundamental wavenumber is :math:`2\\pi` and
    the Nyquist wavenumber is :math:`\\pi N_\\mathrm{mesh}`.

    Parameters
    ----------
    Nmesh : int
        the number of cells per side
    ndim : int, optional
        the number of dimensions
    comm : MPI communicator
        the communicator
    """
    from pmesh.pm import ParticleMesh

    if int(Nmesh) != Nmesh or Nmesh <= 0:
        raise ValueError("grid size should be a positive integer; got %s" % str(Nmesh))
    if ndim not in (2, 3):
        raise ValueError("only 2 and 3 dimensional grids are supported; got ndim = %s" % str(ndim))

    return ParticleMesh(Nmesh=[int(Nmesh)] * ndim, BoxSize=1.0, dtype='f8', comm=comm)

class MeshSlab(object):
    """
    One plane of a coordinate mesh, taken at a fixed position along ``axis``.

    The coordinates of the plane are kept in a broadcastable form: for a
    3D mesh iterated along axis 0, ``coords(0)`` is a (1, 1) array holding
    the constant value of the slab, while ``coords(1)`` and ``coords(2)``
    have shapes (Ny, 1) and (1, Nz).

    Parameters
    ----------
    islab : int
        the position of the slab along ``axis``
    coords : list of arrays
        the coordinate arrays of the whole local mesh, see :func:`SlabIterator`
    axis : int
        the axis the slab is taken along
    symmetry_axis : int, None
        the axis compressed by Hermitian symmetry, or None for a full mesh
    """
    def __init__(self, islab, coords, axis, symmetry_axis):
        self.ndim = len(coords)
        self.axis = axis
        self.symmetry_axis = symmetry_axis
        self._islab = islab

        if symmetry_axis is not None and symmetry_axis < 0:
            raise ValueError("symmetry axis of a slab should be non-negative")

        # drop the iteration axis from every coordinate array
        self._planes = []
        for d, x in enumerate(coords):
            at = islab if d == axis else 0
            self._planes.append(numpy.take(x, at, axis=axis))

        self.shape = tuple(numpy.shape(x)[d] for d, x in enumerate(coords) if d != axis)

    def __repr__(self):
        return "<MeshSlab: axis=%d, index=%d>" % (self.axis, self._islab)

    __str__ = __repr__

    @property
    def index(self):
        """ The tuple selecting this slab out of the local mesh array """
        sel = [slice(None)] * self.ndim
        sel[self.axis] = self._islab
        return tuple(sel)

    @property
    def hermitian_symmetric(self):
        return self.symmetry_axis is not None

    def coords(self, i):
        """
        The coordinate along dimension ``i`` on the slab, as an array
        that broadcasts against :attr:`shape`.
        """
        if not -self.ndim <= i < self.ndim:
            raise ValueError("dimension index should be between 0 and %d" % self.ndim)
        return self._planes[i]

    def norm2(self):
        """ The squared wavevector norm, with the shape of the slab """
        k2 = numpy.zeros(self.shape)
        for x in self._planes:
            k2 = k2 + x ** 2
        return k2

    def norm(self):
        return numpy.sqrt(self.norm2())

    def mu(self, los):
        """
        The cosine of the angle between each wavevector of the slab and the
        unit vector ``los``. The zero mode has no direction, and is given
        a cosine of 0.
        """
        kpar = numpy.zeros(self.shape)
        for x, l in zip(self._planes, los):
            kpar = kpar + x * l

        k = self.norm()
        with numpy.errstate(invalid='ignore', divide='ignore'):
            return numpy.where(k > 0, kpar / k, 0.)

    @property
    def nonsingular(self):
        """
        Boolean mask of the modes whose conjugate partner is not stored.

        On a compressed mesh these are the modes with a positive coordinate
        along the symmetry axis; the zero and Nyquist planes hold both
        members of each conjugate pair, since :mod:`pmesh` stores the Nyquist
        frequency as negative.
        """
        if not hasattr(self, '_nonsingular'):
            mask = numpy.zeros(self.shape, dtype=bool)
            if self.hermitian_symmetric:
                mask |= self._planes[self.symmetry_axis] > 0
            self._nonsingular = mask
        return self._nonsingular

    @property
    def hermitian_weights(self):
        """
        The number of modes of the full mesh each stored mode stands for:
        2 on the nonsingular modes, 1 elsewhere.
        """
        if not hasattr(self, '_weights'):
            self._weights = 1. + self.nonsingular
        return self._weights

def _check_coords(coords):
    # a coordinate mesh of shape (Nx, Ny, Nz) is given as arrays of
    # shapes (Nx, 1, 1), (1, Ny, 1) and (1, 1, Nz)
    ndim = len(coords)
    for d, x in enumerate(coords):
        shape = numpy.shape(x)
        ok = len(shape) == ndim and all(n == 1 for i, n in enumerate(shape) if i != d)
        if not ok:
            raise ValueError("coordinate arrays of shapes %s do not form a mesh"
                             % str([numpy.shape(x) for x in coords]))

def SlabIterator(coords, axis=0, symmetry_axis=None):
    """
    Walk through a coordinate mesh one :class:`MeshSlab` at a time.

    Parameters
    ----------
    coords : list of arrays
        the coordinate arrays of the mesh, e.g. ``field.x``; each array has
        length one along every dimension but its own
    axis : int, optional
        the axis to walk along
    symmetry_axis : int, optional
        the axis compressed by Hermitian symmetry, if any
    """
    ndim = len(coords)
    if ndim < 2:
        raise NotImplementedError("slabs are only defined for meshes of 2 or more dimensions")

    if not -ndim <= axis < ndim:
        raise ValueError("axis should be between 0 and %d" % ndim)
    axis = axis % ndim
    if symmetry_axis is not None:
        symmetry_axis = symmetry_axis % ndim

    _check_coords(coords)

    for islab in range(numpy.shape(coords[axis])[axis]):
        yield MeshSlab(islab, coords, axis, symmetry_axis)

def fourier_slabs(cfield):
    """
    Iterate over the local slabs of a :class:`pmesh.pm.ComplexField`, whose
    last axis is compressed by Hermitian symmetry.

    Yields
    ------
    slab : MeshSlab
        the wavevectors and Hermitian weights of the slab
    value : array_like
        a writable view of the field on the slab
    """
    for slab in SlabIterator(cfield.x, axis=0, symmetry_axis=-1):
        yield slab, cfield.value[slab.index]
