import numpy
import logging

from polykit import CurrentMPIComm
from polykit.mpirng import MPIRandomState

class ParticleCatalog(object):
    """
    The local share of a distributed particle set: positions in the unit box
    and, optionally, velocities.

    Parameters
    ----------
    position : array_like, (N, ndim)
        the local positions, in ``[0, 1)``
    velocity : array_like, (N, ndim), optional
        the local velocities
    comm : MPI Communicator, optional
        the MPI communicator instance; default (``None``) sets to the
        current communicator
    **kwargs :
        additional keywords to store as meta-data in :attr:`attrs`
    """
    logger = logging.getLogger('ParticleCatalog')

    @CurrentMPIComm.enable
    def __init__(self, position, velocity=None, comm=None, **kwargs):

        position = numpy.asarray(position)
        if position.ndim != 2:
            raise ValueError("position should be a 2d array of shape (N, ndim)")

        if velocity is not None:
            velocity = numpy.asarray(velocity)
            if velocity.shape != position.shape:
                raise ValueError("shape mismatch between position %s and velocity %s"
                                    % (str(position.shape), str(velocity.shape)))

        # verify the dimensions are the same
        ndims = comm.allgather(position.shape[1])
        if any(n != ndims[0] for n in ndims):
            raise ValueError("mismatch between the number of dimensions across ranks")

        self.comm = comm
        self.position = position
        self.velocity = velocity

        self.attrs = {}
        self.attrs.update(kwargs)

        self._csize = self.comm.allreduce(self.size)

    def __repr__(self):
        return "%s(size=%d, ndim=%d)" % (self.__class__.__name__, self.csize, self.ndim)

    def __len__(self):
        return self.size

    @property
    def size(self):
        """ The number of particles on the local rank """
        return len(self.position)

    @property
    def csize(self):
        """ The collective number of particles across all ranks """
        return self._csize

    @property
    def ndim(self):
        """ The number of dimensions """
        return self.position.shape[1]

    def redistribute(self, pm):
        """
        Return a new catalog with every particle moved to the rank that owns
        the region of ``pm`` the particle lies in. This is a collective
        operation.

        Parameters
        ----------
        pm : :class:`pmesh.pm.ParticleMesh`
            the mesh defining the domain decomposition

        Returns
        -------
        ParticleCatalog :
            the exchanged catalog
        """
        layout = pm.decompose(self.position, smoothing=0)
        position = layout.exchange(self.position)
        velocity = None
        if self.velocity is not None:
            velocity = layout.exchange(self.velocity)

        toret = ParticleCatalog(position, velocity, comm=self.comm, **self.attrs)
        if toret.csize != self.csize:
            raise RuntimeError("particles lost in the exchange: %d != %d" % (toret.csize, self.csize))
        return toret

    def gather(self, root=Ellipsis):
        """
        Gather the full particle set; with the default ``root=Ellipsis``
        every rank receives a copy.

        Returns
        -------
        ParticleCatalog :
            a catalog on :data:`mpi4py.MPI.COMM_SELF` holding the gathered
            particles, or None on ranks other than root
        """
        from mpi4py import MPI
        from polykit.utils import GatherArray

        position = GatherArray(self.position, self.comm, root=root)
        velocity = None
        if self.velocity is not None:
            velocity = GatherArray(self.velocity, self.comm, root=root)

        if root is not Ellipsis and self.comm.rank != root:
            return None
        return ParticleCatalog(position, velocity, comm=MPI.COMM_SELF, **self.attrs)

    @classmethod
    @CurrentMPIComm.enable
    def from_gadget(cls, path, ptype=1, comm=None):
        """
        Read a Gadget snapshot, splitting the particles evenly over the ranks.

        Positions are divided by the ``BoxSize`` of the header and wrapped
        into ``[0, 1)``; velocities are converted to peculiar velocities
        :math:`\\sqrt{a} v_\\mathrm{gadget}`, in km/s.

        Parameters
        ----------
        path : str
            the snapshot file
        ptype : int, optional
            the particle type to read
        """
        from polykit.io.gadget import Gadget1File

        f = Gadget1File(path, ptype=ptype)

        start = comm.rank * f.size // comm.size
        end   = (comm.rank + 1) * f.size // comm.size
        data = f.read(['Position', 'GadgetVelocity'], start, end)

        BoxSize = float(f.attrs['BoxSize'])
        a = float(f.attrs['Time'])

        position = (data['Position'].astype('f8') / BoxSize) % 1.0
        velocity = data['GadgetVelocity'].astype('f8') * a ** 0.5

        if comm.rank == 0:
            cls.logger.info("read %d particles of type %d from %s" % (f.size, ptype, path))

        return cls(position, velocity, comm=comm, BoxSize=BoxSize, Time=a, Redshift=float(f.attrs['Redshift']))

class UniformCatalog(ParticleCatalog):
    """
    A catalog with particles uniformly distributed in the unit box, and
    optionally uniform random velocities.

    The random numbers generated do not depend on the number of
    available ranks.

    Parameters
    ----------
    csize : int
        the collective number of particles
    ndim : int, optional
        the number of dimensions
    seed : int, optional
        the random seed
    velocity_scale : float, optional
        velocities are drawn uniformly from ``[-velocity_scale, velocity_scale)``;
        if zero, no velocities are generated
    comm :
        the MPI communicator
    """
    def __repr__(self):
        args = (self.csize, self.attrs['seed'])
        return "UniformCatalog(size=%d, seed=%s)" % args

    @CurrentMPIComm.enable
    def __init__(self, csize, ndim=3, seed=None, velocity_scale=0., comm=None):

        if csize <= 0:
            raise ValueError("no uniform particles generated, `csize` should be positive")

        # set the seed randomly if it is None
        if seed is None:
            if comm.rank == 0:
                seed = numpy.random.randint(0, 4294967295)
            seed = comm.bcast(seed)

        start = comm.rank * csize // comm.size
        end   = (comm.rank + 1) * csize // comm.size

        rng = MPIRandomState(comm, seed=seed, size=end - start)

        position = rng.uniform(itemshape=(ndim,))
        velocity = None
        if velocity_scale:
            velocity = rng.uniform(low=-velocity_scale, high=velocity_scale, itemshape=(ndim,))

        ParticleCatalog.__init__(self, position, velocity, comm=comm, seed=seed)
