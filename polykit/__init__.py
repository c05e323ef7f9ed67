from .version import __version__

from mpi4py import MPI

from contextlib import contextmanager
import functools
import logging
import time

# the global options, see set_options
_global_options = {
    'paint_chunk_size' : 1024 * 1024 * 4,
    'rng_chunk_size' : 100000,
    'direct_summation_chunk_size' : 4096,
}

class CurrentMPIComm(object):
    """
    The stack of default MPI communicators.

    Every collective operation in polykit takes a ``comm`` keyword; when it
    is None, the communicator on top of this stack is used. The bottom of
    the stack is ``MPI.COMM_WORLD``.
    """
    _stack = [MPI.COMM_WORLD]
    logger = logging.getLogger("CurrentMPIComm")

    @staticmethod
    def enable(func):
        """
        Decorator filling in the ``comm`` keyword of ``func`` with
        :func:`CurrentMPIComm.get` when it is missing or None.
        """
        @functools.wraps(func)
        def wrapped(*args, **kwargs):
            if kwargs.get('comm', None) is None:
                kwargs['comm'] = CurrentMPIComm.get()
            return func(*args, **kwargs)
        return wrapped

    @classmethod
    @contextmanager
    def enter(cls, comm):
        """
        Make ``comm`` the default communicator inside a ``with`` block.

        .. code:: python

            with CurrentMPIComm.enter(comm):
                cat = UniformCatalog(1000)

        is the same as ``UniformCatalog(1000, comm=comm)``.
        """
        cls.push(comm)
        try:
            yield comm
        finally:
            cls.pop()

    @classmethod
    def push(cls, comm):
        """ Make ``comm`` the default communicator, until :func:`pop` """
        comm.barrier()
        cls._stack.append(comm)
        if comm.rank == 0:
            cls.logger.debug("default communicator is now of size %d" % comm.size)

    @classmethod
    def pop(cls):
        """ Restore the previous default communicator """
        if len(cls._stack) == 1:
            raise RuntimeError("cannot pop the bottom communicator of the stack")
        comm = cls._stack.pop()
        comm.barrier()
        if cls._stack[-1].rank == 0:
            cls.logger.debug("default communicator restored to size %d" % cls._stack[-1].size)
        return comm

    @classmethod
    def get(cls):
        """ The default communicator """
        return cls._stack[-1]

class set_options(object):
    """
    Set global configuration options; all options are positive integers.

    This may be used as a context manager, which restores the previous
    values on exit, or as a plain function call.

    Parameters
    ----------
    paint_chunk_size : int
        the number of particles to paint at the same time
    rng_chunk_size : int
        the number of random numbers drawn from each seed of
        :class:`~polykit.mpirng.MPIRandomState`
    direct_summation_chunk_size : int
        the number of particles summed in one vectorized block by the
        direct summation power spectrum
    """
    def __init__(self, **kwargs):
        for key in sorted(kwargs):
            if key not in _global_options:
                raise KeyError("option `%s` is not supported; valid options are %s"
                                % (key, ', '.join(sorted(_global_options))))
            value = kwargs[key]
            if int(value) != value or value <= 0:
                raise ValueError("option `%s` should be a positive integer; got %s" % (key, str(value)))

        self.old = dict(_global_options)
        _global_options.update((key, int(kwargs[key])) for key in kwargs)

    def __enter__(self):
        return dict(_global_options)

    def __exit__(self, type, value, traceback):
        _global_options.clear()
        _global_options.update(self.old)

_logging_handler = None
_logging_levels = {
    "debug" : logging.DEBUG,
    "info" : logging.INFO,
    "warning" : logging.WARNING,
}

class _RankFormatter(logging.Formatter):
    # prefixes the elapsed time and the rank in the world communicator
    def __init__(self, t0):
        logging.Formatter.__init__(self,
                fmt='%(asctime)s %(name)-15s %(levelname)-8s %(message)s',
                datefmt='%m-%d %H:%M ')
        self.t0 = t0
        self.rank = MPI.COMM_WORLD.rank

    def format(self, record):
        prefix = '[ %09.2f ] % 3d: ' % (time.time() - self.t0, self.rank)
        return prefix + logging.Formatter.format(self, record)

def setup_logging(log_level="info"):
    """
    Send the log messages of all polykit loggers to the standard error,
    prefixed with the elapsed time and the MPI rank:

    .. code::

        [ 000000.43 ]   0: 06-28 14:49  FFTPower        INFO     Nmesh = 64

    Calling this again only changes the level.

    Parameters
    ----------
    log_level : 'info', 'debug', 'warning'
        messages below this level are ignored
    """
    global _logging_handler

    if log_level not in _logging_levels:
        raise ValueError("log level should be one of %s" % str(sorted(_logging_levels)))

    root = logging.getLogger()
    if _logging_handler is None:
        _logging_handler = logging.StreamHandler()
        _logging_handler.setFormatter(_RankFormatter(time.time()))
        root.addHandler(_logging_handler)

    root.setLevel(_logging_levels[log_level])
