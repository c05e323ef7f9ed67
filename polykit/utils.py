import numpy
from mpi4py import MPI
import json

def _check_gatherable(data, comm):
    # the dtype and the item shape must agree on all ranks
    if not isinstance(data, numpy.ndarray):
        raise ValueError("only numpy arrays can be gathered; got %s" % type(data).__name__)

    shapes = comm.allgather(data.shape[1:])
    dtypes = comm.allgather(data.dtype)

    if any(dt.hasobject or dt.names is not None for dt in dtypes):
        raise ValueError("structured and object data types cannot be gathered")
    if any(s != shapes[0] for s in shapes[1:]):
        raise ValueError("mismatch between the item shapes across ranks: %s" % str(shapes))
    if any(dt != dtypes[0] for dt in dtypes[1:]):
        raise ValueError("mismatch between the data types across ranks: %s" % str(dtypes))

def GatherArray(data, comm, root=0):
    """
    Gather the rows of ``data`` from all ranks, in rank order.

    The rows are sent as a contiguous MPI byte type, which avoids pickling
    and the 2 GB limit on the number of elements of a single message.

    Parameters
    ----------
    data : numpy.ndarray
        the local rows; the dtype and ``shape[1:]`` must match across ranks
    comm : MPI communicator
        the communicator
    root : int, or Ellipsis
        the rank receiving the result; with Ellipsis, all ranks receive it

    Returns
    -------
    numpy.ndarray, None :
        the gathered rows on the receiving ranks, None elsewhere
    """
    _check_gatherable(data, comm)
    data = numpy.ascontiguousarray(data)

    counts = numpy.array(comm.allgather(len(data)), dtype='intp')
    offsets = numpy.concatenate([[0], counts.cumsum()[:-1]])

    receiving = root is Ellipsis or comm.rank == root
    if receiving:
        recvbuffer = numpy.empty((counts.sum(),) + data.shape[1:], dtype=data.dtype)
    else:
        recvbuffer = None

    # one row of data is one element of the MPI type
    rowsize = data.dtype.itemsize * int(numpy.prod(data.shape[1:], dtype='intp'))
    dt = MPI.BYTE.Create_contiguous(rowsize).Commit()
    try:
        if root is Ellipsis:
            comm.Allgatherv([data, dt], [recvbuffer, (counts, offsets), dt])
        else:
            comm.Gatherv([data, dt], [recvbuffer, (counts, offsets), dt], root=root)
    finally:
        dt.Free()

    return recvbuffer

class JSONEncoder(json.JSONEncoder):
    """
    A :class:`json.JSONEncoder` that also handles numpy arrays, numpy scalars
    and complex values; :class:`JSONDecoder` reverses the encoding.
    """
    def default(self, obj):
        if isinstance(obj, numpy.ndarray):
            return {'__dtype__' : obj.dtype.str, '__shape__' : obj.shape, '__data__' : obj.tolist()}

        if isinstance(obj, (complex, numpy.complexfloating)):
            return {'__complex__' : [obj.real, obj.imag]}

        # numpy scalars are not json serializable
        if isinstance(obj, numpy.generic):
            return obj.item()

        return json.JSONEncoder.default(self, obj)

class JSONDecoder(json.JSONDecoder):
    """
    A :class:`json.JSONDecoder` for the output of :class:`JSONEncoder`
    """
    @staticmethod
    def hook(value):
        if '__dtype__' in value:
            d = numpy.array(value['__data__'], dtype=value['__dtype__'])
            return d.reshape(value['__shape__'])

        if '__complex__' in value:
            real, imag = value['__complex__']
            return complex(real, imag)

        return value

    def __init__(self, *args, **kwargs):
        kwargs['object_hook'] = JSONDecoder.hook
        json.JSONDecoder.__init__(self, *args, **kwargs)

def timer(start, end):
    """
    The elapsed time between ``start`` and ``end``, in seconds, as a
    ``hours:minutes:seconds`` string.
    """
    minutes, seconds = divmod(end - start, 60)
    hours, minutes = divmod(int(minutes), 60)
    return "%02d:%02d:%05.2f" % (hours, minutes, seconds)
