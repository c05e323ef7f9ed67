import numpy
import os
import logging
import warnings

logger = logging.getLogger('Gadget')

# the 3 Mpl^2 H0 / (8 pi G) prefactor of the critical mass, in Msun/h, and c / H0 in Mpc/h
MplMpl_over_H0Msunh = 2.49264e21
HubbleLengthInMpch = 2997.92458

NTYPES = 6

# name, number of components, integer block, whether every type is in the block
GADGET_BLOCKS = [
    ('Position', 3, False, True),
    ('GadgetVelocity', 3, False, True),
    ('ID', 1, True, True),
    ('Mass', 1, False, False),
]

def _header_fields(byteorder):
    u4, i4, f8 = byteorder + 'u4', byteorder + 'i4', byteorder + 'f8'
    return [
        ('Npart', (u4, NTYPES)), ('Massarr', (f8, NTYPES)),
        ('Time', f8), ('Redshift', f8),
        ('FlagSfr', i4), ('FlagFeedback', i4),
        ('Nall', (u4, NTYPES)),
        ('FlagCooling', i4), ('NumFiles', i4),
        ('BoxSize', f8), ('Omega0', f8), ('OmegaLambda', f8), ('HubbleParam', f8),
        ('FlagAge', i4), ('FlagMetals', i4),
        ('NallHW', (u4, NTYPES)),
        ('flag_entr_ics', i4),
    ]

def _header_dtype(byteorder):
    """
    The dtype of the header record, including its record markers;
    the header is padded to 256 bytes.
    """
    header = numpy.dtype(_header_fields(byteorder))
    return numpy.dtype([('f77', byteorder + 'i4'),
                        ('header', header),
                        ('padding', 'u1', (256 - header.itemsize,)),
                        ('f77_end', byteorder + 'i4')])

def _detect_byteorder(path):
    # the first record marker holds the size of the header
    with open(path, 'rb') as ff:
        marker = ff.read(4)
    if len(marker) < 4:
        raise IOError("file `%s` is too short to be a Gadget snapshot" % path)

    for byteorder in '<>':
        if numpy.frombuffer(marker, dtype=byteorder + 'i4')[0] == 256:
            return byteorder
    raise IOError("`%s` does not start with a 256 byte Gadget header in either byte order" % path)

class Gadget1File(object):
    """
    A snapshot file of a Gadget 1/2/3 simulation.

    The file is a sequence of Fortran unformatted records: a 256 byte
    header followed by one block per column, each block listing the
    particles type by type. The byte order and the precision of each block
    are detected from the record markers.

    The columns are ``Position`` and ``GadgetVelocity`` (the Gadget
    velocity :math:`v_p / \\sqrt{a}`, in km/s), ``ID`` and ``Mass``. The
    mass block only stores the types without a mass in the header;
    the other types read the header value.

    Parameters
    ----------
    path : str
        the snapshot file
    ptype : int
        the particle type to read, 0 to 5

    References
    ----------
    https://wwwmpa.mpa-garching.mpg.de/gadget/users-guide.pdf
    """
    def __init__(self, path, ptype=1):

        if ptype not in range(NTYPES):
            raise ValueError("particle type should be between 0 and %d; got %s" % (NTYPES - 1, str(ptype)))

        self.path = path
        self.ptype = ptype
        self.byteorder = _detect_byteorder(path)

        record = numpy.fromfile(path, dtype=_header_dtype(self.byteorder), count=1)[0]
        if record['f77'] != record['f77_end']:
            raise IOError("header record markers of `%s` disagree: %d and %d"
                          % (path, record['f77'], record['f77_end']))

        header = record['header']
        self.attrs = dict((key, header[key].copy()) for key in header.dtype.names)
        self.size = int(header['Npart'][ptype])
        self.header_mass = float(header['Massarr'][ptype])

        self._scan(header)

    def _scan(self, header):
        # locate the blocks after the header, and the rows of ptype in them
        npart = header['Npart'].astype('i8')
        filesize = os.path.getsize(self.path)
        marker = numpy.dtype(self.byteorder + 'i4')

        fields = []
        self.offsets = {}
        ptr = 4 + 256 + 4
        with open(self.path, 'rb') as ff:
            for name, ncomp, integer, every_type in GADGET_BLOCKS:
                if every_type:
                    stored = numpy.ones(NTYPES, dtype=bool)
                else:
                    stored = header['Massarr'] == 0

                N = int(npart[stored].sum())
                before = int(npart[:self.ptype][stored[:self.ptype]].sum())

                itemsize = None
                if N > 0 and ptr < filesize:
                    ff.seek(ptr)
                    nbytes = int(numpy.fromfile(ff, dtype=marker, count=1)[0])
                    ff.seek(ptr + 4 + nbytes)
                    closing = int(numpy.fromfile(ff, dtype=marker, count=1)[0])
                    if nbytes != closing or nbytes % N != 0:
                        raise IOError("record markers of block `%s` disagree with %d particles: %d and %d"
                                      % (name, N, nbytes, closing))

                    itemsize = nbytes // N
                    self.offsets[name] = ptr + 4 + before * itemsize
                    ptr += 4 + nbytes + 4
                else:
                    self.offsets[name] = ptr

                if itemsize is None:
                    kind = 'i4' if integer else 'f8'
                    if not (name == 'Mass' and self.header_mass != 0) and stored[self.ptype]:
                        warnings.warn("block `%s` is missing from %s; assuming %s" % (name, self.path, kind))
                else:
                    kind = ('i%d' if integer else 'f%d') % (itemsize // ncomp)

                if stored[self.ptype] or name == 'Mass':
                    shape = (ncomp,) if ncomp > 1 else ()
                    fields.append((name, self.byteorder + kind, shape))

        self.dtype = numpy.dtype(fields)

    def __repr__(self):
        return "Gadget1File(path=%s, ptype=%d, size=%d)" % (self.path, self.ptype, self.size)

    @property
    def columns(self):
        """ The names of the columns in the file """
        return list(self.dtype.names)

    def read(self, columns, start, stop):
        """
        Read rows ``start`` to ``stop`` of one or more columns.

        Parameters
        ----------
        columns : str, list of str
            the column(s) to read
        start, stop : int
            the range of rows, between 0 and :attr:`size`

        Returns
        -------
        numpy.array
            a structured array of the columns, in native byte order
        """
        if isinstance(columns, str):
            columns = [columns]

        if not 0 <= start <= stop <= self.size:
            raise IndexError("rows %d to %d are out of the range of %d particles" % (start, stop, self.size))

        unknown = [col for col in columns if col not in self.dtype.names]
        if unknown:
            raise ValueError("columns %s not in Gadget file; valid columns are %s"
                             % (str(unknown), str(self.columns)))

        native = [(col, self.dtype[col].base.newbyteorder('='), self.dtype[col].shape) for col in columns]
        toret = numpy.empty(stop - start, dtype=native)

        with open(self.path, 'rb') as ff:
            for col in columns:
                if col == 'Mass' and self.header_mass != 0:
                    toret[col] = self.header_mass
                    continue
                itemtype = self.dtype[col]
                ff.seek(self.offsets[col] + start * itemtype.itemsize)
                toret[col] = numpy.fromfile(ff, dtype=itemtype, count=stop - start)

        return toret

def particle_mass(BoxSize, OmegaM, npart_total):
    """
    The mass of a dark matter particle in units of :math:`10^{10} M_\\odot/h`,
    for a box of side ``BoxSize`` in Mpc/h.
    """
    total = 3.0 * OmegaM * MplMpl_over_H0Msunh * (BoxSize / HubbleLengthInMpch)**3
    return total / npart_total / 1e10

def _write_record(ff, data):
    data = numpy.ascontiguousarray(data)
    marker = numpy.array([data.nbytes], dtype='i4')
    for chunk in (marker, data, marker):
        chunk.tofile(ff)

def write_gadget(path, position, velocity, ids, BoxSize, aexp, OmegaM, OmegaLambda, HubbleParam,
                    npart_total=None, num_files=1):
    """
    Write a Gadget 1 snapshot file of dark matter particles (type 1), in
    native byte order and single precision.

    Parameters
    ----------
    path : str
        the output file
    position : array_like, (N, 3)
        the positions, in the units of ``BoxSize``
    velocity : array_like, (N, 3)
        the Gadget velocities, :math:`v_p / \\sqrt{a}` in km/s
    ids : array_like, (N,)
        the particle IDs
    BoxSize : float
        the box size in Mpc/h
    aexp : float
        the scale factor
    OmegaM, OmegaLambda, HubbleParam : float
        the cosmological parameters stored in the header
    npart_total : int, optional
        the number of particles in all files; default is ``N``
    num_files : int, optional
        the number of files of the snapshot
    """
    position = numpy.asarray(position, dtype='f4')
    velocity = numpy.asarray(velocity, dtype='f4')
    ids = numpy.asarray(ids)

    N = len(position)
    if position.shape != (N, 3) or velocity.shape != (N, 3) or ids.shape != (N,):
        raise ValueError("Gadget files hold 3d data; position and velocity should be (N, 3) and ids (N,)")

    npart_total = N if npart_total is None else int(npart_total)
    if npart_total < max(N, 1):
        raise ValueError("total number of particles should be at least the number in this file")

    # 64 bit IDs once they do not fit in 32 bits
    ids = ids.astype('i8' if npart_total >= 2**31 else 'i4')

    record = numpy.zeros(1, dtype=_header_dtype('='))
    record['f77'] = record['f77_end'] = 256

    header = record['header']
    header['Npart'][0, 1] = N
    header['Nall'][0, 1] = npart_total % 2**32
    header['NallHW'][0, 1] = npart_total // 2**32
    header['Massarr'][0, 1] = particle_mass(BoxSize, OmegaM, npart_total)
    header['Time'] = aexp
    header['Redshift'] = 1.0 / aexp - 1.0
    header['NumFiles'] = num_files
    header['BoxSize'] = BoxSize
    header['Omega0'] = OmegaM
    header['OmegaLambda'] = OmegaLambda
    header['HubbleParam'] = HubbleParam

    with open(path, 'wb') as ff:
        record.tofile(ff)
        for block in (position, velocity, ids):
            _write_record(ff, block)

    logger.info("wrote %d particles to %s" % (N, path))
