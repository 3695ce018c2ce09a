#!/usr/bin/env python
"""Tools for reading values from binary buffers

See Also
--------
:py:mod:`struct`
    Binary data structures in Python
"""
import numpy
import struct
from collections import namedtuple

class BinaryParserFactory(object):
    """Parser factory for different types of binary records.

    Creates parsers that unpack byte buffers into :class:`~collections.namedtuple`
    instances that match field names to values. These parsers are most useful as
    components of binary file readers. Byte strings in the unpacked record are
    decoded to :class:`str`.

    Attributes
    ----------
    name : str
        Human-readable name for parser

    fmt : str
        String specifying binary format of data, as specified in :py:mod:`struct`

    fields : list
        List of strings specifying variable names to bind to data
        when unpacked from a binary file, in same order as items in ``fmt``

    nt : :class:`~collections.namedtuple`
        A :class:`~collections.namedtuple` class that will provide names
        to the unpacked data


    Examples
    --------
    A binary RGB color parser::

        >>> ColorParser = BinaryParserFactory("ColorParser","3B",["r","g","b"])
        >>> ColorParser(b"\\xff\\x00\\x34")
        ColorParser(r=255, g=0, b=52)

        >>> ColorParser(b"\\x00\\x00\\x00\\xff\\x00\\x34",offset=3)
        ColorParser(r=255, g=0, b=52)


    See Also
    --------
    struct
        For information on format strings
    """

    def __init__(self,name,fmt,fields):
        """Create a |BinaryParserFactory|

        Parameters
        ----------
        name : str
            Name for parser

        fmt : str
            String specifying binary format of data. See :py:mod:`struct`

        fields : list
            Ordered list of field names to bind to data unpacked from binary file
        """
        self.name   = name
        self.fmt    = fmt
        self.fields = fields
        self.nt = namedtuple(name,fields)

    def __str__(self):
        return "<%s fmt='%s' fields='%s'>" % (self.name,self.fmt,",".join(self.fields))

    def __repr__(self):
        return str(self)

    def __call__(self,buf,offset=0,byte_order="<"):
        """Parse data from `buf`, starting at `offset`, into a named tuple

        Parameters
        ----------
        buf : bytes, bytearray, or memoryview
            Binary data

        offset : int, optional
            Position in `buf` at which the record starts (Default: `0`)

        byte_order : str
            Character indicating endian-ness of data (default: `'<'` for little-endian)

        Returns
        -------
        namedtuple
            Named tuple of type `self.nt`, mapping field names from
            `self.fields` to their values

        Raises
        ------
        struct.error
            If `buf` holds fewer than :meth:`calcsize` bytes after `offset`
        """
        size = self.calcsize(byte_order)
        if offset < 0 or offset + size > len(buf):
            raise struct.error("%s needs %s bytes at offset %s, but buffer holds only %s" % (self.name,
                                                                                             size,
                                                                                             offset,
                                                                                             len(buf)))

        values = list(struct.unpack_from(byte_order+self.fmt,buf,offset))
        for n, v in enumerate(values):
            if isinstance(v,bytes):
                # convert byte objects to strings
                values[n] = v.decode("ascii")

        return self.nt._make(values)

    def calcsize(self,byte_order="<"):
        """Return calculated size, in bytes, of record

        Parameters
        ----------
        byte_order : str
            Character indicating endian-ness of data (default: `'<'` for little-endian)

        Returns
        -------
        int
            Calculated size of record, in bytes
        """
        return struct.calcsize(byte_order+self.fmt)


def find_null_bytes(inp,null=b"\x00"):
    """Find positions of every null byte in `inp`

    Parameters
    ----------
    inp : bytes
        Byte string to search

    null : bytes, optional
        Single byte to search for (Default: `b'\\x00'`)

    Returns
    -------
    :py:class:`numpy.ndarray`
        Sorted integer positions of `null` in `inp`
    """
    if len(inp) == 0:
        return numpy.zeros(0,dtype=int)

    arr = numpy.frombuffer(inp,dtype=numpy.uint8)
    return numpy.flatnonzero(arr == ord(null)).astype(int)
