#!/usr/bin/env python
"""|BigBedReader|, an asynchronous reader for `BigBed`_ files held on local disk
or on remote servers that honor HTTP `Range` requests. `BigBed`_ files are
binary, indexed, and randomly-accessible, so records overlapping a region of
interest can be fetched without downloading the whole file:

    - A reader first fetches the file header, and from it decodes the
      chromosome B+ tree (a |ContigCatalog|) and the R tree index (an |RTree|).
      These are fetched once, in the background, and shared by all queries.

    - Each query searches the |RTree| for data blocks overlapping the region,
      fetches the smallest byte range covering all of them in one request,
      inflates each block, and keeps only the records that overlap the region.


Examples
--------
Fetch features overlapping a region. Coordinates of the query are 0-indexed
and closed (both `start` and `stop` are included)::

    >>> async def main():
    >>>     async with open_bigbed("https://example.org/ensGene.bb") as reader:
    >>>         records = await reader.get_features_in_range("chr17",7512444,7512484)
    >>>         for record in records:
    >>>             print(record.as_bed())
    >>>
    >>> asyncio.run(main())


Iterate over all features in a `BigBed`_ file::

    >>> async for record in reader:
    >>>     pass # do something with each record


Queries issued before the index is ready wait for it, and queries issued
together run their I/O concurrently::

    >>> results = await asyncio.gather(reader.get_features_in_range("chrI",0,5000),
    >>>                                reader.get_features_in_range("chrII",0,5000))


See also
--------
:mod:`bbfetch.readers.bbi`
    Decoders for the binary structures inside `BigBed`_ files

`Kent2010 <http://dx.doi.org/10.1093/bioinformatics/btq351>`_
    Description of BigBed and BigWig formats. Especially see supplemental data.
"""
import asyncio
import struct
import warnings
from collections import OrderedDict, namedtuple
from bbfetch.readers.bbi import decode_header, walk_chromosome_tree, decode_r_tree, \
                                decode_r_tree_header, decode_record_block, inflate_block, \
                                RTreeLeaf, DEFAULT_NAME
from bbfetch.util.async_cell import AsyncCell
from bbfetch.util.io.filters import NullWriter
from bbfetch.util.io.sources import open_source
from bbfetch.util.services.exceptions import DecodeError, TransportError, UnknownContigError, \
                                             FileFormatWarning, DataWarning

DEFAULT_HEADER_SIZE = 64*1024
"""Number of bytes fetched from the start of a file to read its header"""

DEFAULT_INDEX_FALLBACK_SIZE = 4096
"""Number of bytes fetched for the R tree index of files without zoom levels"""


#===============================================================================
# INDEX: Value types
#===============================================================================

class Record(namedtuple("Record",["contig","start","stop","rest"])):
    """Feature read from a `BigBed`_ file

    Attributes
    ----------
    contig : str
        Name of contig or chromosome

    start : int
        0-indexed start of feature

    stop : int
        0-indexed, half-open end of feature

    rest : str
        Remaining columns of the BED line, tab-delimited and undecoded
    """
    __slots__ = ()

    @property
    def fields(self):
        """Remaining columns, split on tabs"""
        return self.rest.split("\t") if self.rest else []

    def as_bed(self):
        """Format as a line of `BED`_ text, without line terminator

        Returns
        -------
        str
        """
        return "\t".join([self.contig,str(self.start),str(self.stop)] + self.fields)


ContigInterval = namedtuple("ContigInterval",["chrom_id","start","stop"])
"""Query region. Both `start` and `stop` are included"""


class ByteRange(namedtuple("ByteRange",["start","end"])):
    """Half-open range of positions in a file"""
    __slots__ = ()

    @property
    def length(self):
        return self.end - self.start


#===============================================================================
# INDEX: ContigCatalog
#===============================================================================

class ContigCatalog(object):
    """Bidirectional mapping between contig names and the integer IDs used
    inside a `BigBed`_ file, decoded from its chromosome B+ tree.

    Name lookups are case-sensitive, but a leading ``'chr'`` is optional:
    if `name` is not found, ``'chr' + name`` is tried.

    Attributes
    ----------
    chrom_name_id : OrderedDict
        Dictionary mapping contig names to IDs

    chrom_sizes : OrderedDict
        Dictionary mapping contig names to sizes, in base pairs
    """

    def __init__(self,entries):
        """Create a |ContigCatalog|

        Parameters
        ----------
        entries : iterable
            Tuples of `(name, chrom_id)` or `(name, chrom_id, chrom_size)`,
            e.g. from :func:`~bbfetch.readers.bbi.walk_chromosome_tree`
        """
        self.chrom_name_id  = OrderedDict()
        self.chrom_sizes    = OrderedDict()
        self._chrom_id_name = None
        for entry in entries:
            name, chrom_id = entry[0], entry[1]
            self.chrom_name_id[name] = chrom_id
            if len(entry) > 2:
                self.chrom_sizes[name] = entry[2]

    @classmethod
    def from_mapping(cls,mapping):
        """Create a |ContigCatalog| from a dictionary mapping names to IDs"""
        return cls(mapping.items())

    def __str__(self):
        return "<%s contigs=%s>" % (self.__class__.__name__,len(self))

    def __repr__(self):
        return str(self)

    def __len__(self):
        return len(self.chrom_name_id)

    def __iter__(self):
        return iter(self.chrom_name_id)

    def __contains__(self,name):
        return self.id_for(name) is not None

    @property
    def names(self):
        """List of contig names, in tree order"""
        return list(self.chrom_name_id)

    @property
    def chrom_id_name(self):
        """Dictionary mapping contig IDs to names. Built on first use.
        Entries with IDs that are not non-negative integers are skipped."""
        if self._chrom_id_name is None:
            dtmp = {}
            for name, chrom_id in self.chrom_name_id.items():
                if isinstance(chrom_id,int) and not isinstance(chrom_id,bool) and chrom_id >= 0:
                    dtmp[chrom_id] = name
                else:
                    warnings.warn("Skipping contig '%s' with invalid ID '%s'." % (name,chrom_id),DataWarning)

            self._chrom_id_name = dtmp

        return self._chrom_id_name

    def id_for(self,name):
        """Return the ID of contig `name`, or of ``'chr' + name``

        Parameters
        ----------
        name : str
            Contig name

        Returns
        -------
        int or None
            Contig ID, or `None` if neither name is present
        """
        chrom_id = self.chrom_name_id.get(name)
        if chrom_id is None:
            chrom_id = self.chrom_name_id.get("chr" + name)

        return chrom_id

    def name_for(self,chrom_id):
        """Return the name of the contig with ID `chrom_id`, or `None` if unknown"""
        return self.chrom_id_name.get(chrom_id)


#===============================================================================
# INDEX: R tree search
#===============================================================================

def tuple_range_overlaps(range1,range2):
    """Determine whether two closed ranges of tuples overlap, under lexicographic
    ordering of tuples. Empty ranges (whose start follows their end) overlap
    nothing.

    Parameters
    ----------
    range1, range2 : tuple
        Pairs of `(start, end)` tuples, e.g. ``((chrom_id, base), (chrom_id, base))``

    Returns
    -------
    bool
    """
    return range1[0] <= range2[1] and range2[0] <= range1[1] \
           and range1[0] <= range1[1] and range2[0] <= range2[1]


class RTree(object):
    """In-memory R tree, which indexes genomic coordinates to the positions
    of data blocks in a `BigBed`_ file.

    Node bounds are compared as ranges of `(chrom_id, base)` tuples, so that
    nodes spanning several contigs are handled without special cases.

    Attributes
    ----------
    root : |RTreeInternal|
        Root node

    header : namedtuple or None
        R tree header, if given
    """

    def __init__(self,root,header=None):
        self.root   = root
        self.header = header

    def __str__(self):
        return "<%s leaves=%s>" % (self.__class__.__name__,len(self))

    def __repr__(self):
        return str(self)

    def __len__(self):
        return sum(1 for _ in self)

    @staticmethod
    def node_range(node):
        return ((node.start_chrom_id,node.start_base),(node.end_chrom_id,node.end_base))

    @staticmethod
    def node_overlaps_roi(node,query_range):
        """Determines whether or not an |RTree| node overlaps a range of
        `(chrom_id, base)` tuples"""
        return tuple_range_overlaps(RTree.node_range(node),query_range)

    def find_overlapping(self,query):
        """Find leaves whose data blocks might hold records overlapping `query`

        Parameters
        ----------
        query : |ContigInterval|
            Region of interest

        Returns
        -------
        list
            |RTreeLeaf| objects, in file order. Empty if no blocks overlap
        """
        query_range = ((query.chrom_id,query.start),(query.chrom_id,query.stop))
        ltmp = []
        if not self.node_overlaps_roi(self.root,query_range):
            return ltmp

        stack = [self.root]
        while len(stack) > 0:
            node = stack.pop()
            if isinstance(node,RTreeLeaf):
                ltmp.append(node)
            else:
                stack.extend(reversed([X for X in node.children if self.node_overlaps_roi(X,query_range)]))

        return ltmp

    def __iter__(self):
        """Iterate over all leaves, in file order"""
        stack = [self.root]
        while len(stack) > 0:
            node = stack.pop()
            if isinstance(node,RTreeLeaf):
                yield node
            else:
                stack.extend(reversed(node.children))


def plan_fetch(leaves):
    """Find the smallest byte range covering the data blocks of all `leaves`,
    so that they may be fetched in a single request

    Parameters
    ----------
    leaves : list
        |RTreeLeaf| objects

    Returns
    -------
    |ByteRange|
    """
    if len(leaves) == 0:
        raise ValueError("Cannot plan a fetch for zero blocks.")

    return ByteRange(min(X.data_offset for X in leaves),
                     max(X.data_offset + X.data_size for X in leaves))


#===============================================================================
# INDEX: Record extraction
#===============================================================================

def read_block(buf,byte_range,leaf,compressed=True,filename=DEFAULT_NAME):
    """Slice, inflate, and decode the data block of `leaf` from a fetched region

    Parameters
    ----------
    buf : bytes
        Bytes fetched from the file

    byte_range : |ByteRange|
        Position of `buf` in the file

    leaf : |RTreeLeaf|
        Leaf pointing to the block

    compressed : bool, optional
        Whether blocks are compressed (Default: `True`)

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    list
        |BedEntry| objects in the block
    """
    block_offset = leaf.data_offset - byte_range.start
    block_limit  = block_offset + leaf.data_size
    if block_offset < 0 or block_limit > len(buf):
        raise DecodeError(filename,
                          "Block of %s bytes at offset %s lies outside the %s bytes fetched at offset %s." % (leaf.data_size,
                                                                                                           leaf.data_offset,
                                                                                                           len(buf),
                                                                                                           byte_range.start),
                          stage="record block")

    inflated = inflate_block(buf[block_offset:block_limit],compressed=compressed,filename=filename)
    return decode_record_block(inflated,filename)

def _to_record(entry,catalog,filename):
    contig = catalog.name_for(entry.chrom_id)
    if contig is None:
        raise DecodeError(filename,"Record refers to unknown contig ID %s." % entry.chrom_id,stage="record block")

    return Record(contig,entry.start,entry.stop,entry.rest)

def extract_features_in_range(buf,byte_range,leaves,query,catalog,compressed=True,filename=DEFAULT_NAME):
    """Decode the blocks of `leaves` from a fetched region, and return the records
    that overlap `query`.

    Records are stored half-open, while `query` is closed, so a record
    overlaps if ``record.start <= query.stop`` and ``record.stop - 1 >= query.start``.
    Records outside the query are dropped, as blocks routinely hold records
    beyond its bounds.

    Parameters
    ----------
    buf : bytes
        Bytes fetched from the file

    byte_range : |ByteRange|
        Position of `buf` in the file

    leaves : list
        |RTreeLeaf| objects whose blocks lie within `buf`

    query : |ContigInterval|
        Region of interest

    catalog : |ContigCatalog|
        Catalog used to name contigs

    compressed : bool, optional
        Whether blocks are compressed (Default: `True`)

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    list
        |Record| objects overlapping `query`
    """
    ltmp = []
    for leaf in leaves:
        for entry in read_block(buf,byte_range,leaf,compressed=compressed,filename=filename):
            if entry.chrom_id == query.chrom_id \
               and entry.start <= query.stop \
               and entry.stop - 1 >= query.start:
                ltmp.append(_to_record(entry,catalog,filename))

    return ltmp


#===============================================================================
# INDEX: BigBedReader
#===============================================================================

class BigBedReader(object):
    """Asynchronous reader for `BigBed`_ files, fetching only the byte ranges
    each query needs.

    On construction inside a running event loop, the reader begins fetching and
    decoding, in the background, the file header, and after it the chromosome
    B+ tree and R tree index. Outside a running loop, these start on first use.
    Each is computed once; every query waits on the same result, and if
    decoding fails, every query raises the same exception. A failed reader is
    never retried. Create a new one instead.


    Attributes
    ----------
    source : |ByteRangeSource|
        Source of bytes

    filename : str
        Path or URL of file

    header_size : int
        Number of bytes fetched for the header

    index_fallback_size : int
        Number of bytes fetched for the R tree of files without zoom levels

    printer : file-like
        Stream for progress messages


    Notes
    -----
    The reader's background tasks belong to the event loop that is running
    when they start. Use each reader within a single event loop.
    """
    def __init__(self,
                 source,
                 header_size=DEFAULT_HEADER_SIZE,
                 index_fallback_size=DEFAULT_INDEX_FALLBACK_SIZE,
                 printer=None
                 ):
        """Create a BigBedReader

        Parameters
        ----------
        source : str or |ByteRangeSource|
            Path or URL of `BigBed`_ file, or a byte-range source

        header_size : int, optional
            Number of bytes to fetch from the start of the file to read
            its header. Also holds the chromosome tree of most files.
            (Default: `65536`)

        index_fallback_size : int, optional
            Number of bytes to fetch for the R tree index, if the file has no
            zoom levels to bound it (Default: `4096`)

        printer : file-like, optional
            Filehandle or sys.stderr-like for logging (Default: |NullWriter|)
        """
        self.source   = open_source(source)
        self.filename = self.source.locator
        self.header_size = header_size
        self.index_fallback_size = index_fallback_size
        self.printer  = NullWriter() if printer is None else printer
        self.closed   = False

        self._header_cell  = AsyncCell(self._load_header,
                                       name="header of '%s'" % self.filename,
                                       printer=self.printer)
        self._catalog_cell = AsyncCell(self._load_catalog,
                                       name="chromosome tree of '%s'" % self.filename,
                                       printer=self.printer)
        self._r_tree_cell  = AsyncCell(self._load_r_tree,
                                       name="R tree of '%s'" % self.filename,
                                       printer=self.printer)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self.start()

    def __str__(self):
        return "<%s source='%s' %s>" % (self.__class__.__name__,
                                        self.filename,
                                        " ".join("%s=%s" % (K.replace(" ","_"),V.replace(" ","_")) \
                                                 for K,V in self.debug_state().items()))

    def __repr__(self):
        return str(self)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self,exc_type,exc,tb):
        await self.close()

    def __aiter__(self):
        return self.iter_features()

    def start(self):
        """Begin fetching the header, chromosome tree, and index in the background.
        Must be called from within a running event loop. Calling more than once
        has no further effect."""
        self._header_cell.start()
        self._catalog_cell.start()
        self._r_tree_cell.start()

    async def close(self):
        """Cancel background work that is still pending, and close the source"""
        self.closed = True
        for cell in (self._r_tree_cell,self._catalog_cell,self._header_cell):
            cell.cancel()
        await self.source.close()

    def debug_state(self):
        """Report progress of the header, chromosome tree, and index

        Returns
        -------
        OrderedDict
            Dictionary mapping each stage to `'not started'`, `'pending'`,
            `'done'`, `'failed'`, or `'cancelled'`
        """
        return OrderedDict([("header",self._header_cell.state),
                            ("chromosome tree",self._catalog_cell.state),
                            ("R tree",self._r_tree_cell.state)])

    # I/O --------------------------------------------------------------------

    async def _get(self,cell):
        if self.closed:
            raise TransportError(self.filename,"Reader is closed.")

        try:
            return await cell.get()
        except asyncio.CancelledError:
            if self.closed and cell.state == "cancelled":
                raise TransportError(self.filename,"Reader is closed.") from None
            raise

    async def _fetch(self,offset,length):
        self.printer.write("Fetching %s bytes at offset %s from '%s'" % (length,offset,self.filename))
        try:
            return await self.source.get_bytes(offset,length)
        except TransportError:
            raise
        except IOError as e:
            raise TransportError(self.filename,str(e),offset=offset,length=length) from e

    async def _read_region(self,head,start,end):
        # reuse bytes fetched with the header when they cover the region
        if end <= len(head):
            return head[start:end]

        return await self._fetch(start,end - start)

    # decode stages ----------------------------------------------------------

    async def _load_header(self):
        head   = await self._fetch(0,self.header_size)
        header = decode_header(head,self.filename)
        self.printer.write("Read header of '%s': version %s, %s fields, %s zoom levels" % (self.filename,
                                                                                        header.version,
                                                                                        header.field_count,
                                                                                        header.zoom_levels))
        return header, head

    async def _load_catalog(self):
        header, head = await self._get(self._header_cell)
        start = header.chromosome_tree_offset
        if header.full_data_offset > start:
            end = header.full_data_offset
        else:
            end = start + self.header_size

        buf = await self._read_region(head,start,end)
        catalog = ContigCatalog(walk_chromosome_tree(buf,start,self.filename))
        self.printer.write("Read %s contigs from '%s'" % (len(catalog),self.filename))
        return catalog

    async def _load_r_tree(self):
        header, _ = await self._get(self._header_cell)
        start = header.full_index_offset
        if len(header.zoom_headers) > 0:
            length = header.zoom_headers[0].data_offset - start
        else:
            length = self.index_fallback_size

        if length <= 0:
            raise DecodeError(self.filename,
                              "Zoom data at offset %s precedes index at offset %s." % (header.zoom_headers[0].data_offset,start),
                              stage="R tree")

        buf = await self._fetch(start,length)
        try:
            r_tree = RTree(decode_r_tree(buf,start,self.filename),
                           header=decode_r_tree_header(buf,self.filename))
        except DecodeError:
            if len(header.zoom_headers) == 0 and len(buf) == length:
                warnings.warn("R tree of '%s' may be larger than the %s bytes fetched. Try a larger `index_fallback_size`." % (self.filename,length),
                              FileFormatWarning)
            raise

        self.printer.write("Read R tree of '%s' with %s leaves" % (self.filename,len(r_tree)))
        return r_tree

    # public API -------------------------------------------------------------

    async def get_header(self):
        """Return the decoded file header

        Returns
        -------
        |BigBedHeader|
        """
        header, _ = await self._get(self._header_cell)
        return header

    async def get_catalog(self):
        """Return the |ContigCatalog| decoded from the chromosome B+ tree"""
        return await self._get(self._catalog_cell)

    async def get_r_tree(self):
        """Return the |RTree| index"""
        return await self._get(self._r_tree_cell)

    async def get_chrom_sizes(self):
        """Return a dictionary mapping contig names to their sizes, in base pairs"""
        catalog = await self._get(self._catalog_cell)
        return OrderedDict(catalog.chrom_sizes)

    async def count_records(self):
        """Return the number of records in the file, as stored at the start
        of its data section

        Returns
        -------
        int
        """
        header, head = await self._get(self._header_cell)
        start = header.full_data_offset
        buf = await self._read_region(head,start,start + 8)
        if len(buf) < 8:
            raise DecodeError(self.filename,"Truncated record count at offset %s." % start,stage="data section")

        return struct.unpack("<Q",buf)[0]

    async def get_autosql(self):
        """Fetch the `autoSql`_ declaration of the file's fields, if present

        Returns
        -------
        str
            autoSql-formatted string, or an empty string if the file has none
        """
        header, head = await self._get(self._header_cell)
        start = header.autosql_offset
        if start == 0:
            return ""

        if header.total_summary_offset > start:
            end = header.total_summary_offset
        elif header.chromosome_tree_offset > start:
            end = header.chromosome_tree_offset
        else:
            end = start + self.header_size

        buf = await self._read_region(head,start,end)
        null = buf.find(b"\x00")
        if null == -1:
            warnings.warn("autoSql declaration in '%s' is not null-terminated." % self.filename,FileFormatWarning)
            null = len(buf)

        try:
            return buf[:null].decode("ascii")
        except UnicodeDecodeError as e:
            raise DecodeError(self.filename,str(e),stage="autoSql") from e

    async def get_features_in_range(self,contig,start,stop):
        """Return all records overlapping a region of interest

        Parameters
        ----------
        contig : str
            Name of contig. A leading ``'chr'`` is optional

        start : int
            0-indexed start of region, included

        stop : int
            0-indexed end of region, *included*. Note that records
            themselves are half-open.

        Returns
        -------
        list
            |Record| objects overlapping the region, in file order

        Raises
        ------
        ValueError
            If `start` is negative or `stop` precedes `start`

        |UnknownContigError|
            If `contig` is not in the file. No data blocks are fetched

        |DecodeError|
            If the header, chromosome tree, index, or a data block is malformed

        |TransportError|
            If bytes could not be fetched
        """
        if start < 0 or stop < start:
            raise ValueError("Invalid query range [%s, %s] on '%s'." % (start,stop,contig))

        catalog = await self._get(self._catalog_cell)
        chrom_id = catalog.id_for(contig)
        if chrom_id is None:
            raise UnknownContigError(contig,self.filename)

        r_tree = await self._get(self._r_tree_cell)
        header = await self.get_header()

        query  = ContigInterval(chrom_id,start,stop)
        leaves = r_tree.find_overlapping(query)
        if len(leaves) == 0:
            return []

        byte_range = plan_fetch(leaves)
        buf = await self._fetch(byte_range.start,byte_range.length)
        return extract_features_in_range(buf,
                                         byte_range,
                                         leaves,
                                         query,
                                         catalog,
                                         compressed=header.uncompress_buf_size > 0,
                                         filename=self.filename)

    async def iter_features(self):
        """Asynchronous generator over all records in the file, in file order.
        Data blocks are fetched one at a time.

        Yields
        ------
        |Record|
        """
        catalog = await self._get(self._catalog_cell)
        r_tree  = await self._get(self._r_tree_cell)
        header  = await self.get_header()
        compressed = header.uncompress_buf_size > 0
        for leaf in r_tree:
            byte_range = plan_fetch([leaf])
            buf = await self._fetch(byte_range.start,byte_range.length)
            for entry in read_block(buf,byte_range,leaf,compressed=compressed,filename=self.filename):
                yield _to_record(entry,catalog,self.filename)


def open_bigbed(locator,**kwargs):
    """Open a `BigBed`_ file for querying. If called inside a running event loop,
    the header and indices begin loading immediately.

    Parameters
    ----------
    locator : str or |ByteRangeSource|
        Path or URL of file, or a byte-range source

    kwargs : keyword arguments
        Passed to |BigBedReader|

    Returns
    -------
    |BigBedReader|
    """
    return BigBedReader(locator,**kwargs)
