#!/usr/bin/env python
"""Decoders for the binary structures of `BigBed`_ files: the file header and
zoom headers, the chromosome |BPlusTree|, the R tree index, and compressed
blocks of records.

All functions here are pure: they interpret a buffer already in memory and
never perform I/O. Each raises |DecodeError| when a buffer is truncated, when
a magic number or version is wrong, or when a structure claims more bytes than
its buffer holds. The `stage` of the error names the structure.

Numeric fields are little-endian. Big-endian files are detected by their
byte-swapped magic number and rejected, as in most tools outside of Kent's
own utilities.

Structure layouts are from :cite:`Kent2010`, Supplemental tables 5-10.

See also
--------
`Kent2010 <http://dx.doi.org/10.1093/bioinformatics/btq351>`_
    Description of BigBed and BigWig formats. Especially see supplemental data.
"""
import struct
import zlib
import numpy
from collections import OrderedDict, namedtuple
from bbfetch.util.io.binary import BinaryParserFactory, find_null_bytes
from bbfetch.util.services.exceptions import DecodeError

BIGBED_MAGIC         = 0x8789F2EB
BIGBED_MAGIC_SWAPPED = 0xEBF28987
BPLUS_TREE_MAGIC     = 0x78CA8C91
R_TREE_MAGIC         = 0x2468ACE0

MIN_VERSION = 1
MAX_VERSION = 4

DEFAULT_NAME = "<buffer>"

#===============================================================================
# INDEX: Factories for various record formats
#===============================================================================

HeaderFactory = BinaryParserFactory("BigBedHeaderFields",
                                    "IHHQQQHHQQIQ",
                                    ["magic",
                                     "version",
                                     "zoom_levels",
                                     "chromosome_tree_offset",
                                     "full_data_offset",
                                     "full_index_offset",
                                     "field_count",
                                     "defined_field_count",
                                     "autosql_offset",
                                     "total_summary_offset",
                                     "uncompress_buf_size",
                                     "extension_offset"
                                     ])
"""Parse the fixed 64-byte header of `BigBed`_ files

=========================  ==== ====  =================================================
Field                      Size Type   Summary
=========================  ==== ====  =================================================
magic                      4    uint   0x8789F2EB
version                    2    uint   File version
zoom_levels                2    uint   Number of zoom summary resolutions
chromosome_tree_offset     8    uint   Offset to chromosome B+ tree
full_data_offset           8    uint   Offset to main data. Begins with record count
full_index_offset          8    uint   Offset to R tree index of data blocks
field_count                2    uint   Number of fields in BED file
defined_field_count        2    uint   Number of fields that are pre-defined BED fields
autosql_offset             8    uint   Offset to zero-terminated autoSql string, or 0
total_summary_offset       8    uint   Offset to overall file summary data block
uncompress_buf_size        4    uint   Size of largest decompressed block, 0 if blocks are not compressed
extension_offset           8    uint   Offset to header extension, or 0
=========================  ==== ====  =================================================
"""

ZoomHeaderFactory = BinaryParserFactory("ZoomHeader",
                                        "IIQQ",
                                        ["reduction_level",
                                         "reserved",
                                         "data_offset",
                                         "index_offset"])
"""Parse zoom level headers, which immediately follow the file header"""

BPlusTreeHeaderFactory = BinaryParserFactory("BPlusTreeHeader",
                                             "4I2Q",
                                             ["magic",
                                              "block_size",
                                              "key_size",
                                              "val_size",
                                              "num_chroms",
                                              "reserved"])
"""Parse headers of the chromosome B+ tree"""

BPlusTreeNodeFormatFactory = BinaryParserFactory("BPlusTreeNodeFormat",
                                                 "?BH",
                                                 ["is_leaf",
                                                  "reserved",
                                                  "child_count"])
"""Determine format of B+ tree nodes"""

RTreeHeaderFactory = BinaryParserFactory("RTreeHeader",
                                         "IIQ4IQII",
                                         ["magic",
                                          "block_size",
                                          "num_items",
                                          "start_chrom_id",
                                          "start_base",
                                          "end_chrom_id",
                                          "end_base",
                                          "end_file_offset",
                                          "items_per_slot",
                                          "reserved"])
"""Parse headers of the R tree index"""

RTreeNodeFormatFactory = BinaryParserFactory("RTreeNodeFormat",
                                             "BBH",
                                             ["is_leaf","reserved","count"])
"""Determine format of R tree nodes"""

RTreeLeafFactory = BinaryParserFactory("RTreeLeaf",
                                       "4I2Q",
                                       ["start_chrom_id",
                                        "start_base",
                                        "end_chrom_id",
                                        "end_base",
                                        "data_offset",
                                        "data_size"
                                        ])
"""Parse leaves of the R tree"""

RTreeNonLeafFactory = BinaryParserFactory("RTreeNonLeaf",
                                          "4IQ",
                                          ["start_chrom_id",
                                           "start_base",
                                           "end_chrom_id",
                                           "end_base",
                                           "child_data_offset"])
"""Parse non-leaf nodes of the R tree"""

BedEntryPrefixFactory = BinaryParserFactory("BedEntryPrefix",
                                            "3I",
                                            ["chrom_id","start","stop"])
"""Parse the numeric columns that begin each record in a data block"""


#===============================================================================
# INDEX: Decoded types
#===============================================================================

BigBedHeader = namedtuple("BigBedHeader",HeaderFactory.fields + ["zoom_headers"])
"""File header, plus a tuple of |ZoomHeader| for each zoom level"""

ZoomHeader = ZoomHeaderFactory.nt

RTreeLeaf = RTreeLeafFactory.nt
"""Leaf of the R tree, pointing to `data_size` bytes at `data_offset` in the file"""

RTreeInternal = namedtuple("RTreeInternal",["start_chrom_id",
                                            "start_base",
                                            "end_chrom_id",
                                            "end_base",
                                            "children"])
"""Internal node of the R tree. `children` is a tuple of |RTreeInternal| or |RTreeLeaf|"""

BedEntry = namedtuple("BedEntry",["chrom_id","start","stop","rest"])
"""Record as stored in a data block. `rest` holds the remaining, tab-delimited columns"""


#===============================================================================
# INDEX: Decoders
#===============================================================================

def _unpack(factory,buf,offset,filename,stage):
    try:
        return factory(buf,offset)
    except (struct.error,UnicodeDecodeError) as e:
        raise DecodeError(filename,str(e),stage=stage) from e

def decode_header(buf,filename=DEFAULT_NAME):
    """Decode the header and zoom level headers at the start of a `BigBed`_ file

    Parameters
    ----------
    buf : bytes
        Bytes from the beginning of the file. The 64-byte header and 24 bytes
        per zoom level must be present

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    |BigBedHeader|

    Raises
    ------
    |DecodeError|
        If the buffer is truncated, if the magic number is wrong or byte-swapped,
        or if the version is unsupported
    """
    stage = "header"
    if len(buf) < 4:
        raise DecodeError(filename,"Need 4 bytes for magic number, found %s." % len(buf),stage=stage)

    magic, = struct.unpack_from("<I",buf,0)
    if magic == BIGBED_MAGIC_SWAPPED:
        raise DecodeError(filename,"File is big-endian, which is not supported.",stage=stage)
    elif magic != BIGBED_MAGIC:
        raise DecodeError(filename,"Expected magic number to be '%x', got '%x'." % (BIGBED_MAGIC,magic),stage=stage)

    items = _unpack(HeaderFactory,buf,0,filename,stage)
    if not MIN_VERSION <= items.version <= MAX_VERSION:
        raise DecodeError(filename,
                          "Unsupported version %s. Expected %s-%s." % (items.version,MIN_VERSION,MAX_VERSION),
                          stage=stage)

    zoom_headers = []
    offset = HeaderFactory.calcsize()
    for _ in range(items.zoom_levels):
        zoom_headers.append(_unpack(ZoomHeaderFactory,buf,offset,filename,stage))
        offset += ZoomHeaderFactory.calcsize()

    return BigBedHeader(*items,zoom_headers=tuple(zoom_headers))

def walk_chromosome_tree(buf,file_offset=0,filename=DEFAULT_NAME):
    """Exhaustively traverse a chromosome B+ tree, depth-first and left-to-right

    Parameters
    ----------
    buf : bytes
        Bytes beginning with the B+ tree header, and containing all nodes

    file_offset : int, optional
        Position of `buf` within the file. Child node offsets stored in the
        tree are relative to the file, and are rebased against this value.
        (Default: `0`)

    filename : str, optional
        Name of file, for error messages

    Yields
    ------
    tuple
        `(chrom_name, chrom_id, chrom_size)`. Names are trimmed at their
        first null byte

    Raises
    ------
    |DecodeError|
        If the tree is truncated, has the wrong magic number, or refers to
        a node twice
    """
    stage  = "chromosome tree"
    header = _unpack(BPlusTreeHeaderFactory,buf,0,filename,stage)
    if header.magic != BPLUS_TREE_MAGIC:
        raise DecodeError(filename,
                          "Expected magic number to be '%x', got '%x'." % (BPLUS_TREE_MAGIC,header.magic),
                          stage=stage)
    if header.key_size == 0 or header.val_size != 8:
        raise DecodeError(filename,
                          "Unexpected key size %s or value size %s." % (header.key_size,header.val_size),
                          stage=stage)

    leaf_factory = BinaryParserFactory("BPlusTreeLeaf",
                                       "%ssII" % header.key_size,
                                       ["chrom_name","chrom_id","chrom_size"])
    nonleaf_factory = BinaryParserFactory("BPlusTreeNonLeaf",
                                          "%ssQ" % header.key_size,
                                          ["chrom_name","child_offset"])

    root_offset = BPlusTreeHeaderFactory.calcsize()
    visited = { root_offset }

    # each entry: [is_leaf, position of next item, items remaining]
    stack = [_open_node(BPlusTreeNodeFormatFactory,buf,root_offset,filename,stage)]
    while len(stack) > 0:
        cursor = stack[-1]
        if cursor[2] == 0:
            stack.pop()
            continue

        cursor[2] -= 1
        if cursor[0]:
            item = _unpack(leaf_factory,buf,cursor[1],filename,stage)
            cursor[1] += leaf_factory.calcsize()
            yield item.chrom_name.split("\x00",1)[0], item.chrom_id, item.chrom_size
        else:
            item = _unpack(nonleaf_factory,buf,cursor[1],filename,stage)
            cursor[1] += nonleaf_factory.calcsize()
            child = item.child_offset - file_offset
            if child < 0 or child in visited:
                raise DecodeError(filename,
                                  "Node at file offset %s lies outside the tree or is referenced twice." % item.child_offset,
                                  stage=stage)
            visited.add(child)
            stack.append(_open_node(BPlusTreeNodeFormatFactory,buf,child,filename,stage))

def _open_node(factory,buf,node_offset,filename,stage):
    node_info = _unpack(factory,buf,node_offset,filename,stage)
    return [bool(node_info.is_leaf),node_offset + factory.calcsize(),node_info[-1]]

def decode_chromosome_tree(buf,file_offset=0,filename=DEFAULT_NAME):
    """Decode a chromosome B+ tree into a dictionary of chromosome IDs

    Parameters
    ----------
    buf : bytes
        Bytes beginning with the B+ tree header, and containing all nodes

    file_offset : int, optional
        Position of `buf` within the file (Default: `0`)

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    OrderedDict
        Dictionary mapping chromosome names to integer IDs, in tree order

    See also
    --------
    walk_chromosome_tree
    """
    return OrderedDict((name,chrom_id) for name, chrom_id, _ in walk_chromosome_tree(buf,file_offset,filename))

def decode_r_tree_header(buf,filename=DEFAULT_NAME):
    """Decode the header of an R tree index

    Parameters
    ----------
    buf : bytes
        Bytes beginning with the R tree header

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    namedtuple
        R tree header, with fields named as in `RTreeHeaderFactory`
    """
    header = _unpack(RTreeHeaderFactory,buf,0,filename,"R tree")
    if header.magic != R_TREE_MAGIC:
        raise DecodeError(filename,
                          "Expected magic number to be '%x', got '%x'." % (R_TREE_MAGIC,header.magic),
                          stage="R tree")
    return header

def decode_r_tree(buf,file_offset=0,filename=DEFAULT_NAME):
    """Decode an entire R tree index into memory

    Parameters
    ----------
    buf : bytes
        Bytes beginning with the R tree header, and containing all nodes

    file_offset : int, optional
        Position of `buf` within the file. Child node offsets stored in the
        tree are relative to the file, and are rebased against this value.
        (Default: `0`)

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    |RTreeInternal|
        Root of tree. Its bounds are those given in the R tree header.

    Raises
    ------
    |DecodeError|
        If the tree is truncated, has the wrong magic number, or refers to
        a node twice
    """
    header = decode_r_tree_header(buf,filename)
    root = RTreeInternal(header.start_chrom_id,
                         header.start_base,
                         header.end_chrom_id,
                         header.end_base,
                         ())
    root_offset = RTreeHeaderFactory.calcsize()
    visited = { root_offset }
    stage = "R tree"

    # each entry: cursor over a node, the node's bounds, and its decoded children
    stack = [(_open_node(RTreeNodeFormatFactory,buf,root_offset,filename,stage),root,[])]
    while True:
        cursor, bounds, children = stack[-1]
        if cursor[2] == 0:
            stack.pop()
            node = bounds._replace(children=tuple(children))
            if len(stack) == 0:
                return node
            stack[-1][2].append(node)
            continue

        cursor[2] -= 1
        if cursor[0]:
            children.append(_unpack(RTreeLeafFactory,buf,cursor[1],filename,stage))
            cursor[1] += RTreeLeafFactory.calcsize()
        else:
            item = _unpack(RTreeNonLeafFactory,buf,cursor[1],filename,stage)
            cursor[1] += RTreeNonLeafFactory.calcsize()
            child = item.child_data_offset - file_offset
            if child < 0 or child in visited:
                raise DecodeError(filename,
                                  "Node at file offset %s lies outside the index or is referenced twice." % item.child_data_offset,
                                  stage=stage)
            visited.add(child)
            stack.append((_open_node(RTreeNodeFormatFactory,buf,child,filename,stage),
                          RTreeInternal(item.start_chrom_id,
                                        item.start_base,
                                        item.end_chrom_id,
                                        item.end_base,
                                        ()),
                          []))

def inflate_block(raw,compressed=True,filename=DEFAULT_NAME):
    """Decompress a block of records

    Compressed blocks are zlib streams. The two-byte stream header (RFC 1950)
    is checked and skipped, and the remainder is inflated as raw deflate data.
    The trailing checksum is not verified.

    Parameters
    ----------
    raw : bytes
        Block, as stored in file

    compressed : bool, optional
        If `False`, the block is stored uncompressed and is returned as-is.
        Files declare this with an `uncompress_buf_size` of 0 in their header.
        (Default: `True`)

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    bytes
        Decompressed block
    """
    raw = bytes(raw)
    if not compressed:
        return raw

    if len(raw) < 2:
        raise DecodeError(filename,"Block of %s bytes is too short to be compressed." % len(raw),stage="record block")

    cmf, flg = raw[0], raw[1]
    if cmf & 0x0F != 8 or (cmf*256 + flg) % 31 != 0 or flg & 0x20:
        raise DecodeError(filename,
                          "Block does not begin with a zlib stream header (got %02x%02x)." % (cmf,flg),
                          stage="record block")
    inflater = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        inflated = inflater.decompress(raw[2:])
    except zlib.error as e:
        raise DecodeError(filename,"Could not inflate block: %s" % e,stage="record block") from e

    if not inflater.eof:
        raise DecodeError(filename,
                          "Compressed block of %s bytes ends before its final deflate block." % len(raw),
                          stage="record block")

    return inflated

def decode_record_block(buf,filename=DEFAULT_NAME):
    """Decode a decompressed data block into records

    Each record is three unsigned integers (`chrom_id`, `start`, `stop`),
    followed by the remaining columns of the BED line as a null-terminated
    tab-delimited string (empty for BED3 files).

    Parameters
    ----------
    buf : bytes
        Decompressed block

    filename : str, optional
        Name of file, for error messages

    Returns
    -------
    list
        List of |BedEntry|, in the order stored
    """
    stage = "record block"
    buf = bytes(buf)
    null_indices = find_null_bytes(buf)
    prefix_size = BedEntryPrefixFactory.calcsize()

    ltmp = []
    last_index = 0
    while last_index < len(buf):
        chrom_id, start, stop = _unpack(BedEntryPrefixFactory,buf,last_index,filename,stage)
        rest_start = last_index + prefix_size

        # first null byte that doesn't overlap numerical data
        n = numpy.searchsorted(null_indices,rest_start)
        if n >= len(null_indices):
            raise DecodeError(filename,
                              "Record at block offset %s is not null-terminated." % last_index,
                              stage=stage)
        end_index = int(null_indices[n])

        try:
            rest = buf[rest_start:end_index].decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(filename,str(e),stage=stage) from e

        ltmp.append(BedEntry(chrom_id,start,stop,rest))
        last_index = end_index + 1

    return ltmp
