#!/usr/bin/env python
"""Helpers shared by test suites: builders for synthetic `BigBed`_ files,
and byte-range sources that record or fail requests.

Files are assembled in the layout written by Kent's ``bedToBigBed``::

    header | zoom headers | autoSql | total summary | chromosome B+ tree |
    record count | data blocks | R tree index | (zoom data)
"""
import asyncio
import struct
import zlib
from collections import namedtuple
from bbfetch.util.io.sources import BytesSource
from bbfetch.util.services.exceptions import TransportError

DEFAULT_AUTOSQL = """table bed6
"Browser extensible data"
    (
    string chrom;       "Reference sequence chromosome or scaffold"
    uint   chromStart;  "Start position in chromosome"
    uint   chromEnd;    "End position in chromosome"
    string name;        "Name of item"
    char[1] strand;     "+ or -"
    )
"""

BigBedFixture = namedtuple("BigBedFixture",["data","leaves","layout"])
"""Synthetic file. `leaves` holds `(start_chrom_id, start_base, end_chrom_id,
end_base, data_offset, data_size)` tuples for each block, and `layout` maps
section names to their offsets"""


#===============================================================================
# INDEX: Structure builders
#===============================================================================

def make_record_block(entries):
    """Serialize `(chrom_id, start, stop, rest)` tuples as an uncompressed data block"""
    return b"".join(struct.pack("<III",chrom_id,start,stop) + rest.encode("utf-8") + b"\x00" \
                    for chrom_id, start, stop, rest in entries)

def make_chromosome_tree(chroms,key_size=None,file_offset=0,items_per_node=None):
    """Serialize a chromosome B+ tree

    Parameters
    ----------
    chroms : list
        `(name, size)` tuples. IDs are assigned in list order

    key_size : int or None, optional
        Width of name keys. Defaults to the longest name

    file_offset : int, optional
        Position of tree in file, used for child offsets

    items_per_node : int or None, optional
        If given, leaves hold at most this many contigs, under a single
        non-leaf root. Otherwise the tree is a single leaf
    """
    if key_size is None:
        key_size = max(len(X[0]) for X in chroms)

    leaf_fmt = "<%ssII" % key_size
    items = [struct.pack(leaf_fmt,name.encode("ascii"),n,size) for n, (name,size) in enumerate(chroms)]

    block_size = len(chroms) if items_per_node is None else items_per_node
    header = struct.pack("<4I2Q",0x78CA8C91,block_size,key_size,8,len(chroms),0)
    if items_per_node is None:
        return header + struct.pack("<?BH",True,0,len(items)) + b"".join(items)

    groups = [items[X:X+items_per_node] for X in range(0,len(items),items_per_node)]
    names  = [chroms[X][0] for X in range(0,len(items),items_per_node)]
    root_size = 4 + len(groups)*(key_size + 8)
    child_offset = file_offset + len(header) + root_size

    root  = struct.pack("<?BH",False,0,len(groups))
    nodes = b""
    for name, group in zip(names,groups):
        root  += struct.pack("<%ssQ" % key_size,name.encode("ascii"),child_offset)
        node   = struct.pack("<?BH",True,0,len(group)) + b"".join(group)
        nodes += node
        child_offset += len(node)

    return header + root + nodes

def make_r_tree(leaves,file_offset=0,leaves_per_node=None,end_file_offset=0):
    """Serialize an R tree

    Parameters
    ----------
    leaves : list
        `(start_chrom_id, start_base, end_chrom_id, end_base, data_offset, data_size)` tuples

    file_offset : int, optional
        Position of tree in file, used for child offsets

    leaves_per_node : int or None, optional
        If given, leaf nodes hold at most this many leaves, under a single
        non-leaf root. Otherwise the root is a single leaf node
    """
    if len(leaves) > 0:
        bounds = (leaves[0][0],leaves[0][1],leaves[-1][2],max(X[3] for X in leaves if X[2] == leaves[-1][2]))
    else:
        bounds = (0,0,0,0)

    per_node = leaves_per_node or max(1,len(leaves))
    header = struct.pack("<IIQ4IQII",0x2468ACE0,per_node,len(leaves),*bounds,end_file_offset,1,0)

    if leaves_per_node is None or len(leaves) == 0:
        root = struct.pack("<BBH",1,0,len(leaves)) + b"".join(struct.pack("<4I2Q",*X) for X in leaves)
        return header + root

    groups = [leaves[X:X+leaves_per_node] for X in range(0,len(leaves),leaves_per_node)]
    root_size = 4 + 24*len(groups)
    child_offset = file_offset + len(header) + root_size

    root  = struct.pack("<BBH",0,0,len(groups))
    nodes = b""
    for group in groups:
        end_chrom = group[-1][2]
        end_base  = max(X[3] for X in group if X[2] == end_chrom)
        root  += struct.pack("<4IQ",group[0][0],group[0][1],end_chrom,end_base,child_offset)
        node   = struct.pack("<BBH",1,0,len(group)) + b"".join(struct.pack("<4I2Q",*X) for X in group)
        nodes += node
        child_offset += len(node)

    return header + root + nodes

def make_header(zoom_levels=0,
                chromosome_tree_offset=0,
                full_data_offset=0,
                full_index_offset=0,
                field_count=3,
                defined_field_count=3,
                autosql_offset=0,
                total_summary_offset=0,
                uncompress_buf_size=0,
                version=4,
                magic=0x8789F2EB):
    """Serialize the fixed 64-byte file header"""
    return struct.pack("<IHHQQQHHQQIQ",
                       magic,
                       version,
                       zoom_levels,
                       chromosome_tree_offset,
                       full_data_offset,
                       full_index_offset,
                       field_count,
                       defined_field_count,
                       autosql_offset,
                       total_summary_offset,
                       uncompress_buf_size,
                       0)


#===============================================================================
# INDEX: Whole files
#===============================================================================

def build_bigbed(chroms,
                 records,
                 items_per_block=2,
                 leaves_per_node=2,
                 zoom_levels=1,
                 compress=True,
                 key_size=None,
                 autosql=DEFAULT_AUTOSQL,
                 chroms_per_node=None):
    """Assemble a complete `BigBed`_ file

    Parameters
    ----------
    chroms : list
        `(name, size)` tuples. IDs are assigned in list order

    records : list
        `(chrom_name, start, stop, rest)` tuples, sorted by contig ID then start

    items_per_block : int, optional
        Maximum records per data block. Blocks never span contigs

    leaves_per_node : int or None, optional
        Maximum leaves per R tree leaf node. If `None`, the R tree is a
        single leaf node

    zoom_levels : int, optional
        Number of (empty) zoom levels. With none, readers must guess
        the size of the R tree

    compress : bool, optional
        Whether to compress data blocks

    key_size : int or None, optional
        Width of chromosome tree keys

    autosql : str or None, optional
        autoSql declaration to embed

    chroms_per_node : int or None, optional
        If given, build a two-level chromosome tree

    Returns
    -------
    |BigBedFixture|
    """
    chrom_ids = { name : n for n, (name,_) in enumerate(chroms) }
    layout = {}

    pos = 64 + 24*zoom_levels
    if autosql:
        autosql_bytes = autosql.encode("ascii") + b"\x00"
        layout["autosql"] = pos
    else:
        autosql_bytes = b""
        layout["autosql"] = 0
    pos += len(autosql_bytes)

    layout["total_summary"] = pos
    total_summary = struct.pack("<Q4d",0,0,0,0,0)
    pos += len(total_summary)

    layout["chromosome_tree"] = pos
    chrom_tree = make_chromosome_tree(chroms,key_size=key_size,file_offset=pos,items_per_node=chroms_per_node)
    pos += len(chrom_tree)

    # group records into blocks
    groups = []
    for record in records:
        if len(groups) > 0 and len(groups[-1]) < items_per_block and groups[-1][-1][0] == record[0]:
            groups[-1].append(record)
        else:
            groups.append([record])

    layout["data"] = pos
    data = struct.pack("<Q",len(records))
    pos += len(data)

    leaves = []
    max_raw = 0
    for group in groups:
        chrom_id = chrom_ids[group[0][0]]
        raw = make_record_block([(chrom_id,start,stop,rest) for _, start, stop, rest in group])
        max_raw = max(max_raw,len(raw))
        stored = zlib.compress(raw) if compress else raw
        leaves.append((chrom_id,min(X[1] for X in group),chrom_id,max(X[2] for X in group),pos,len(stored)))
        data += stored
        pos  += len(stored)

    layout["index"] = pos
    r_tree = make_r_tree(leaves,file_offset=pos,leaves_per_node=leaves_per_node,end_file_offset=layout["index"])
    pos += len(r_tree)
    layout["zoom_data"] = pos

    field_count = 3
    if len(records) > 0 and records[0][3]:
        field_count += len(records[0][3].split("\t"))

    header = make_header(zoom_levels=zoom_levels,
                         chromosome_tree_offset=layout["chromosome_tree"],
                         full_data_offset=layout["data"],
                         full_index_offset=layout["index"],
                         field_count=field_count,
                         defined_field_count=field_count,
                         autosql_offset=layout["autosql"],
                         total_summary_offset=layout["total_summary"],
                         uncompress_buf_size=max_raw if compress else 0)
    zoom_headers = b"".join(struct.pack("<IIQQ",10**(X+2),0,layout["zoom_data"],layout["zoom_data"]) \
                            for X in range(zoom_levels))

    blob = header + zoom_headers + autosql_bytes + total_summary + chrom_tree + data + r_tree
    assert len(blob) == layout["zoom_data"]
    return BigBedFixture(blob,leaves,layout)


#===============================================================================
# INDEX: Sample data
#===============================================================================

SAMPLE_CHROMS = [("chr1",249250621),
                 ("chr10",135534747),
                 ("chr17",81195210),
                 ("chrX",155270560)]

SAMPLE_RECORDS = [("chr1",100,200,"a\t+"),
                  ("chr1",1000,1500,"b\t-"),
                  ("chr17",7500000,7500100,"geneA\t+"),
                  ("chr17",7512440,7512450,"gene1\t+"),
                  ("chr17",7512480,7513000,"gene2\t-"),
                  ("chr17",7512485,7512490,"gene3\t+"),
                  ("chr17",7600000,7600500,"gene4\t-"),
                  ("chr17",8000000,8000100,"gene5\t+"),
                  ("chrX",5,10,"x1\t+"),
                  ]

def sample_bigbed(**kwargs):
    """Build a file of :data:`SAMPLE_RECORDS`, with 8-byte keys so that
    ``'chr17'`` is stored as ``'chr17\\x00\\x00\\x00'``"""
    kwargs.setdefault("key_size",8)
    return build_bigbed(SAMPLE_CHROMS,SAMPLE_RECORDS,**kwargs)


#===============================================================================
# INDEX: Sources
#===============================================================================

class RecordingSource(BytesSource):
    """|BytesSource| that records `(offset, length)` of each request"""

    def __init__(self,data,locator="<recording>"):
        BytesSource.__init__(self,data,locator=locator)
        self.requests = []

    async def _read(self,offset,length):
        self.requests.append((offset,length))
        return await BytesSource._read(self,offset,length)


class FlakySource(RecordingSource):
    """|RecordingSource| that fails, once each, requests beginning at given offsets"""

    def __init__(self,data,fail_offsets,error=None):
        RecordingSource.__init__(self,data,locator="<flaky>")
        self.fail_offsets = set(fail_offsets)
        self.error = error

    async def _read(self,offset,length):
        if offset in self.fail_offsets:
            self.fail_offsets.discard(offset)
            self.requests.append((offset,length))
            if self.error is not None:
                raise self.error
            raise TransportError(self.locator,"simulated failure",offset=offset,length=length)

        return await RecordingSource._read(self,offset,length)


class GatedSource(RecordingSource):
    """|RecordingSource| that holds requests beginning at `gated_offsets`
    until `count` of them are waiting at once"""

    def __init__(self,data,gated_offsets,count=2):
        RecordingSource.__init__(self,data,locator="<gated>")
        self.gated_offsets = set(gated_offsets)
        self.count   = count
        self.waiting = 0
        self._open   = None

    async def _read(self,offset,length):
        if offset in self.gated_offsets:
            if self._open is None:
                self._open = asyncio.Event()
            self.waiting += 1
            if self.waiting >= self.count:
                self._open.set()
            await self._open.wait()

        return await RecordingSource._read(self,offset,length)
