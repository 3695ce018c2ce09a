#!/usr/bin/env python
"""Welcome to bbfetch!

This package reads `BigBed`_ files held on local disk or on remote servers,
fetching only the byte ranges needed to answer each query. Queries are
asynchronous (:mod:`asyncio`), so many may run at once.


Package overview
----------------
bbfetch is divided into the following subpackages:

    ==============    =========================================================
    Package           Contents
    --------------    ---------------------------------------------------------
    |readers|         Decoders and readers for `BigBed`_ files
    |util|            Utilities (byte-range sources, exceptions, printers)
    |test|            Unit tests
    ==============    =========================================================

"""
__version__ = "0.1.0"

from bbfetch.readers.bigbed import BigBedReader, ContigCatalog, Record, open_bigbed
from bbfetch.util.io.sources import ByteRangeSource, BytesSource, HTTPRangeSource, LocalFileSource, open_source
from bbfetch.util.services.exceptions import DecodeError, TransportError, UnknownContigError, formatwarning
