#!/usr/bin/env python
"""
Package overview
================

This package contains readers for `BigBed`_ files. Coordinates returned by
readers are 0-indexed and half-open, in keeping with Python conventions.
Queries, however, name closed regions: both their start and stop positions
are included.


    ======================================    =======================================
    **Module**                                **Contents**
    --------------------------------------    ---------------------------------------
    :py:mod:`bbfetch.readers.bigbed`          |BigBedReader|, |ContigCatalog|, |RTree|,
                                              and record extraction
    :py:mod:`bbfetch.readers.bbi`             Decoders for the header, chromosome
                                              B+ tree, R tree, and data blocks
    ======================================    =======================================
"""
