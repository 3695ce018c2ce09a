#!/usr/bin/env python
"""Utilities for handling and wrapping various I/O operations.

Package overview
================

    =======================================  ======================================
    **Package module**                       **Contents**
    ---------------------------------------  --------------------------------------
    :py:mod:`~bbfetch.util.io.binary`        Tools for unpacking binary values
                                             into named tuples
    :py:mod:`~bbfetch.util.io.filters`       Printers that format or discard
                                             progress messages
    :py:mod:`~bbfetch.util.io.sources`       Asynchronous byte-range sources for
                                             local files, URLs, and buffers
    =======================================  ======================================

"""
