#!/usr/bin/env python
"""Miscellaneous, general utilities

Package overview
================

    ===================================   ======================================================================================================================
    **Subpackages**                       **Contents**
    -----------------------------------   ----------------------------------------------------------------------------------------------------------------------
    :py:obj:`~bbfetch.util.io`             Byte-range sources, binary parsers, and output writers
    :py:obj:`~bbfetch.util.services`       Exceptions and warnings
    -----------------------------------   ----------------------------------------------------------------------------------------------------------------------
    **Package modules**                   **Contents**
    -----------------------------------   ----------------------------------------------------------------------------------------------------------------------
    :py:mod:`~bbfetch.util.async_cell`     Compute-once container for the result of a coroutine
    ===================================   ======================================================================================================================


"""
