#!/usr/bin/env python
"""Exceptions and warnings used throughout :data:`bbfetch`"""
