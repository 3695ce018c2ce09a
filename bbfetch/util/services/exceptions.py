#!/usr/bin/env python
"""This module contains custom exception and warning classes, and monkey-patches
warning output to improve legibility.

Contents:

.. contents::
   :local:


Exception types
---------------
|MalformedFileError|
    Raised when a file cannot be parsed as expected, and
    execution must halt

|DecodeError|
    A |MalformedFileError| raised by the binary decoders. Its `stage`
    names the structure (header, chromosome tree, R tree, record block)
    that could not be decoded

|TransportError|
    Raised when bytes could not be fetched from a byte-range source
    (missing file, network or HTTP failure)

|UnknownContigError|
    Raised when a query names a contig that is absent from a file,
    with or without a leading ``'chr'``


Warning types
-------------
|FileFormatWarning|
    Warning for slightly malformed but usable files

|DataWarning|
    Warning raised when:

      - data has unexpected attributes
      - data has nonsensical, but recoverable values for attributes


Errors of each type identify where a query failed, so that callers can
distinguish a corrupt file (|DecodeError|) from a bad query
(|UnknownContigError|) from a network failure (|TransportError|)::

    >>> try:
    >>>     records = await reader.get_features_in_range("chrI",0,1000)
    >>> except UnknownContigError:
    >>>     pass # no such contig
    >>> except DecodeError as err:
    >>>     print(err.stage)
    >>> except TransportError:
    >>>     pass # try again later


See also
--------
:mod:`warnings`
    Warnings module
"""
import warnings
import linecache
import textwrap
from bbfetch.util.io.filters import colored

_wrapper = textwrap.TextWrapper(break_long_words=False,width=77)



#===============================================================================
# INDEX: Warning and exception classes
#===============================================================================

class MalformedFileError(Exception):
    """Exception class for when files cannot be parsed as they should be
    """

    def __init__(self,filename,message,line_num=None):
        """Create a |MalformedFileError|

        Parameters
        ----------
        filename : str
            Name of file causing problem

        message : str
            Message explaining how the file is malformed.

        line_num : int or None, optional
            Number of line causing problems
        """
        Exception.__init__(self,filename,message)
        self.filename = filename
        self.msg      = message
        self.line_num = line_num

    def __str__(self):
        if self.line_num is None:
            return "Error opening file '%s': %s" % (self.filename, self.msg)
        else:
            return "Error opening file '%s' at line %s: %s" % (self.filename, self.line_num, self.msg)


class DecodeError(MalformedFileError):
    """Exception raised when a binary structure is truncated, carries the wrong
    magic number or version, or declares a substructure larger than the buffer
    that holds it.

    Attributes
    ----------
    stage : str or None
        Name of the structure that could not be decoded, one of `'header'`,
        `'chromosome tree'`, `'R tree'`, `'record block'`, `'data section'`
        (the record count), or `'autoSql'`
    """

    def __init__(self,filename,message,stage=None):
        """Create a |DecodeError|

        Parameters
        ----------
        filename : str
            Name or locator of file causing problem

        message : str
            Message explaining how the file is malformed

        stage : str or None, optional
            Name of the structure being decoded
        """
        MalformedFileError.__init__(self,filename,message)
        self.stage = stage

    def __str__(self):
        if self.stage is None:
            return MalformedFileError.__str__(self)

        return "Error decoding %s of '%s': %s" % (self.stage, self.filename, self.msg)


class TransportError(IOError):
    """Exception raised when a byte range cannot be fetched from a file or URL

    Attributes
    ----------
    locator : str
        Path or URL of resource

    offset : int or None
        Start of requested byte range

    length : int or None
        Length of requested byte range
    """

    def __init__(self,locator,message,offset=None,length=None):
        IOError.__init__(self,message)
        self.locator = locator
        self.msg     = message
        self.offset  = offset
        self.length  = length

    def __str__(self):
        if self.offset is None:
            return "Could not read from '%s': %s" % (self.locator, self.msg)
        else:
            return "Could not read %s bytes at offset %s from '%s': %s" % (self.length,
                                                                           self.offset,
                                                                           self.locator,
                                                                           self.msg)


class UnknownContigError(KeyError):
    """Exception raised when a query names a contig that a file does not contain

    Attributes
    ----------
    contig : str
        Contig name given in query

    filename : str
        Name or locator of file queried
    """

    def __init__(self,contig,filename):
        KeyError.__init__(self,contig)
        self.contig   = contig
        self.filename = filename

    def __str__(self):
        return "Contig '%s' (or 'chr%s') not found in '%s'" % (self.contig, self.contig, self.filename)


class FileFormatWarning(Warning):
    """Warning for slightly malformed but usable files"""
    pass


class DataWarning(Warning):
    """Warning for unexpected attributes of data.
    Raised when:

      - data has unexpected attributes
      - data has nonsensical, but recoverable values
    """



#===============================================================================
# INDEX: Warning formatting
#===============================================================================

def formatwarning(message,category,filename,lineno,file=None,line=None):
    """Format warnings as a colored block, naming the warning category and
    quoting the line that raised it. Replaces :func:`warnings.formatwarning`
    when this module is imported.

    Parameters
    ----------
    message : str or Warning
        Warning message

    category : type
        Warning class

    filename : str
        File that issued the warning

    lineno : int
        Line in `filename` that issued the warning

    file : file-like, optional
        Ignored. Present for compatibility with :func:`warnings.formatwarning`

    line : str or None, optional
        Source text of the offending line. If `None`, it is read
        from `filename`

    Returns
    -------
    str
    """
    if line is None:
        line = linecache.getline(filename,lineno)

    text = str(message)
    if "\n" not in text:
        text = _wrapper.fill(text)

    rule = colored("-"*75,color="cyan")
    ltmp = [rule,
            "%s in %s, line %s:" % (colored(category.__name__,color="cyan",attrs=["bold"]),
                                    colored(filename,color="cyan"),
                                    lineno),
            "",
            colored(text,color="white",attrs=["bold"]),
            ""]
    if line.strip():
        ltmp.extend(["    " + colored(line.strip(),color="green"),""])

    ltmp.extend([rule,""])
    return "\n".join(ltmp)


warnings.formatwarning = formatwarning
