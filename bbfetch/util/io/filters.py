#!/usr/bin/env python
"""Writers used as `printers`: file-like objects that receive progress
messages from readers and sources, and format them before passing them
on to an output stream.

    :class:`AbstractWriter`
        Base class. Subclass and override :py:meth:`~AbstractWriter.filter`

    :class:`NullWriter`
        Discard everything. Default printer of |BigBedReader|

    :class:`NameDateWriter`
        Prefix each line with a name and timestamp, in color if the
        output stream is a terminal

    :func:`colored`
        :func:`termcolor.colored` if :obj:`sys.stderr` supports color,
        otherwise a passthrough


Examples
--------
Log each fetch made by a reader to stderr::

    >>> reader = BigBedReader("some_file.bb",printer=NameDateWriter("bbfetch"))
"""
import sys
import datetime
from io import IOBase

import termcolor

def _supports_color(stream):
    return hasattr(stream,"isatty") and stream.isatty()

if _supports_color(sys.stderr):
    colored = termcolor.colored
else:
    colored = lambda x, **kwargs: str(x)


#===============================================================================
# INDEX: writers
#===============================================================================

class AbstractWriter(IOBase):
    """Base class for writers that format data before writing it to `stream`

    Attributes
    ----------
    stream : file-like or None
        Destination of formatted output
    """
    def __init__(self,stream):
        self.stream = stream

    def isatty(self):
        return _supports_color(self.stream)

    def writable(self):
        return True

    def write(self,data):
        """Format `data` with :meth:`filter`, and write the result to `self.stream`"""
        self.stream.write(self.filter(data))

    def flush(self):
        self.stream.flush()

    def filter(self,data):
        """Format a unit of data. Override in subclasses"""
        raise NotImplementedError()


class NullWriter(AbstractWriter):
    """Writer that discards all input"""

    def __init__(self):
        AbstractWriter.__init__(self,None)

    def isatty(self):
        return False

    def write(self,data):
        pass

    def flush(self):
        pass

    def filter(self,data):
        return data

    def __repr__(self):
        return "NullWriter()"

    def __str__(self):
        return self.__repr__()


class NameDateWriter(AbstractWriter):
    """Prefix each line of output with a program name, date, and time"""

    def __init__(self,name,line_delimiter="\n",stream=None):
        """Create a NameDateWriter

        Parameters
        ----------
        name : str
            Name to prepend

        line_delimiter : str, optional
            Delimiter appended to each line (Default: `'\\n'`)

        stream : file-like, optional
            Stream to write to (Default: :obj:`sys.stderr`)
        """
        AbstractWriter.__init__(self,sys.stderr if stream is None else stream)
        self.name      = name
        self.delimiter = line_delimiter

        color = termcolor.colored if self.isatty() else (lambda x, **kwargs: x)
        self.fmtstr = "%s %s%s %s%s: {2}%s" % (color(name,color="blue",attrs=["bold"]),
                                               color("[",color="blue",attrs=["bold"]),
                                               color("{0}",color="green"),
                                               color("{1}",color="green",attrs=["bold"]),
                                               color("]",color="blue",attrs=["bold"]),
                                               self.delimiter)

    def filter(self,data):
        """Prefix every line of `data` with name, date, and time

        Parameters
        ----------
        data : str
            One or more lines of text

        Returns
        -------
        str
        """
        now = datetime.datetime.now()
        d   = now.strftime("%Y-%m-%d")
        t   = now.strftime("%H:%M:%S")
        lines = data.strip(self.delimiter).split(self.delimiter)
        return "".join(self.fmtstr.format(d,t,X) for X in lines)

    def __call__(self,line):
        self.write(line)
