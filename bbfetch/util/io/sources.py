#!/usr/bin/env python
"""Byte-range sources, which asynchronously deliver exact windows of bytes
from local files, remote files served over HTTP(S), or in-memory buffers.

All sources implement the same interface:

    ``await source.get_bytes(offset,length)``
        Return up to `length` bytes starting at absolute position `offset`.
        Fewer bytes are returned only when the resource ends before
        ``offset + length``. Failures raise |TransportError|.

    ``await source.close()``
        Release file handles or network sessions.

Sources tolerate many outstanding concurrent calls. Blocking I/O is run
in the event loop's default executor so that it never blocks the loop.

Important classes & functions
-----------------------------
|ByteRangeSource|
    Base class. Subclass and override :meth:`~ByteRangeSource._read`

|LocalFileSource|
    Read from a file on disk

|HTTPRangeSource|
    Read from an HTTP(S) server that honors `Range` headers

|BytesSource|
    Read from bytes already in memory

:func:`open_source`
    Choose a source appropriate for a path, URL, or buffer


Examples
--------
::

    >>> source = open_source("https://example.org/genes.bb")
    >>> first_kb = await source.get_bytes(0,1024)
"""
import asyncio
import threading
import requests
from bbfetch.util.services.exceptions import TransportError

#===============================================================================
# INDEX: Byte range sources
#===============================================================================

class ByteRangeSource(object):
    """Base class for asynchronous byte-range sources

    Attributes
    ----------
    locator : str
        Path, URL, or description of the resource

    bytes_fetched : int
        Running total of bytes delivered by :meth:`get_bytes`

    num_requests : int
        Running total of calls to :meth:`get_bytes`
    """

    def __init__(self,locator):
        self.locator       = locator
        self.bytes_fetched = 0
        self.num_requests  = 0

    def __str__(self):
        return "<%s locator='%s'>" % (self.__class__.__name__,self.locator)

    def __repr__(self):
        return str(self)

    async def get_bytes(self,offset,length):
        """Fetch `length` bytes starting at `offset`

        Parameters
        ----------
        offset : int
            Non-negative position of first byte

        length : int
            Positive number of bytes to fetch

        Returns
        -------
        bytes
            Bytes in ``[offset, offset + length)``, truncated at the end of
            the resource

        Raises
        ------
        ValueError
            If `offset` is negative or `length` is not positive

        |TransportError|
            If the bytes could not be fetched
        """
        if offset < 0:
            raise ValueError("Offset must be non-negative. Got %s." % offset)
        if length <= 0:
            raise ValueError("Length must be positive. Got %s." % length)

        self.num_requests += 1
        data = await self._read(offset,length)
        self.bytes_fetched += len(data)
        return data

    async def _read(self,offset,length):
        """Read bytes from the underlying resource. Override in subclasses"""
        raise NotImplementedError()

    async def close(self):
        """Release any resources held by the source"""
        pass

    async def _run_blocking(self,fn,*args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None,fn,*args)


class BytesSource(ByteRangeSource):
    """Serve byte ranges from a buffer already held in memory.
    Useful for testing, and for files fetched in full by other means.
    """

    def __init__(self,data,locator="<bytes>"):
        """Create a |BytesSource|

        Parameters
        ----------
        data : bytes, bytearray, or memoryview
            Contents of resource

        locator : str, optional
            Name used in messages (Default: `'<bytes>'`)
        """
        ByteRangeSource.__init__(self,locator)
        self.data = bytes(data)

    async def _read(self,offset,length):
        return self.data[offset:offset+length]


class LocalFileSource(ByteRangeSource):
    """Serve byte ranges from a file on disk. The file is opened on first read"""

    def __init__(self,filename):
        """Create a |LocalFileSource|

        Parameters
        ----------
        filename : str
            Path to file
        """
        ByteRangeSource.__init__(self,filename)
        self.filename = filename
        self.fh = None
        self._lock = threading.Lock()

    def _read_blocking(self,offset,length):
        with self._lock:
            if self.fh is None:
                self.fh = open(self.filename,"rb")
            self.fh.seek(offset)
            return self.fh.read(length)

    async def _read(self,offset,length):
        try:
            return await self._run_blocking(self._read_blocking,offset,length)
        except IOError as e:
            raise TransportError(self.locator,str(e),offset=offset,length=length) from e

    async def close(self):
        await self._run_blocking(self._close_blocking)

    def _close_blocking(self):
        with self._lock:
            if self.fh is not None:
                self.fh.close()
                self.fh = None


class HTTPRangeSource(ByteRangeSource):
    """Serve byte ranges from a file served over HTTP(S), using `Range` requests

    Servers that ignore the `Range` header (status 200) are tolerated: the
    requested window is sliced out of the full response. Requests past the
    end of the resource (status 416) yield no bytes.

    Requests run on executor threads. Unless a session is given, each thread
    gets its own session from `session_factory`, since :class:`requests.Session`
    is not thread-safe. A session given by the caller is shared by all threads,
    and must tolerate that.
    """

    def __init__(self,url,session=None,timeout=30,session_factory=requests.Session):
        """Create an |HTTPRangeSource|

        Parameters
        ----------
        url : str
            URL of resource

        session : :class:`requests.Session` or None, optional
            Thread-safe session to use for all requests. If `None`, sessions
            are created per thread, and closed by :meth:`close`

        timeout : float, optional
            Timeout for each request, in seconds (Default: `30`)

        session_factory : callable, optional
            Zero-argument callable creating a session for a worker thread,
            used only if `session` is `None` (Default: :class:`requests.Session`)
        """
        ByteRangeSource.__init__(self,url)
        self.url = url
        self.timeout = timeout
        self.session = session
        self.session_factory = session_factory
        self._local    = threading.local()
        self._lock     = threading.Lock()
        self._sessions = []

    def _get_session(self):
        if self.session is not None:
            return self.session

        session = getattr(self._local,"session",None)
        if session is None:
            session = self.session_factory()
            self._local.session = session
            with self._lock:
                self._sessions.append(session)

        return session

    def _read_blocking(self,offset,length):
        headers = { "Range" : "bytes=%s-%s" % (offset,offset + length - 1) }
        try:
            response = self._get_session().get(self.url,headers=headers,timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(self.locator,str(e),offset=offset,length=length) from e

        if response.status_code == 206:
            return response.content[:length]
        elif response.status_code == 200:
            return response.content[offset:offset+length]
        elif response.status_code == 416:
            return b""

        raise TransportError(self.locator,
                             "HTTP status %s (%s)" % (response.status_code,response.reason),
                             offset=offset,
                             length=length)

    async def _read(self,offset,length):
        return await self._run_blocking(self._read_blocking,offset,length)

    async def close(self):
        await self._run_blocking(self._close_blocking)

    def _close_blocking(self):
        # sessions made after this point belong to a fresh thread-local
        with self._lock:
            sessions = self._sessions
            self._sessions = []
            self._local = threading.local()

        for session in sessions:
            session.close()


#===============================================================================
# INDEX: Factory
#===============================================================================

def open_source(locator):
    """Create a byte-range source appropriate for `locator`

    Parameters
    ----------
    locator : str, bytes, or |ByteRangeSource|
        URL beginning with ``http://`` or ``https://``, path to a local file,
        the contents of a file as bytes, or an existing source

    Returns
    -------
    |ByteRangeSource|
    """
    if isinstance(locator,ByteRangeSource):
        return locator
    elif isinstance(locator,(bytes,bytearray,memoryview)):
        return BytesSource(locator)
    elif not isinstance(locator,str):
        raise TypeError("Cannot open a byte-range source for '%s'" % repr(locator))

    if locator.startswith(("http://","https://")):
        return HTTPRangeSource(locator)

    return LocalFileSource(locator)
