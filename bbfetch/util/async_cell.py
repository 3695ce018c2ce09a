#!/usr/bin/env python
"""|AsyncCell|, a compute-once container for the result of a coroutine.

The first caller to :meth:`AsyncCell.get` (or an explicit call to
:meth:`AsyncCell.start`) schedules the coroutine as an :class:`asyncio.Task`.
Every later caller awaits that same task, receiving either its result or
the exception it raised. The coroutine is never run a second time, so a
failure is permanent for the life of the cell.
"""
import asyncio

class AsyncCell(object):
    """Memoize the outcome of a coroutine function, and share it among waiters.

    Waiters are shielded from one another: cancelling a task that is waiting
    on the cell does not cancel the shared computation.

    Attributes
    ----------
    name : str
        Human-readable name of the computation, used in messages

    printer : file-like or None
        If not `None`, failures of the computation are written here when
        they occur, whether or not anybody is waiting on the cell


    Examples
    --------
    ::

        >>> async def expensive():
        >>>     ...
        >>> cell = AsyncCell(expensive,name="expensive thing")
        >>> a, b = await asyncio.gather(cell.get(),cell.get()) # runs once
    """

    def __init__(self,factory,name="value",printer=None):
        """Create an |AsyncCell|

        Parameters
        ----------
        factory : coroutine function
            Zero-argument coroutine function computing the value

        name : str, optional
            Human-readable name of the computation

        printer : file-like or None, optional
            Stream to which failures are reported
        """
        self.factory = factory
        self.name    = name
        self.printer = printer
        self._task   = None

    def __repr__(self):
        return "<AsyncCell %s: %s>" % (self.name,self.state)

    def start(self):
        """Schedule the computation, if it has not been scheduled already.
        Must be called from within a running event loop.

        Returns
        -------
        :class:`asyncio.Task`
            Task computing the value
        """
        if self._task is None:
            self._task = asyncio.ensure_future(self.factory())
            self._task.add_done_callback(self._on_done)

        return self._task

    async def get(self):
        """Return the value, computing it if needed

        Returns
        -------
        object
            Result of the computation

        Raises
        ------
        Exception
            Whatever the computation raised. The same exception is raised
            to every caller
        """
        return await asyncio.shield(self.start())

    @property
    def state(self):
        """State of the computation: `'not started'`, `'pending'`, `'done'`,
        `'failed'`, or `'cancelled'`"""
        if self._task is None:
            return "not started"
        elif not self._task.done():
            return "pending"
        elif self._task.cancelled():
            return "cancelled"
        elif self._task.exception() is not None:
            return "failed"

        return "done"

    def cancel(self):
        """Cancel the computation if it is still running

        Returns
        -------
        bool
            `True` if a pending computation was cancelled
        """
        if self._task is None or self._task.done():
            return False

        return self._task.cancel()

    def _on_done(self,task):
        # retrieving the exception here marks it as handled for asyncio
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None and self.printer is not None:
            self.printer.write("Could not compute %s: %s" % (self.name,exc))
