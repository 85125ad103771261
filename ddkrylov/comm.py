# -*- coding: utf8 -*-
'''
Communicators.

The only collective the iterative methods use is an in-place global sum.
Every rank has to issue the same sequence of reductions with buffers of
identical shape, including ranks that hold no unknowns.
'''

import threading

import numpy

from .utils import ArgumentError, CommunicatorError

__all__ = ['MPIComm', 'SelfComm', 'ThreadComm', 'ThreadGroup',
           'as_communicator']


class SelfComm(object):
    '''Communicator of a single process.'''
    rank = 0
    size = 1

    def __init__(self):
        self.reductions = 0

    def allreduce(self, buf):
        '''Sum ``buf`` over all ranks in place and return it.'''
        self.reductions += 1
        return buf


class ThreadGroup(object):
    '''Ranks simulated by threads of one process.

    Contributions are summed in rank order on every rank, so all ranks
    obtain bitwise identical results.

    >>> group = ThreadGroup(3)
    >>> comms = group.comms()
    '''
    def __init__(self, size, timeout=60.):
        if size < 1:
            raise ArgumentError('A thread group needs at least one rank.')
        self.size = size
        self._barrier = threading.Barrier(size, timeout=timeout)
        self._slots = [None] * size

    def comms(self):
        '''One communicator per rank.'''
        return [ThreadComm(self, rank) for rank in range(self.size)]

    def _wait(self):
        try:
            self._barrier.wait()
        except threading.BrokenBarrierError:
            raise CommunicatorError('Reduction aborted: ranks issued '
                                    'different sequences of reductions.')


class ThreadComm(object):
    '''Communicator of one rank in a :py:class:`ThreadGroup`.'''
    def __init__(self, group, rank):
        self.group = group
        self.rank = rank
        self.size = group.size
        self.reductions = 0

    def allreduce(self, buf):
        group = self.group
        group._slots[self.rank] = numpy.array(buf, copy=True)
        group._wait()
        try:
            total = group._slots[0].copy()
            for contribution in group._slots[1:]:
                if contribution.shape != total.shape:
                    raise CommunicatorError(
                        'Mismatched reduction: shapes {0} and {1}.'
                        .format(total.shape, contribution.shape))
                total += contribution
        except CommunicatorError:
            group._barrier.abort()
            raise
        group._wait()
        buf[...] = total
        self.reductions += 1
        return buf


class MPIComm(object):
    '''Communicator backed by ``mpi4py``.'''
    def __init__(self, comm=None):
        from mpi4py import MPI
        self._MPI = MPI
        self.comm = MPI.COMM_WORLD if comm is None else comm
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()
        self.reductions = 0

    def allreduce(self, buf):
        if not buf.flags['C_CONTIGUOUS']:
            raise ArgumentError('MPI reductions need contiguous buffers.')
        self.comm.Allreduce(self._MPI.IN_PLACE, buf, op=self._MPI.SUM)
        self.reductions += 1
        return buf


def as_communicator(comm):
    '''Return a communicator usable by the iterative methods.

    ``None`` gives a :py:class:`SelfComm`, an ``mpi4py`` communicator is
    wrapped in a :py:class:`MPIComm`, anything providing ``allreduce`` and
    ``rank`` is returned unchanged.'''
    if comm is None:
        return SelfComm()
    if hasattr(comm, 'Allreduce'):
        return MPIComm(comm)
    if hasattr(comm, 'allreduce') and hasattr(comm, 'rank'):
        return comm
    raise ArgumentError('Unsupported communicator {0!r}.'.format(comm))
