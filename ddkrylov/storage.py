# -*- coding: utf8 -*-
'''
Storage layouts of projected systems.

The unknowns of a projected system (e.g. Lagrange multipliers on subdomain
interfaces) are either stored as one contiguous vector or replicated on every
neighbour sharing them. :py:class:`Layout` dispatches the few operations
:py:class:`~ddkrylov.cg.Pcg` needs on the kind of storage.
'''

import numpy

from .utils import ArgumentError

__all__ = ['CONTIGUOUS', 'SHARED', 'Layout', 'SharedVector']

CONTIGUOUS = 'contiguous'
SHARED = 'shared'


class SharedVector(object):
    '''Unknowns replicated on ``copies`` neighbours.

    All replicas are views into one flat buffer.'''
    def __init__(self, buffer, copies):
        self.buffer = buffer
        self.parts = numpy.split(buffer, copies)

    def __len__(self):
        return len(self.parts[0])


class Layout(object):
    r'''Storage of the unknowns of a projected system.

    :param kind: ``'contiguous'`` or ``'shared'``.
    :param n: number of unknowns held by this rank.
    :param scaling: (optional) real weights applied by :py:meth:`diag` in
      the contiguous case.
    :param copies: number of replicas of a shared unknown. The local inner
      product of shared storage counts every unknown ``copies`` times and is
      divided accordingly.
    '''
    def __init__(self, kind, n, scaling=None, copies=2):
        if kind not in (CONTIGUOUS, SHARED):
            raise ArgumentError('Invalid storage kind \'{0}\'.'.format(kind))
        if kind == SHARED and copies < 1:
            raise ArgumentError('Shared storage needs at least one copy.')
        self.kind = kind
        self.n = n
        self.scaling = scaling
        self.copies = copies

    def allocate(self, dtype=float):
        if self.kind == CONTIGUOUS:
            return numpy.zeros(self.n, dtype=dtype)
        return SharedVector(numpy.zeros(self.n * self.copies, dtype=dtype),
                            self.copies)

    def data(self, v):
        '''Flat array holding all local entries of ``v``.'''
        if self.kind == CONTIGUOUS:
            return v
        return v.buffer

    def values(self, v):
        '''The unknowns of ``v`` (one replica for shared storage).'''
        if self.kind == CONTIGUOUS:
            return v
        return v.parts[0]

    def assign(self, v, values):
        '''Set all replicas of ``v`` to ``values``.'''
        if self.kind == CONTIGUOUS:
            v[...] = values
        else:
            for part in v.parts:
                part[...] = values
        return v

    def copy(self, v):
        if self.kind == CONTIGUOUS:
            return v.copy()
        return SharedVector(v.buffer.copy(), self.copies)

    def dot(self, x, y):
        '''Local part of the global inner product.'''
        value = numpy.vdot(self.data(x), self.data(y)).real
        if self.kind == SHARED:
            value /= self.copies
        return value

    def axpy(self, alpha, x, y):
        r''':math:`y \leftarrow \alpha x + y` in place.'''
        data = self.data(y)
        data += alpha * self.data(x)
        return y

    def diag(self, x, out=None):
        '''Weight ``x`` by the scaling; shared storage is left unchanged.'''
        if out is None:
            out = self.copy(x)
        else:
            self.data(out)[...] = self.data(x)
        if self.kind == CONTIGUOUS and self.scaling is not None:
            out *= self.scaling
        return out
