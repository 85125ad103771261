# -*- coding: utf8 -*-
'''
Collection of standard functions.

This module provides the exceptions, the shaping of vectors, Givens
rotations and the workspace arena used by the iterative methods.
'''

import numpy

# for Givens rotations
import scipy.linalg.blas as blas

__all__ = ['ArgumentError', 'BreakdownError', 'CommunicatorError',
           'Givens', 'Workspace', 'orthonormality', 'shape_vec',
           'shape_vecs']


class ArgumentError(Exception):
    '''Raised when an argument is invalid.

    Analogue to ``ValueError`` which is not used here in order to be able
    to distinguish between built-in errors and ``ddkrylov`` errors.
    '''


class BreakdownError(Exception):
    '''Raised when a small dense factorization reveals rank deficiency.

    The solvers catch this error and continue with a better conditioned
    method, it never leaves :py:meth:`~ddkrylov.linsys._IterativeMethod.solve`.
    The attribute ``info`` holds the LAPACK-style index of the failing pivot.
    '''
    def __init__(self, msg, info=None):
        super(BreakdownError, self).__init__(msg)
        self.info = info


class CommunicatorError(Exception):
    '''Raised when ranks issue mismatched reductions.'''


def shape_vec(x):
    '''Take a (n,) ndarray and return it as (n,1) ndarray.'''
    return numpy.reshape(x, (x.shape[0], 1))


def shape_vecs(*args):
    '''Reshape all ndarrays with ``shape==(n,)`` to ``shape==(n,1)``.

    Recognizes ndarrays and ignores all others. For contiguous input the
    reshaped array is a view, so in-place updates reach the caller.'''
    ret_args = []
    flat_vecs = True
    for arg in args:
        if type(arg) is numpy.ndarray:
            if len(arg.shape) == 1:
                arg = shape_vec(arg)
            else:
                flat_vecs = False
        ret_args.append(arg)
    return flat_vecs, ret_args


def orthonormality(V, d=None):
    '''Measure orthonormality of given basis.

    :param V: a matrix :math:`V=[v_1,\\ldots,v_n]` with ``shape==(N,n)``.
    :param d: (optional) real weights of the inner product
      :math:`\\langle x,y\\rangle = x^* D y`.
    :return: :math:`\\| I_n - \\langle V,V \\rangle \\|_2`.
    '''
    if V.shape[1] == 0:
        return 0.
    W = V if d is None else d[:, None] * V
    return numpy.linalg.norm(numpy.eye(V.shape[1]) - numpy.dot(V.T.conj(), W),
                             2)


class Givens(object):
    def __init__(self, x):
        """Givens rotation that eliminates the second entry of x.

        Used by the Arnoldi process to fold a new Hessenberg column into the
        triangular factor. The rotation
        :math:`G=\\begin{bmatrix}c&s\\\\-\\overline{s}&c\\end{bmatrix}`
        satisfies
        :math:`Gx=\\begin{bmatrix}r\\\\0\\end{bmatrix}`.
        """
        if x.shape != (2, 1):
            raise ArgumentError('x is not a vector of shape (2,1)')

        a = x[0, 0].item()
        b = x[1, 0].item()
        if numpy.isreal(x).all():
            a = numpy.real(a)
            b = numpy.real(b)
            c, s = blas.drotg(a, b)
        else:
            c, s = blas.zrotg(a, b)

        self.c = c
        self.s = s
        self.r = c*a + s*b
        self.G = numpy.array([[c, s], [-numpy.conj(s), c]])

    def apply(self, x):
        """Apply Givens rotation to vector x."""
        return numpy.dot(self.G, x)


class Workspace(object):
    r'''Named views into flat arenas.

    Every solver allocates its scratch memory once at entry. The layout is a
    list of ``(name, shape)`` pairs per arena; offsets are computed here and
    each view is a reshaped slice of the arena, so writes through a view
    modify the arena.

    >>> ws = Workspace([(numpy.float64, [('r', (4, 2)), ('res', (2,))])])
    >>> ws['r'].shape
    (4, 2)
    '''
    def __init__(self, arenas):
        '''
        :param arenas: list of ``(dtype, layout)`` pairs, one per arena.
        '''
        self.arenas = []
        self.offsets = {}
        for index, (dtype, layout) in enumerate(arenas):
            offset = 0
            for name, shape in layout:
                if name in self.offsets:
                    raise ArgumentError(
                        'Duplicate workspace entry \'{0}\'.'.format(name))
                shape = tuple(int(e) for e in numpy.atleast_1d(shape))
                if any(e < 0 for e in shape):
                    raise ArgumentError(
                        'Negative extent in workspace entry \'{0}\'.'
                        .format(name))
                size = int(numpy.prod(shape, dtype=int))
                self.offsets[name] = (index, offset, size, shape)
                offset += size
            self.arenas.append(numpy.zeros(offset, dtype=dtype))
        self._views = {}

    @property
    def size(self):
        '''Total number of scalars held by all arenas.'''
        return sum(arena.size for arena in self.arenas)

    def __contains__(self, name):
        return name in self.offsets

    def __getitem__(self, name):
        if name not in self._views:
            index, offset, size, shape = self.offsets[name]
            arena = self.arenas[index]
            if offset + size > arena.size:
                raise ArgumentError(
                    'Workspace entry \'{0}\' exceeds its arena.'.format(name))
            self._views[name] = arena[offset:offset+size].reshape(shape)
        return self._views[name]
