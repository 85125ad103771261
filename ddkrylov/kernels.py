# -*- coding: utf8 -*-
'''
Dense kernels.

Thin calling convention over the BLAS/LAPACK routines shipped with scipy.
All vectors are ``numpy`` arrays of shape ``(n, mu)``. Local kernels never
communicate; the iterative methods sum their results across ranks.
'''

import numpy
import scipy.linalg
from scipy.linalg.lapack import get_lapack_funcs

from .utils import ArgumentError, Workspace

__all__ = ['ScalarTraits', 'allreduce_hermitian', 'axpby', 'diag', 'dot',
           'gram', 'pack_upper', 'posv', 'potrf', 'qr', 'solve_right',
           'solve_upper', 'unpack_hermitian']


class ScalarTraits(object):
    r'''Properties of a scalar type.

    For complex scalars, norms, tolerances and step lengths live in the
    underlying real type. The allocation policy follows from that: real
    scalars need one arena, complex scalars need a real arena next to the
    scalar one.
    '''
    def __init__(self, dtype):
        dtype = numpy.dtype(dtype)
        if not numpy.issubdtype(dtype, numpy.inexact):
            dtype = numpy.dtype(numpy.float64)
        self.dtype = dtype
        self.is_complex = numpy.issubdtype(dtype, numpy.complexfloating)
        self.real_type = numpy.finfo(dtype).dtype
        self.eps = numpy.finfo(self.real_type).eps

    @classmethod
    def from_arrays(cls, *args):
        '''Traits of the common dtype of all given arrays (``None`` is
        ignored).'''
        dtypes = [numpy.asarray(arg).dtype for arg in args if arg is not None]
        if not dtypes:
            raise ArgumentError('No array given to determine the dtype.')
        return cls(numpy.result_type(*dtypes))

    @property
    def buffers(self):
        '''Number of arenas :py:meth:`allocate` creates.'''
        return 2 if self.is_complex else 1

    def allocate(self, real=(), scalar=()):
        '''Allocate a :py:class:`~ddkrylov.utils.Workspace`.

        :param real: list of ``(name, shape)`` entries in the real type.
        :param scalar: list of ``(name, shape)`` entries in the scalar type.
        '''
        if self.is_complex:
            return Workspace([(self.real_type, list(real)),
                              (self.dtype, list(scalar))])
        return Workspace([(self.dtype, list(real) + list(scalar))])

    def __repr__(self):
        return 'ScalarTraits({0})'.format(self.dtype)


def diag(X, d=None, out=None):
    '''Scale the rows of ``X`` by ``d`` (a copy if ``d`` is ``None``).'''
    if out is None:
        out = numpy.empty_like(X)
    if d is None:
        out[...] = X
    else:
        numpy.multiply(d[:, None], X, out=out)
    return out


def dot(X, Y, d=None):
    r'''Column-wise local inner products :math:`x_j^* D y_j`.

    :return: array with ``shape==(mu,)``.
    '''
    if d is not None:
        Y = d[:, None] * Y
    return numpy.sum(X.conj() * Y, axis=0)


def gram(X, Y, d=None):
    r'''Local Gram matrix :math:`X^* D Y`.'''
    if d is not None:
        Y = d[:, None] * Y
    return numpy.dot(X.T.conj(), Y)


def axpby(alpha, X, beta, Y):
    r'''Column-wise :math:`Y \leftarrow \alpha X + \beta Y` in place.

    ``alpha`` and ``beta`` are scalars or arrays with one entry per column.
    '''
    Y *= beta
    Y += alpha * X
    return Y


def pack_upper(A):
    '''Upper triangle of a square matrix as a flat array.'''
    return A[numpy.triu_indices(A.shape[0])]


def unpack_hermitian(packed, mu, dtype=None):
    '''Hermitian matrix from its packed upper triangle.'''
    A = numpy.zeros((mu, mu), dtype=packed.dtype if dtype is None else dtype)
    A[numpy.triu_indices(mu)] = packed
    lower = numpy.tril_indices(mu, -1)
    A[lower] = A.T[lower].conj()
    return A


def allreduce_hermitian(comm, local, extra=None):
    '''Globally sum a Hermitian matrix through its upper triangle.

    :param extra: (optional) additional scalars summed in the same
      reduction, returned as second value.
    '''
    mu = local.shape[0]
    packed = pack_upper(local)
    if extra is not None:
        extra = numpy.asarray(extra, dtype=packed.dtype)
        packed = numpy.concatenate([extra, packed])
    comm.allreduce(packed)
    if extra is not None:
        return (unpack_hermitian(packed[len(extra):], mu),
                packed[:len(extra)])
    return unpack_hermitian(packed, mu)


def potrf(a, rtol=0.):
    r'''Cholesky factorization :math:`a = R^* R` with upper triangular R.

    :param rtol: (optional) a pivot :math:`|R_{jj}| \le rtol \max_k |R_{kk}|`
      is treated as numerically zero, which reveals rank deficiency that
      LAPACK accepts.
    :return: ``(R, info)``; ``info > 0`` is the 1-based index of the first
      failing pivot.
    '''
    potrf_, = get_lapack_funcs(('potrf',), (a,))
    R, info = potrf_(a, lower=0, clean=1)
    if info == 0 and rtol > 0 and R.size:
        pivots = numpy.abs(numpy.diag(R))
        small = numpy.flatnonzero(pivots <= rtol * pivots.max())
        if small.size:
            info = int(small[0]) + 1
    return numpy.triu(R), int(info)


def posv(a, b):
    r'''Solve :math:`a x = b` for Hermitian positive definite ``a``.

    :return: ``(x, info)``; ``info > 0`` if ``a`` is not positive definite.
    '''
    posv_, = get_lapack_funcs(('posv',), (a, b))
    _, x, info = posv_(a, b, lower=0)
    return x, int(info)


def solve_upper(R, B, trans=0):
    r'''Solve :math:`R X = B` (``trans=0``) or :math:`R^* X = B`
    (``trans='C'``) with upper triangular ``R``.'''
    if B.size == 0:
        return numpy.zeros(B.shape, dtype=numpy.result_type(R, B))
    return scipy.linalg.solve_triangular(R, B, trans=trans, lower=False)


def solve_right(X, R):
    r'''Compute :math:`X R^{-1}` with upper triangular ``R``.'''
    if X.size == 0:
        return numpy.zeros(X.shape, dtype=numpy.result_type(R, X))
    return scipy.linalg.solve_triangular(R, X.T, trans='T', lower=False).T


def qr(a):
    '''Full QR factorization (Householder, LAPACK ``geqrf``).'''
    return scipy.linalg.qr(a)
