# -*- coding: utf8 -*-
'''
Sparse direct solver for subdomain and coarse problems.

Factorization failures are not handled here; scipy's exceptions reach the
caller unchanged.
'''

import warnings

import numpy
import scipy.sparse
import scipy.sparse.linalg

from .utils import ArgumentError

__all__ = ['DirectSolver']


class DirectSolver(object):
    '''LU factorization of a sparse matrix with SuperLU.

    Symmetric matrices are ordered on the pattern of :math:`A+A^T` and
    pivot on the diagonal, which preserves symmetry of the factorization.

    Usage::

        solver = DirectSolver().numfact(A, symmetric=True)
        x = solver.solve(b.copy())
    '''
    def __init__(self):
        self._lu = None
        self.n = 0
        self.symmetric = False

    def numfact(self, A, symmetric=False):
        '''Symbolic and numeric factorization of ``A``.'''
        if A.shape[0] != A.shape[1]:
            raise ArgumentError('Only square matrices can be factorized.')
        if not scipy.sparse.issparse(A):
            warnings.warn('Factorizing a dense matrix with a sparse solver.')
        A = scipy.sparse.csc_matrix(A)
        if symmetric:
            self._lu = scipy.sparse.linalg.splu(
                A, permc_spec='MMD_AT_PLUS_A', diag_pivot_thresh=0.,
                options=dict(SymmetricMode=True))
        else:
            self._lu = scipy.sparse.linalg.splu(A, permc_spec='COLAMD')
        self.n = A.shape[0]
        self.symmetric = symmetric
        return self

    def solve(self, b, x=None):
        '''Solve for one or many right hand sides.

        :param b: array with ``shape==(n,)`` or ``shape==(n,mu)``.
        :param x: (optional) output array. If omitted, ``b`` is overwritten
          with the solution.
        '''
        if self._lu is None:
            raise ArgumentError('numfact has to be called before solve.')
        out = b if x is None else x
        if not b.size:
            return out
        if numpy.iscomplexobj(b) and \
                not numpy.issubdtype(self.dtype, numpy.complexfloating):
            out[...] = self._lu.solve(numpy.ascontiguousarray(b.real)) \
                + 1j * self._lu.solve(numpy.ascontiguousarray(b.imag))
        else:
            out[...] = self._lu.solve(numpy.asarray(b, dtype=self.dtype))
        return out

    @property
    def dtype(self):
        return None if self._lu is None else self._lu.L.dtype
