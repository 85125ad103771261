# -*- coding: utf8 -*-
r'''
Solution update of the GMRES family.

After :math:`k` Arnoldi steps the coefficients :math:`y_k` solve the
triangular system :math:`R_k y_k = s_k`, and the correction of the iterate
is :math:`V_k y_k` (left preconditioning), :math:`M V_k y_k` (right
preconditioning) or :math:`Z_k y_k` (flexible preconditioning, where
:math:`Z_k` holds the preconditioned basis vectors).
'''

import numpy

from . import kernels

__all__ = ['update', 'block_update']


def _correct(operator, variant, x, correction, excluded):
    if variant == 'right':
        correction = operator.apply(correction, excluded)
    x += correction
    return x


def update(operator, variant, x, R, s, V, dims, Z=None, excluded=False):
    '''Update ``x`` in place from an :py:class:`~ddkrylov.arnoldi.Arnoldi`
    cycle.

    :param dims: number of basis vectors to use for every column. A column
      that converged in an earlier cycle has ``0``.
    '''
    basis = Z if variant == 'flexible' else V
    correction = numpy.zeros(x.shape, dtype=numpy.result_type(x, V))
    for nu, k in enumerate(dims):
        if k <= 0:
            continue
        y = kernels.solve_upper(R[:k, :k, nu], s[:k, nu])
        correction[:, nu] = numpy.dot(basis[:k, :, nu].T, y)
    return _correct(operator, variant, x, correction, excluded)


def block_update(operator, variant, x, R, s, V, k, Z=None, excluded=False):
    '''Update ``x`` in place from ``k`` steps of
    :py:class:`~ddkrylov.arnoldi.BlockArnoldi`; one triangular solve for all
    columns.'''
    mu = x.shape[1]
    basis = Z if variant == 'flexible' else V
    correction = numpy.zeros(x.shape, dtype=numpy.result_type(x, V))
    if k > 0:
        Y = kernels.solve_upper(R[:k*mu, :k*mu], s[:k*mu])
        correction += numpy.einsum('jnm,jmp->np', basis[:k],
                                   Y.reshape(k, mu, mu))
    return _correct(operator, variant, x, correction, excluded)
