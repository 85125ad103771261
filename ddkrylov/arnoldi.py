# -*- coding: utf8 -*-
r'''
Arnoldi and Block-Arnoldi processes.

Both build a basis of the Krylov subspace of the preconditioned operator one
vector (block) per step and reduce the (block) Hessenberg matrix to upper
triangular form on the fly, so that the residual norm of the least squares
problem is available after every step.

All inner products are weighted by the scaling of the operator and summed
over the ranks of the communicator. Excluded ranks hold no unknowns; their
local contributions are empty sums, i.e. zero, and they issue exactly the
same reductions as all other ranks.
'''

import numpy

from . import kernels
from .utils import ArgumentError, BreakdownError, Givens

__all__ = ['Arnoldi', 'BlockArnoldi', 'block_qr', 'rank_tolerance']


def rank_tolerance(eps):
    '''Relative size below which a pivot of a Gram matrix factorization
    counts as zero.'''
    return 1e1 * numpy.sqrt(eps)


def _reorthos(ortho):
    if ortho not in ('cgs', 'mgs', 'dcgs', 'dmgs'):
        raise ArgumentError(
            'Invalid value \'{0}\' for argument \'ortho\'. '.format(ortho)
            + 'Valid are cgs, mgs, dcgs and dmgs.')
    return 1 if ortho.startswith('d') else 0


def block_qr(P, comm, d=None, ortho='cgs', rtol=0.):
    r'''Distributed QR factorization :math:`P = Q R` in the weighted inner
    product.

    ``'cgs'`` and ``'dcgs'`` use Cholesky-QR (one reduction), ``'mgs'`` and
    ``'dmgs'`` modified Gram-Schmidt (one reduction per coefficient).

    :raises BreakdownError: if the columns of ``P`` are numerically linearly
      dependent.
    :return: ``(Q, R)``.
    '''
    mu = P.shape[1]
    _reorthos(ortho)
    if ortho in ('cgs', 'dcgs'):
        G = kernels.allreduce_hermitian(comm, kernels.gram(P, P, d))
        R, info = kernels.potrf(G, rtol=rtol)
        if info:
            raise BreakdownError('Block is rank deficient (pivot {0}).'
                                 .format(info), info)
        return kernels.solve_right(P, R), R

    Q = numpy.array(P, copy=True)
    R = numpy.zeros((mu, mu), dtype=Q.dtype)
    initial = numpy.array(kernels.dot(Q, Q, d).real)
    comm.allreduce(initial)
    initial = numpy.sqrt(initial)
    for j in range(mu):
        for i in range(j):
            coef = numpy.array([kernels.dot(Q[:, [i]], Q[:, [j]], d)[0]])
            comm.allreduce(coef)
            R[i, j] = coef[0]
            Q[:, j] -= coef[0] * Q[:, i]
        nrm = numpy.array([kernels.dot(Q[:, [j]], Q[:, [j]], d)[0].real])
        comm.allreduce(nrm)
        nrm = numpy.sqrt(nrm[0])
        if initial[j] == 0 or nrm <= max(rtol, 0.) * initial[j]:
            raise BreakdownError('Block is rank deficient (column {0}).'
                                 .format(j + 1), j + 1)
        R[j, j] = nrm
        Q[:, j] /= nrm
    return Q, R


class _Process(object):
    '''Common part of :py:class:`Arnoldi` and :py:class:`BlockArnoldi`.'''
    def __init__(self, operator, comm, maxiter, mu, variant, ortho, traits,
                 excluded):
        if variant not in ('left', 'right', 'flexible'):
            raise ArgumentError('Invalid variant \'{0}\'.'.format(variant))
        self.operator = operator
        self.comm = comm
        self.maxiter = maxiter
        self.mu = mu
        self.variant = variant
        self.ortho = ortho
        self.reorthos = _reorthos(ortho)
        self.traits = traits
        self.excluded = excluded
        self.n = 0 if excluded else operator.dof
        self.d = None if excluded else operator.scaling
        self.iter = 0

    def _operator(self, v, k):
        '''Apply the preconditioned operator to the basis vector ``v``.'''
        op = self.operator
        if self.variant == 'left':
            w = v if self.excluded else op.gmv(v)
            return numpy.array(op.apply(w, self.excluded),
                               dtype=self.traits.dtype)
        t = op.apply(v, self.excluded)
        if self.variant == 'flexible':
            self.Z[k] = t
        w = t if self.excluded else op.gmv(t)
        return numpy.array(w, dtype=self.traits.dtype)

    def _norms(self, w):
        buf = numpy.array(kernels.dot(w, w, self.d).real)
        self.comm.allreduce(buf)
        return numpy.sqrt(buf)


class Arnoldi(_Process):
    r'''Arnoldi process for ``mu`` independent right hand sides.

    The right hand sides share no basis: column :math:`\nu` of every array
    belongs to the Krylov subspace of column :math:`\nu` of the initial
    vector. After :math:`k` steps

    * ``V[:k+1]`` is the orthonormal basis,
    * ``Z[:k]`` are the preconditioned basis vectors (flexible variant),
    * ``R[:k, :k, nu]`` is the upper triangular factor of the Hessenberg
      matrix of column ``nu`` (rows and columns as in the Hessenberg matrix),
    * ``s[:k+1, nu]`` is the rotated right hand side of the least squares
      problem, :math:`|s_{k,\nu}|` its residual norm.

    :param ortho: ``'cgs'`` (one batched reduction per step), ``'mgs'`` (one
      reduction per basis vector), ``'dcgs'`` and ``'dmgs'`` orthogonalize
      twice.
    :param store_arnoldi: keep the Hessenberg matrix ``H`` before rotation.
    '''
    def __init__(self, operator, comm, maxiter, mu=1, variant='left',
                 ortho='cgs', traits=None, excluded=False,
                 store_arnoldi=False):
        super(Arnoldi, self).__init__(operator, comm, maxiter, mu, variant,
                                      ortho, traits, excluded)
        m, n = maxiter, self.n
        scalar = [('V', (m + 1, n, mu)), ('R', (m + 1, m, mu)),
                  ('s', (m + 1, mu))]
        if variant == 'flexible':
            scalar.append(('Z', (m, n, mu)))
        if store_arnoldi:
            scalar.append(('H', (m + 1, m, mu)))
        self.workspace = traits.allocate(scalar=scalar)
        self.V = self.workspace['V']
        self.R = self.workspace['R']
        self.s = self.workspace['s']
        self.Z = self.workspace['Z'] if variant == 'flexible' else None
        self.H = self.workspace['H'] if store_arnoldi else None
        self.G = [[] for _ in range(mu)]

    def start(self, v):
        '''Start a new cycle with initial vectors ``v``.

        :return: the norms of the columns of ``v``.
        '''
        for arena in self.workspace.arenas:
            arena[...] = 0
        self.G = [[] for _ in range(self.mu)]
        self.iter = 0
        beta = self._norms(v)
        numpy.divide(v, beta, out=self.V[0], where=beta > 0)
        self.s[0] = beta
        return beta

    def advance(self):
        '''Carry out one iteration of Arnoldi.

        :return: the residual norms of the least squares problems.
        '''
        k = self.iter
        if k >= self.maxiter:
            raise ArgumentError('Maximum number of iterations reached.')
        w = self._operator(self.V[k], k)
        h = numpy.zeros((k + 2, self.mu), dtype=self.traits.dtype)

        for reortho in range(self.reorthos + 1):
            if self.ortho in ('cgs', 'dcgs'):
                coef = numpy.array([kernels.dot(self.V[j], w, self.d)
                                    for j in range(k + 1)])
                self.comm.allreduce(coef)
                h[:k+1] += coef
                w -= numpy.einsum('jnm,jm->nm', self.V[:k+1], coef)
            else:
                for j in range(k + 1):
                    coef = kernels.dot(self.V[j], w, self.d)
                    self.comm.allreduce(coef)
                    h[j] += coef
                    w -= self.V[j] * coef
        h[k+1] = self._norms(w)
        numpy.divide(w, h[k+1].real, out=self.V[k+1], where=h[k+1].real > 0)
        if self.H is not None:
            self.H[:k+2, k] = h

        # Apply previous Givens rotations, then compute and apply new one.
        for nu in range(self.mu):
            for j in range(k):
                h[j:j+2, nu] = self.G[nu][j].apply(h[j:j+2, nu])
            G = Givens(h[k:k+2, [nu]])
            self.G[nu].append(G)
            h[k:k+2, nu] = G.apply(h[k:k+2, nu])
            self.s[k:k+2, nu] = G.apply(self.s[k:k+2, nu])
        self.R[:k+2, k] = h
        self.iter += 1
        return numpy.abs(self.s[k+1])

    def get(self, nu=0):
        '''Basis and Hessenberg matrix of column ``nu`` with
        :math:`AV_k=V_{k+1}\\underline{H}_k` (requires ``store_arnoldi``).'''
        if self.H is None:
            raise ArgumentError('Hessenberg matrix was not stored.')
        k = self.iter
        return self.V[:k+1, :, nu].T, self.H[:k+1, :k, nu]


class BlockArnoldi(_Process):
    r'''Block Arnoldi process for ``mu`` coupled right hand sides.

    The basis ``V[k]`` of step ``k`` is a block of ``mu`` vectors, the
    Hessenberg matrix has blocks of size ``mu`` and its subdiagonal blocks
    are the upper triangular Cholesky factors of the Gram matrices of the
    new blocks. A Householder QR factorization of the trailing
    ``2 mu x mu`` block reduces each new block column.
    '''
    def __init__(self, operator, comm, maxiter, mu=1, variant='left',
                 ortho='cgs', traits=None, excluded=False,
                 store_arnoldi=False):
        super(BlockArnoldi, self).__init__(operator, comm, maxiter, mu,
                                           variant, ortho, traits, excluded)
        m, n = maxiter, self.n
        scalar = [('V', (m + 1, n, mu)), ('R', ((m + 1) * mu, m * mu)),
                  ('s', ((m + 1) * mu, mu))]
        if variant == 'flexible':
            scalar.append(('Z', (m, n, mu)))
        if store_arnoldi:
            scalar.append(('H', ((m + 1) * mu, m * mu)))
        self.workspace = traits.allocate(scalar=scalar)
        self.V = self.workspace['V']
        self.R = self.workspace['R']
        self.s = self.workspace['s']
        self.Z = self.workspace['Z'] if variant == 'flexible' else None
        self.H = self.workspace['H'] if store_arnoldi else None
        self.Q = []
        self.rtol = rank_tolerance(traits.eps)

    def start(self, v):
        '''Start a new cycle with the initial block ``v``.

        :raises BreakdownError: if ``v`` is rank deficient.
        :return: the norms of the columns of ``v``.
        '''
        for arena in self.workspace.arenas:
            arena[...] = 0
        self.Q = []
        self.iter = 0
        self.V[0], R = block_qr(v, self.comm, self.d, self.ortho, self.rtol)
        self.s[:self.mu] = R
        return numpy.linalg.norm(R, axis=0)

    def advance(self):
        '''Carry out one iteration of Block-Arnoldi.

        :raises BreakdownError: if the new block is rank deficient.
        :return: the residual norms of the columns.
        '''
        k, mu = self.iter, self.mu
        if k >= self.maxiter:
            raise ArgumentError('Maximum number of iterations reached.')
        w = self._operator(self.V[k], k)
        h = numpy.zeros(((k + 2) * mu, mu), dtype=self.traits.dtype)

        for reortho in range(self.reorthos + 1):
            if self.ortho in ('cgs', 'dcgs'):
                coef = numpy.array([kernels.gram(self.V[j], w, self.d)
                                    for j in range(k + 1)])
                self.comm.allreduce(coef)
                h[:(k+1)*mu] += coef.reshape((k + 1) * mu, mu)
                w -= numpy.einsum('jnm,jmp->np', self.V[:k+1], coef)
            else:
                for j in range(k + 1):
                    coef = kernels.gram(self.V[j], w, self.d)
                    self.comm.allreduce(coef)
                    h[j*mu:(j+1)*mu] += coef
                    w -= numpy.dot(self.V[j], coef)
        G = kernels.allreduce_hermitian(self.comm, kernels.gram(w, w, self.d))
        R, info = kernels.potrf(G, rtol=self.rtol)
        if info:
            raise BreakdownError('Block Arnoldi breakdown (pivot {0}).'
                                 .format(info), info)
        self.V[k+1] = kernels.solve_right(w, R)
        h[(k+1)*mu:] = R
        if self.H is not None:
            self.H[:(k+2)*mu, k*mu:(k+1)*mu] = h

        # Apply previous reflections, then factorize the new block.
        for j in range(k):
            h[j*mu:(j+2)*mu] = numpy.dot(self.Q[j].T.conj(),
                                         h[j*mu:(j+2)*mu])
        Q, T = kernels.qr(h[k*mu:(k+2)*mu])
        self.Q.append(Q)
        h[k*mu:(k+2)*mu] = T
        self.s[k*mu:(k+2)*mu] = numpy.dot(Q.T.conj(), self.s[k*mu:(k+2)*mu])
        self.R[:(k+2)*mu, k*mu:(k+1)*mu] = h
        self.iter += 1
        return numpy.linalg.norm(self.s[(k+1)*mu:(k+2)*mu], axis=0)
