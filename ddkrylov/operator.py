# -*- coding: utf8 -*-
r'''
Operators driven by the iterative methods.

The iterative methods only talk to an operator through the methods of
:py:class:`Operator` (and :py:class:`ProjectedOperator` for
:py:class:`~ddkrylov.cg.Pcg`). Global reductions are issued by the methods,
not by the operator; an operator may however communicate on its own
(domain) communicator inside :py:meth:`Operator.gmv` and
:py:meth:`Operator.apply`.

Two reference implementations are provided: :py:class:`SubdomainOperator`,
a matrix distributed over (overlapping) subdomains, and
:py:class:`ConstrainedOperator`, a symmetric positive definite system
restricted to an affine constraint set.
'''

import numpy
import scipy.linalg
import scipy.sparse
from scipy.sparse.linalg import aslinearoperator

from .comm import as_communicator
from .direct import DirectSolver
from .storage import CONTIGUOUS, SHARED, Layout
from .utils import ArgumentError

__all__ = ['Operator', 'SubdomainOperator', 'ProjectedOperator',
           'ConstrainedOperator']


class Operator(object):
    r'''Contract of a distributed linear operator.

    :param dof: number of local unknowns. Ranks that hold no unknowns
      (*excluded* ranks) use ``dof=0``.
    :param scaling: (optional) real partition of unity weights :math:`d`.
      Local inner products are :math:`x^* D y` with :math:`D=diag(d)`, their
      global sum is the inner product of the global vectors.
    :param prefix: namespace of the options of this operator.
    :param mult: number of multipliers held by this rank (projected systems).
    :param eliminated: number of leading unknowns of a solution vector that
      are not iterated on.

    The base class applies the identity preconditioner and cannot apply the
    operator itself, which makes it a valid operator for excluded ranks.
    '''
    def __init__(self, dof, scaling=None, prefix='', mult=0, eliminated=0,
                 dtype=float):
        self.dof = dof
        self.scaling = scaling
        self.prefix = prefix
        self.mult = mult
        self.eliminated = eliminated
        self.dtype = numpy.dtype(dtype)
        if scaling is not None and len(scaling) != dof:
            raise ArgumentError('scaling has length {0} but dof={1}.'
                                .format(len(scaling), dof))

    def start(self, b, x, mu=1, excluded=False):
        '''Prepare a solve; returns whether scratch memory was allocated.'''
        return False

    def end(self, allocated):
        '''Release what :py:meth:`start` allocated.'''

    def gmv(self, x):
        '''Global matrix-vector product of ``mu`` columns.'''
        raise NotImplementedError('gmv has to be implemented by the '
                                  'operator.')

    def apply(self, x, excluded=False):
        '''Apply the preconditioner to ``mu`` columns.'''
        return numpy.array(x, copy=True)


class SubdomainOperator(Operator):
    r'''Matrix distributed over subdomains.

    Rank :math:`i` holds the rows ``indices`` of the global matrix and the
    corresponding entries of all vectors. Subdomains may overlap; then the
    ``scaling`` has to be a partition of unity, i.e.,
    :math:`\sum_i R_i^T D_i R_i = I`.

    :param A: global matrix (``numpy`` array or scipy sparse matrix).
    :param indices: (optional) global indices of the local unknowns.
      Defaults to all unknowns.
    :param comm: (optional) communicator of the ranks holding a subdomain.
    :param M: (optional) preconditioner: ``'jacobi'``, ``'asm'`` (additive
      Schwarz with exact subdomain solves), ``'ras'`` (restricted additive
      Schwarz), a matrix or linear operator acting on global vectors, or
      ``None`` for no preconditioner.
    '''
    def __init__(self, A, indices=None, scaling=None, comm=None, M=None,
                 prefix=''):
        if len(A.shape) != 2 or A.shape[0] != A.shape[1]:
            raise ArgumentError('A has to be a square matrix.')
        self.A = A.tocsr() if scipy.sparse.issparse(A) else numpy.asarray(A)
        self.N = A.shape[0]
        self.indices = numpy.arange(self.N) if indices is None \
            else numpy.asarray(indices, dtype=int)
        if len(numpy.unique(self.indices)) != len(self.indices):
            raise ArgumentError('indices must not contain duplicates.')
        self.comm = as_communicator(comm)
        super(SubdomainOperator, self).__init__(
            len(self.indices), scaling=scaling, prefix=prefix,
            dtype=self.A.dtype)

        self.M = M
        if isinstance(M, str):
            if M == 'jacobi':
                self._diag = numpy.asarray(
                    self.A.diagonal())[self.indices]
            elif M in ('asm', 'ras'):
                if M == 'ras' and scaling is None and self.comm.size > 1:
                    raise ArgumentError('ras needs a partition of unity.')
                local = self.A[self.indices][:, self.indices]
                self._solver = DirectSolver().numfact(
                    scipy.sparse.csc_matrix(local),
                    symmetric=_is_hermitian(local))
            else:
                raise ArgumentError(
                    'Invalid preconditioner \'{0}\'. '.format(M)
                    + 'Valid are jacobi, asm and ras.')
        elif M is not None:
            self._M = aslinearoperator(M)

    def restrict(self, x):
        '''Local entries of a global vector.'''
        return numpy.array(x[self.indices], copy=True)

    def assemble(self, x, weighted=True):
        '''Global vector from the (consistent) local entries of all ranks.'''
        flat = x.ndim == 1
        x = x.reshape(x.shape[0], -1)
        y = numpy.zeros((self.N, x.shape[1]),
                        dtype=numpy.result_type(self.dtype, x))
        if weighted and self.scaling is not None:
            y[self.indices] = self.scaling[:, None] * x
        else:
            y[self.indices] = x
        self.comm.allreduce(y)
        return y[:, 0] if flat else y

    def gmv(self, x):
        return self.A.dot(self.assemble(x))[self.indices]

    def apply(self, x, excluded=False):
        if excluded or self.M is None:
            return numpy.array(x, copy=True)
        if isinstance(self.M, str):
            if self.M == 'jacobi':
                return x / self._diag.reshape((-1,) + (1,) * (x.ndim - 1))
            y = self._solver.solve(numpy.array(
                x, dtype=numpy.result_type(self.dtype, x)))
            return self.assemble(y, weighted=self.M == 'ras')[self.indices]
        return self._M.dot(self.assemble(x))[self.indices]


def _is_hermitian(A):
    A = scipy.sparse.csr_matrix(A)
    return abs(A - A.T.conj()).max() <= 1e-14 * max(abs(A).max(), 1.) \
        if A.nnz else True


class ProjectedOperator(Operator):
    r'''Contract of a projected system for :py:class:`~ddkrylov.cg.Pcg`.

    In addition to :py:class:`Operator`, a projected system provides the
    projection onto the constraint set, its transpose, a preconditioner and
    the storage :py:attr:`layout` of its unknowns. :py:meth:`gmv` applies the
    operator of the projected system to one vector of that layout.
    '''
    layout = None

    def allocate_single(self):
        '''One vector in the native storage.'''
        return self.layout.allocate(self.dtype)

    def allocate_array(self):
        '''Storage for the residual (and the multipliers if those are not
        stored in the solution vector).'''
        if self.layout.kind == SHARED:
            return [self.allocate_single(), self.allocate_single()]
        return [self.allocate_single()]

    def start_projected(self, f, x, storage, excluded=False):
        '''Compute the feasible initial iterate and the initial residual
        in ``storage[0]``; returns whether scratch memory was allocated.'''
        raise NotImplementedError('start_projected has to be implemented.')

    def project(self, x, trans='N', excluded=False):
        '''Apply the projection (``trans='N'``) or its transpose
        (``trans='T'``).'''
        raise NotImplementedError('project has to be implemented.')

    def precond(self, r):
        return self.layout.copy(r)

    def compute_dot(self, x, y, comm, excluded=False):
        '''Global real inner product.'''
        buf = numpy.zeros(1)
        if not excluded:
            buf[0] = self.layout.dot(x, y)
        comm.allreduce(buf)
        return buf[0]

    def compute_solution(self, f, x, storage, excluded=False):
        '''Write the solution into ``x`` once the iteration stopped.'''


class ConstrainedOperator(ProjectedOperator):
    r'''Symmetric positive definite system on an affine constraint set.

    Solves

    .. math::

      \min_x \frac{1}{2} x^* F x - \operatorname{Re}(f^* x)
      \quad\text{subject to}\quad G^* x = e

    with the projection :math:`P = I - Q G (G^* Q G)^{-1} G^*` onto
    :math:`\ker G^*`. For :math:`Q=I` the projection is orthogonal and
    :math:`P^*=P`.

    :param F: symmetric positive definite matrix of the free unknowns.
    :param G: constraint matrix with full column rank.
    :param e: (optional) right hand side of the constraints, zero by default.
    :param Q: (optional) positive weights or matrix of the projection.
    :param M: (optional) preconditioner of ``F``.
    :param kind: storage of the unknowns, ``'contiguous'`` or ``'shared'``.
    :param eliminated: number of leading entries of the solution vector that
      are kept fixed.
    '''
    def __init__(self, F, G, e=None, Q=None, M=None, kind=CONTIGUOUS,
                 eliminated=0, prefix=''):
        self.F = aslinearoperator(F)
        self.G = numpy.asarray(G).reshape(F.shape[0], -1)
        n = F.shape[0]
        dtype = numpy.result_type(self.F.dtype, self.G.dtype)
        super(ConstrainedOperator, self).__init__(
            n + eliminated, prefix=prefix, mult=n, eliminated=eliminated,
            dtype=dtype)
        self.e = numpy.zeros(self.G.shape[1], dtype=dtype) if e is None \
            else numpy.asarray(e)
        if Q is None:
            self.Q = None
        elif numpy.ndim(Q) == 1:
            self.Q = aslinearoperator(scipy.sparse.diags(Q))
        else:
            self.Q = aslinearoperator(Q)
        self.M = None if M is None else aslinearoperator(M)
        QG = self._QG = self._apply_Q(self.G)
        self._GQG = scipy.linalg.cho_factor(numpy.dot(self.G.T.conj(), QG))
        self.layout = Layout(kind, n)

    def _apply_Q(self, X):
        return X.copy() if self.Q is None else self.Q.matmat(X)

    def _project(self, v, trans):
        if trans == 'N':
            return v - numpy.dot(self._QG, scipy.linalg.cho_solve(
                self._GQG, numpy.dot(self.G.T.conj(), v)))
        return v - numpy.dot(self.G, scipy.linalg.cho_solve(
            self._GQG, numpy.dot(self._QG.T.conj(), v)))

    def particular_solution(self):
        r''':math:`x_0 = Q G (G^* Q G)^{-1} e` with :math:`G^* x_0 = e`.'''
        return numpy.dot(self._QG, scipy.linalg.cho_solve(self._GQG, self.e))

    def project(self, x, trans='N', excluded=False):
        if trans not in ('N', 'T'):
            raise ArgumentError('trans has to be \'N\' or \'T\'.')
        out = self.layout.copy(x)
        if not excluded:
            self.layout.assign(out, self._project(self.layout.values(x),
                                                  trans))
        return out

    def start_projected(self, f, x, storage, excluded=False):
        if excluded:
            return False
        free = x[self.eliminated:]
        lam = self.particular_solution() + self._project(free, 'N')
        if self.layout.kind == SHARED:
            self.layout.assign(storage[1], lam)
        else:
            free[...] = lam
        r = self._project(f[self.eliminated:] - self.F.matvec(lam), 'T')
        self.layout.assign(storage[0], r)
        return False

    def gmv(self, p):
        out = self.layout.copy(p)
        self.layout.assign(out, self.F.matvec(self.layout.values(p)))
        return out

    def precond(self, r):
        out = self.layout.copy(r)
        if self.M is not None:
            self.layout.assign(out, self.M.matvec(self.layout.values(r)))
        return out

    def compute_solution(self, f, x, storage, excluded=False):
        if not excluded and self.layout.kind == SHARED:
            x[self.eliminated:] = self.layout.values(storage[1])
