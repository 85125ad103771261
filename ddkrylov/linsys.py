# -*- coding: utf8 -*-
import logging

import numpy

from . import kernels, utils
from .arnoldi import Arnoldi, BlockArnoldi
from .comm import as_communicator
from .convergence import ConvergenceMonitor
from .options import Options
from .update import block_update, update

__all__ = ['Gmres', 'Bgmres']

logger = logging.getLogger(__name__)


class _IterativeMethod(object):
    '''Prototype of an iterative method driven by an operator.'''
    method = None

    def __init__(self, operator, options=None, comm=None, excluded=False,
                 store_arnoldi=False):
        r'''Read the configuration and perform checks.

        :param operator: an :py:class:`~ddkrylov.operator.Operator`.
        :param options: (optional) :py:class:`~ddkrylov.options.Options`;
          the keys are looked up with the prefix of the operator.
        :param comm: (optional) communicator of all ranks taking part in the
          solve. Defaults to a single process.
        :param excluded: (optional) set on ranks that hold no unknowns. Such
          ranks skip all local work but issue the same reductions as all
          other ranks.
        :param store_arnoldi: (optional) keep the basis and the Hessenberg
          matrix (GMRES only).

        After :py:meth:`solve`, the instance contains the following
        attributes:

          * ``iter``: the number of iterations.
          * ``monitor``: the
            :py:class:`~ddkrylov.convergence.ConvergenceMonitor`
            with the per-column convergence counters.
          * ``resnorms``: residual norms of all iterations, relative if the
            tolerance is positive.
          * ``fallback``: the method that finished the solve after a
            breakdown, or ``None``.
        '''
        self.operator = operator
        self.options = Options() if options is None else options
        self.config = self.options.config(operator.prefix, method=self.method)
        self.comm = as_communicator(comm)
        self.excluded = excluded
        self.store_arnoldi = store_arnoldi
        self.monitor = None
        self.fallback = None
        self.iter = 0

    @property
    def resnorms(self):
        return [] if self.monitor is None else self.monitor.resnorms

    @property
    def verbose(self):
        return self.config.verbosity > 0 and self.comm.rank == 0

    def _prepare(self, b, x):
        _, (b, x) = utils.shape_vecs(numpy.asarray(b), x)
        n = 0 if self.excluded else self.operator.dof
        if not isinstance(x, numpy.ndarray) or x.shape != b.shape:
            raise utils.ArgumentError('x has to be an array of the shape of '
                                      'b.')
        if b.shape[0] != n:
            raise utils.ArgumentError(
                'b has {0} rows but the operator holds {1} unknowns.'
                .format(b.shape[0], n))
        traits = kernels.ScalarTraits.from_arrays(
            b, x, numpy.empty(0, dtype=self.operator.dtype))
        if not numpy.can_cast(traits.dtype, x.dtype, casting='same_kind') \
                or not numpy.issubdtype(x.dtype, numpy.inexact):
            raise utils.ArgumentError(
                'x of dtype {0} cannot hold the {1} solution.'
                .format(x.dtype, traits.dtype))
        return b, x, traits

    def _monitor(self, mu, method=None):
        return ConvergenceMonitor(method or self.method, mu, self.config.tol,
                                  self.config.maxiter, self.config.verbosity,
                                  self.comm.rank)

    def solve(self, b, x):
        '''Solve for the right hand sides ``b``; ``x`` is the initial guess
        and is overwritten with the approximate solution.

        :param b: array with ``shape==(n,mu)`` or ``shape==(n,)``.
        :param x: array of the same shape.
        :return: the number of iterations.
        '''
        b, x, traits = self._prepare(b, x)
        mu = b.shape[1]
        self.monitor = self._monitor(mu)
        self.fallback = None
        allocated = self.operator.start(b, x, mu, self.excluded)
        try:
            self.iter = self._solve(b, x, traits)
        finally:
            self.operator.end(allocated)
        return self.iter

    def _solve(self, b, x, traits):
        raise NotImplementedError('_solve has to be overridden by '
                                  'the derived solver class.')

    def _fallback(self, cls, b, x, traits, reason):
        '''Finish the solve with ``cls`` starting from the current ``x``.'''
        if self.verbose:
            logger.info('%s: %s, switching to %s', self.method.upper(),
                        reason, cls.method.upper())
        solver = cls(self.operator, self.options, self.comm, self.excluded)
        solver.monitor = solver._monitor(b.shape[1])
        self.fallback = solver
        self.monitor = solver.monitor
        return solver._solve(b, x, traits)

    def _gmv(self, x):
        if self.excluded:
            return numpy.zeros_like(x)
        return self.operator.gmv(x)

    def _apply(self, x):
        return self.operator.apply(x, self.excluded)

    def _scaling(self):
        return None if self.excluded else self.operator.scaling

    def _norms(self, v, d):
        buf = numpy.array(kernels.dot(v, v, d).real)
        self.comm.allreduce(buf)
        return numpy.sqrt(buf)

    def _reference_norms(self, b, d):
        '''Norms of the (preconditioned) right hand sides; zero norms are
        replaced by one, i.e., such columns use an absolute criterion.'''
        if self.config.variant == 'left':
            b = self._apply(b)
        norm = self._norms(b, d)
        norm[norm == 0] = 1.
        return norm


class Gmres(_IterativeMethod):
    r'''Restarted GMRES for ``mu`` independent right hand sides.

    Every restart cycle builds at most ``gmres_restart`` basis vectors with
    :py:class:`~ddkrylov.arnoldi.Arnoldi`. The preconditioner is applied
    from the left (``variant='left'``), from the right (``'right'``) or
    flexibly (``'flexible'``, the preconditioner may change between
    iterations). Columns that converged are not updated in later cycles.
    '''
    method = 'gmres'

    def _solve(self, b, x, traits):
        cfg = self.config
        mu = b.shape[1]
        d = self._scaling()
        monitor = self.monitor
        monitor.set_norm(self._reference_norms(b, d))
        arnoldi = Arnoldi(self.operator, self.comm, cfg.restart, mu,
                          cfg.variant, cfg.ortho, traits, self.excluded,
                          self.store_arnoldi)
        self.arnoldi = arnoldi
        j = 0
        while True:
            r = b - self._gmv(x)
            v = self._apply(r) if cfg.variant == 'left' else r
            beta = arnoldi.start(v)
            if j == 0 and monitor.check(0, beta):
                break
            start = j
            while arnoldi.iter < cfg.restart and j < cfg.maxiter:
                res = arnoldi.advance()
                j += 1
                if monitor.check(j, res):
                    break
            dims = numpy.where(monitor.unconverged, arnoldi.iter,
                               numpy.clip(monitor.has_converged - start, 0,
                                          None))
            update(self.operator, cfg.variant, x, arnoldi.R, arnoldi.s,
                   arnoldi.V, dims, arnoldi.Z, self.excluded)
            if monitor.converged or j >= cfg.maxiter:
                break
        if self.store_arnoldi:
            self.V, self.H = arnoldi.get()
        return monitor.report(j)


class Bgmres(_IterativeMethod):
    r'''Restarted block GMRES.

    All right hand sides share one block Krylov subspace built by
    :py:class:`~ddkrylov.arnoldi.BlockArnoldi`. If a block becomes rank
    deficient, e.g. because the right hand sides are linearly dependent,
    the solve is finished by :py:class:`Gmres`.
    '''
    method = 'bgmres'

    def _solve(self, b, x, traits):
        cfg = self.config
        mu = b.shape[1]
        d = self._scaling()
        monitor = self.monitor
        monitor.set_norm(self._reference_norms(b, d))
        arnoldi = BlockArnoldi(self.operator, self.comm, cfg.restart, mu,
                               cfg.variant, cfg.ortho, traits, self.excluded,
                               self.store_arnoldi)
        j = 0
        while True:
            r = b - self._gmv(x)
            v = self._apply(r) if cfg.variant == 'left' else r
            if j == 0 and monitor.check(0, self._norms(v, d)):
                break
            try:
                arnoldi.start(v)
            except utils.BreakdownError:
                return self._fallback(Gmres, b, x, traits,
                                      'rank deficient residual block')
            breakdown = False
            while arnoldi.iter < cfg.restart and j < cfg.maxiter:
                try:
                    res = arnoldi.advance()
                except utils.BreakdownError:
                    breakdown = True
                    break
                j += 1
                if monitor.check(j, res):
                    break
            block_update(self.operator, cfg.variant, x, arnoldi.R, arnoldi.s,
                         arnoldi.V, arnoldi.iter, arnoldi.Z, self.excluded)
            if breakdown:
                return self._fallback(Gmres, b, x, traits,
                                      'block Arnoldi breakdown')
            if monitor.converged or j >= cfg.maxiter:
                break
        return monitor.report(j)
