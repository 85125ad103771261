# -*- coding: utf8 -*-
'''
Convergence monitoring shared by all iterative methods.

Every right hand side has a signed counter: a nonnegative value is the
iteration at which the column converged, the sentinel ``-maxiter`` marks a
column that did not converge (yet). Counters never revert.
'''

import logging

import numpy

__all__ = ['ConvergenceMonitor']

logger = logging.getLogger(__name__)


class ConvergenceMonitor(object):
    r'''Per-column convergence bookkeeping.

    With a positive tolerance ``tol`` column :math:`j` converges once
    :math:`\|r_j\| \le tol \|r_{0,j}\|`, with a negative tolerance once
    :math:`\|r_j\| \le |tol|`. A column with zero reference norm satisfies the
    relative criterion as soon as its residual vanishes.
    '''
    def __init__(self, method, mu, tol, maxiter, verbosity=0, rank=0):
        self.method = method.upper()
        self.mu = mu
        self.tol = tol
        self.maxiter = maxiter
        self.sentinel = -max(maxiter, 1)
        self.has_converged = numpy.full(mu, self.sentinel, dtype=int)
        self.norm = numpy.ones(mu)
        self.verbose = verbosity > 0 and rank == 0
        self.resnorms = []
        '''Residual norms of all checks, relative if ``tol > 0``.'''

    def set_norm(self, norm):
        '''Set the reference norms of the relative criterion.'''
        self.norm = numpy.array(numpy.real(norm), dtype=float, ndmin=1)

    @property
    def unconverged(self):
        '''Boolean mask of the columns that did not converge.'''
        return self.has_converged == self.sentinel

    @property
    def converged(self):
        return not self.unconverged.any()

    def _reached(self, res, norm):
        if self.tol > 0:
            return res <= self.tol * norm
        return res <= -self.tol

    def _scaled(self, res, norm):
        if self.tol < 0:
            return res
        return numpy.divide(res, norm, out=res.copy(), where=norm > 0)

    def check(self, i, res, norm=None):
        '''Record the residual norms ``res`` of iteration ``i``.

        :return: ``True`` once every column converged.
        '''
        res = numpy.abs(numpy.array(res, ndmin=1))
        norm = self.norm if norm is None else numpy.abs(norm)
        scaled = self._scaled(res, norm)
        self.resnorms.append(scaled)
        self.has_converged[self.unconverged & self._reached(res, norm)] = i
        if self.verbose:
            j = int(numpy.argmax(scaled))
            logger.info('%s: %4d %s residual = %e (rhs #%d), min = %e',
                        self.method, i,
                        'relative' if self.tol > 0 else 'absolute',
                        scaled[j], j + 1, scaled.min())
        return self.converged

    def check_block(self, i, res, norm=None, breadth=1):
        r'''Record the residual norms of a coupled block method.

        :param res: one norm per group of ``breadth`` consecutive columns.
        :return: the number of columns whose group meets the tolerance.
        '''
        res = numpy.abs(numpy.array(res, ndmin=1))
        norm = self.norm if norm is None else numpy.abs(norm)
        scaled = self._scaled(res, norm)
        self.resnorms.append(numpy.repeat(scaled, breadth))
        reached = numpy.repeat(self._reached(res, norm), breadth)
        self.has_converged[self.unconverged & reached] = i
        if self.verbose:
            logger.info('%s: %4d %s block residual = %e / %e', self.method, i,
                        'relative' if self.tol > 0 else 'absolute',
                        numpy.min(scaled), numpy.max(scaled))
        return int(numpy.count_nonzero(reached))

    def report(self, i):
        '''Summary at loop exit; returns the iteration count capped at
        ``maxiter``.'''
        i = min(i, self.maxiter)
        if self.verbose:
            if self.converged:
                logger.info('%s: converged in %d iteration%s', self.method,
                            i, '' if i == 1 else 's')
            else:
                logger.info('%s: no convergence after %d iterations '
                            '(%d of %d right hand sides)', self.method, i,
                            numpy.count_nonzero(self.unconverged), self.mu)
        return i
