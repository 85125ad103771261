# -*- coding: utf8 -*-
import logging
import warnings

import numpy

from . import kernels, utils
from .arnoldi import block_qr, rank_tolerance
from .linsys import _IterativeMethod
from .storage import CONTIGUOUS

__all__ = ['Cg', 'Bcg', 'Pcg']

logger = logging.getLogger(__name__)


class Cg(_IterativeMethod):
    r'''Preconditioned CG method.

    The *preconditioned conjugate gradient method* can be used to solve a
    system of linear algebraic equations where the operator :math:`A` and
    the preconditioner :math:`M` are self-adjoint and positive definite.
    The ``mu`` right hand sides are iterated independently, a column stops
    being updated once it converged. Convergence is measured with the norm
    of the preconditioned residual :math:`\|M r_k\|` relative to
    :math:`\|M r_0\|`.

    With ``variant='flexible'`` every new search direction is
    :math:`A`-orthogonalized against all previous ones instead of only the
    last one. This conjugate direction method is robust against a
    preconditioner that changes between iterations or loses symmetry, at the
    price of storing ``max_it`` directions and their images.

    Memory consumption is 4 vectors, plus ``2*max_it`` vectors in the
    flexible variant.
    '''
    method = 'cg'

    def _solve(self, b, x, traits):
        cfg = self.config
        n, mu = b.shape
        d = self._scaling()
        monitor = self.monitor
        flexible = cfg.variant == 'flexible'
        m = cfg.maxiter if flexible else 0
        ws = traits.allocate(
            real=[('rho', (mu,)), ('pAp', (m, mu))],
            scalar=[('r', (n, mu)), ('z', (n, mu)), ('p', (n, mu)),
                    ('trash', (n, mu)), ('P', (m, n, mu)),
                    ('AP', (m, n, mu))])
        r, z, p, trash, rho = ws['r'], ws['z'], ws['p'], ws['trash'], \
            ws['rho']

        r[...] = b - self._gmv(x)
        z[...] = self._apply(r)
        kernels.diag(z, d, out=trash)
        buf = numpy.concatenate([kernels.dot(r, trash).real,
                                 kernels.dot(z, trash).real])
        self.comm.allreduce(buf)
        rho[...] = buf[:mu]
        norm = numpy.sqrt(buf[mu:])
        monitor.set_norm(norm)
        if monitor.check(0, norm):
            return monitor.report(0)
        p[...] = z

        i = 0
        while i < cfg.maxiter:
            active = monitor.unconverged
            if flexible and i > 0:
                # A-orthogonalize against all previous directions
                coef = numpy.array([kernels.dot(ws['AP'][k], trash)
                                    for k in range(i)])
                self.comm.allreduce(coef)
                pAp = ws['pAp'][:i]
                numpy.divide(coef, pAp, out=coef, where=pAp != 0)
                coef[pAp == 0] = 0
                p[...] = z
                p -= numpy.einsum('knm,km->nm', ws['P'][:i], coef)

            z[...] = self._gmv(p)
            buf = kernels.dot(p, z, d)
            self.comm.allreduce(buf)
            if traits.is_complex:
                imag = numpy.abs(buf.imag)
                if (imag > 1e-12 * numpy.abs(buf)).any():
                    warnings.warn(
                        'Iter {0}: abs(pAp.imag) = {1} > 1e-12. '
                        'Is your operator self-adjoint?'
                        .format(i, imag.max()))
            pAp = buf.real

            # step length, converged columns are left untouched
            alpha = numpy.zeros(mu)
            numpy.divide(rho, pAp, out=alpha, where=active & (pAp != 0))
            kernels.axpby(alpha, p, 1., x)
            kernels.axpby(-alpha, z, 1., r)
            if flexible:
                ws['P'][i] = p
                ws['AP'][i] = z
                ws['pAp'][i] = pAp

            z[...] = self._apply(r)
            kernels.diag(z, d, out=trash)
            buf = numpy.concatenate([kernels.dot(r, trash).real,
                                     kernels.dot(z, trash).real])
            self.comm.allreduce(buf)
            i += 1
            if monitor.check(i, numpy.sqrt(numpy.abs(buf[mu:]))):
                break
            if not flexible:
                beta = numpy.zeros(mu)
                numpy.divide(buf[:mu], rho, out=beta,
                             where=active & (rho != 0))
                kernels.axpby(1., z, beta, p)
            rho[...] = buf[:mu]
        return monitor.report(i)


class Bcg(_IterativeMethod):
    r'''Block CG method.

    All ``mu`` right hand sides are iterated as one coupled system, the
    search space of every column is the sum of the Krylov subspaces of all
    columns. The direction block is orthonormalized after every step
    (``orthogonalization='cgs'``: Cholesky-QR, ``'mgs'``: modified
    Gram-Schmidt).

    With ``enlarge_krylov_subspace=t`` the right hand sides are read as
    ``mu/t`` groups of ``t`` columns whose sums are the actual right hand
    sides (enlarged Krylov subspace methods split one right hand side, e.g.
    by subdomains); convergence is then measured for the sums.

    If the block becomes rank deficient or a reduced system is not positive
    definite, the solve continues from the current iterate with
    :py:class:`Cg`.
    '''
    method = 'bcg'

    def _solve(self, b, x, traits):
        cfg = self.config
        n, mu = b.shape
        t = cfg.enlarge
        if mu % t:
            raise utils.ArgumentError(
                'enlarge_krylov_subspace={0} does not divide mu={1}.'
                .format(t, mu))
        groups = mu // t
        d = self._scaling()
        monitor = self.monitor
        rtol = rank_tolerance(traits.eps)
        ws = traits.allocate(scalar=[('r', (n, mu)), ('z', (n, mu)),
                                     ('p', (n, mu))])
        r, z, p = ws['r'], ws['z'], ws['p']

        def fallback(reason):
            return self._fallback(Cg, b, x, traits, reason)

        r[...] = b - self._gmv(x)
        z[...] = self._apply(r)
        rho_old = kernels.allreduce_hermitian(self.comm,
                                              kernels.gram(r, z, d))
        try:
            p[...], gamma = block_qr(z, self.comm, d, cfg.ortho, rtol)
        except utils.BreakdownError:
            return fallback('rank deficient initial block')
        monitor.set_norm(numpy.linalg.norm(
            gamma.reshape(mu, groups, t).sum(axis=2), axis=0))
        rho = rho_old.copy()

        i = 1
        while i <= cfg.maxiter:
            z[...] = self._gmv(p)
            rho = kernels.solve_upper(gamma, rho, trans='C')
            pAp = kernels.allreduce_hermitian(self.comm,
                                              kernels.gram(p, z, d))
            alpha, info = kernels.posv(pAp, rho)
            if info:
                return fallback('block system not positive definite')
            x += numpy.dot(p, alpha)
            r -= numpy.dot(z, alpha)

            z[...] = self._apply(r)
            zs = z.reshape(n, groups, t).sum(axis=2)
            rho_new, s = kernels.allreduce_hermitian(
                self.comm, kernels.gram(r, z, d),
                extra=kernels.dot(zs, zs, d).real)
            if monitor.check_block(i, numpy.sqrt(numpy.abs(s.real)),
                                   breadth=t) == mu:
                break

            beta, info = kernels.posv(rho_old, rho_new)
            if info:
                return fallback('residual block not positive definite')
            p[...] = z + numpy.dot(p, numpy.dot(gamma, beta))
            try:
                p[...], gamma = block_qr(p, self.comm, d, cfg.ortho, rtol)
            except utils.BreakdownError:
                return fallback('rank deficient direction block')
            rho_old = rho_new
            rho = rho_new.copy()
            i += 1
        return monitor.report(i)


class Pcg(_IterativeMethod):
    r'''Projected preconditioned CG method.

    Solves a system of a :py:class:`~ddkrylov.operator.ProjectedOperator`,
    e.g. the dual problem of a FETI method, whose iterates are restricted
    to a constraint set. The search directions are projected with
    :math:`P`, the residuals with :math:`P^T`, and every new direction is
    explicitly :math:`F`-orthogonalized against all previous ones, so all
    directions are kept.

    Only one right hand side is supported. With ``verbosity > 2`` a line
    per iteration reports the residual norms.
    '''
    method = 'pcg'

    def solve(self, f, x):
        '''Solve for the right hand side ``f``.

        :param f: array with ``shape==(dof,)``.
        :param x: array with ``shape==(dof,)``, initial guess of the free
          unknowns on entry, solution on exit.
        :return: the number of iterations.
        '''
        f = numpy.asarray(f)
        if f.ndim == 2 and f.shape[1] == 1:
            f = f[:, 0]
        if x.ndim == 2 and x.shape[1] == 1:
            x = x[:, 0]
        if f.ndim != 1 or x.shape != f.shape:
            raise utils.ArgumentError('Pcg solves for one right hand side.')
        self.monitor = self._monitor(1)
        storage = self.operator.allocate_array()
        allocated = self.operator.start_projected(f, x, storage,
                                                  self.excluded)
        try:
            self.iter = self._solve_projected(f, x, storage)
        finally:
            self.operator.end(allocated)
        return self.iter

    def _solve_projected(self, f, x, storage):
        A = self.operator
        layout = A.layout
        excluded = self.excluded
        cfg = self.config
        monitor = self.monitor
        comm = self.comm

        r = storage[0]
        lam = x[A.eliminated:] if layout.kind == CONTIGUOUS else storage[1]
        z = A.allocate_single() if excluded else A.precond(r)
        res_init = numpy.sqrt(A.compute_dot(z, z, comm, excluded))
        monitor.set_norm([res_init])
        if monitor.check(0, [res_init]):
            A.compute_solution(f, x, storage, excluded)
            return monitor.report(0)

        # directions p_k, weighted images D F p_k and <F p_k, D p_k>
        directions, images, denominators = [], [], []
        i = 1
        while i <= cfg.maxiter:
            p = A.project(z, 'N', excluded)
            coef = numpy.zeros(len(directions))
            if not excluded:
                for k, image in enumerate(images):
                    coef[k] = layout.dot(image, p)
            comm.allreduce(coef)
            for k, direction in enumerate(directions):
                if denominators[k] != 0:
                    layout.axpy(-coef[k] / denominators[k], direction, p)

            Fp = A.allocate_single() if excluded else A.gmv(p)
            Dp = layout.diag(p)
            buf = numpy.zeros(2)
            if not excluded:
                buf[0] = layout.dot(Fp, Dp)
                buf[1] = layout.dot(r, Dp)
            comm.allreduce(buf)
            denominators.append(buf[0])
            step = buf[1] / buf[0] if buf[0] != 0 else 0.
            layout.axpy(step, p, lam)
            layout.axpy(-step, Fp, r)
            r = A.project(r, 'T', excluded)
            directions.append(p)
            images.append(layout.diag(Fp))

            z = A.allocate_single() if excluded else A.precond(r)
            res = numpy.sqrt(A.compute_dot(z, z, comm, excluded))
            if cfg.verbosity > 2 and comm.rank == 0:
                logger.info('PCG: %4d %e %e %e < %e', i, res, res_init,
                            res / res_init, cfg.tol)
            if monitor.check(i, [res]):
                break
            i += 1
        storage[0] = r
        A.compute_solution(f, x, storage, excluded)
        return monitor.report(i)
