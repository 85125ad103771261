import logging

import numpy

from .cg import Bcg, Cg, Pcg
from .linsys import Bgmres, Gmres
from .operator import Operator, SubdomainOperator
from .options import Options

logger = logging.getLogger(__name__)

METHODS = {
    'gmres': Gmres,
    'bgmres': Bgmres,
    'cg': Cg,
    'bcg': Bcg,
    'pcg': Pcg,
}


def select_method(operator, options=None, comm=None, excluded=False,
                  method=None, **kwargs):
    '''Choose the iterative method once before solving.

    The method is read from ``krylov_method`` unless ``method`` is given.
    CG and block CG rely on a self-adjoint preconditioned operator, so they
    are replaced by GMRES for restricted or optimized Schwarz methods and for
    the deflated coarse correction. Otherwise block CG with the flexible
    variant is replaced by CG.

    :return: an instance of the method, ready to :py:meth:`solve`.
    '''
    options = Options() if options is None else options
    prefix = operator.prefix
    name = options.config(prefix, method=method).method
    if name in ('cg', 'bcg') \
            and not options.symmetric_preconditioner(prefix):
        logger.info('%s replaced by GMRES: preconditioner is not '
                    'self-adjoint', name.upper())
        name = 'gmres'
    elif name == 'bcg' and options.val('variant', prefix=prefix) \
            == 'flexible':
        logger.info('BCG replaced by CG: flexible variant')
        name = 'cg'
    return METHODS[name](operator, options, comm=comm, excluded=excluded,
                         **kwargs)


def solve(operator, b, x, options=None, comm=None, excluded=False,
          method=None):
    '''Solve with the configured method; returns the number of iterations.'''
    solver = select_method(operator, options, comm=comm, excluded=excluded,
                           method=method)
    return solver.solve(b, x)


def _run(method, A, b, M, x0, tol, maxiter, options, **kwargs):
    operator = A if isinstance(A, Operator) else SubdomainOperator(A, M=M)
    b = numpy.asarray(b)
    assert b.shape[0] == operator.dof

    options = Options() if options is None else Options(options)
    prefix = operator.prefix
    options[prefix + 'tol'] = tol
    if maxiter is not None:
        options[prefix + 'max_it'] = maxiter
    elif prefix + 'max_it' not in options:
        options[prefix + 'max_it'] = operator.dof
    for key, value in kwargs.items():
        if value is not None:
            options[prefix + key] = value

    dtype = numpy.result_type(operator.dtype, b, numpy.float64)
    x = numpy.zeros(b.shape, dtype=dtype) if x0 is None \
        else numpy.array(x0, dtype=dtype).reshape(b.shape)
    solver = select_method(operator, options, method=method)
    solver.solve(b, x)
    return x if solver.monitor.converged else None, solver


def cg(A, b, M=None, x0=None, tol=1e-5, maxiter=None, variant=None,
       options=None):
    return _run('cg', A, b, M, x0, tol, maxiter, options, variant=variant)


def bcg(A, b, M=None, x0=None, tol=1e-5, maxiter=None, ortho=None,
        enlarge=None, options=None):
    return _run('bcg', A, b, M, x0, tol, maxiter, options,
                orthogonalization=ortho, enlarge_krylov_subspace=enlarge)


def gmres(A, b, M=None, x0=None, tol=1e-5, maxiter=None, restart=None,
          variant=None, ortho=None, options=None):
    return _run('gmres', A, b, M, x0, tol, maxiter, options,
                gmres_restart=restart, variant=variant,
                orthogonalization=ortho)


def bgmres(A, b, M=None, x0=None, tol=1e-5, maxiter=None, restart=None,
           variant=None, ortho=None, options=None):
    return _run('bgmres', A, b, M, x0, tol, maxiter, options,
                gmres_restart=restart, variant=variant,
                orthogonalization=ortho)


def pcg(operator, f, x0=None, tol=1e-5, maxiter=None, options=None):
    '''Projected CG for a :py:class:`~ddkrylov.operator.ProjectedOperator`.

    :return: ``(x, solver)``, ``x`` is ``None`` if the method did not
      converge.
    '''
    f = numpy.asarray(f)
    options = Options() if options is None else Options(options)
    prefix = operator.prefix
    options[prefix + 'tol'] = tol
    options[prefix + 'max_it'] = operator.mult if maxiter is None \
        else maxiter
    x = numpy.zeros(f.shape, dtype=numpy.result_type(operator.dtype, f)) \
        if x0 is None else numpy.array(x0, dtype=operator.dtype)
    solver = select_method(operator, options, method='pcg')
    solver.solve(f, x)
    return x if solver.monitor.converged else None, solver
