# -*- coding: utf8 -*-
'''
Solver configuration.

Options are plain key/value pairs handed to every solver call. Keys are
namespaced by the prefix of the operator, e.g. ``'level_2_tol'`` for an
operator with prefix ``'level_2_'``.
'''

from collections import namedtuple

from .utils import ArgumentError

__all__ = ['Options', 'SolverConfig', 'DEFAULTS', 'METHODS', 'VARIANTS',
           'ORTHOGONALIZATIONS']

METHODS = ('gmres', 'bgmres', 'cg', 'bcg', 'pcg')
VARIANTS = ('left', 'right', 'flexible')
ORTHOGONALIZATIONS = ('cgs', 'mgs', 'dcgs', 'dmgs')
SCHWARZ_METHODS = ('ras', 'oras', 'soras', 'asm', 'osm', 'none')
COARSE_CORRECTIONS = ('deflated', 'additive', 'balanced')

DEFAULTS = {
    'krylov_method': 'gmres',
    'tol': 1e-6,
    'max_it': 100,
    'gmres_restart': 40,
    'variant': 'left',
    'orthogonalization': 'cgs',
    'verbosity': 0,
    'enlarge_krylov_subspace': 1,
}

SolverConfig = namedtuple('SolverConfig', [
    'method', 'tol', 'maxiter', 'restart', 'variant', 'ortho', 'verbosity',
    'enlarge'])
SolverConfig.__doc__ = '''Validated settings of one solver call.'''


class Options(dict):
    r'''Configuration of the iterative methods.

    >>> opt = Options(tol=1e-8, krylov_method='cg')
    >>> opt.val('tol')
    1e-08
    >>> opt.config().maxiter
    100
    '''
    def val(self, name, default=None, prefix=''):
        '''Value of ``prefix + name``, falling back to the built-in default
        and then to ``default``.'''
        key = prefix + name
        if key in self:
            return self[key]
        return DEFAULTS.get(name, default)

    def any_of(self, name, values, prefix=''):
        '''Whether ``prefix + name`` is set to one of ``values``.'''
        key = prefix + name
        return key in self and self[key] in values

    def config(self, prefix='', method=None):
        '''Read and validate the settings of a solver call.

        :param prefix: namespace of the keys, usually the operator prefix.
        :param method: (optional) overrides ``krylov_method``.
        '''
        method = self.val('krylov_method', prefix=prefix) \
            if method is None else method
        _check(method, METHODS, 'krylov_method')
        variant = self.val('variant', prefix=prefix)
        _check(variant, VARIANTS, 'variant')
        ortho = self.val('orthogonalization', prefix=prefix)
        _check(ortho, ORTHOGONALIZATIONS, 'orthogonalization')

        tol = float(self.val('tol', prefix=prefix))
        if tol == 0:
            raise ArgumentError('tol must be nonzero (positive: relative, '
                                'negative: absolute tolerance).')
        maxiter = int(self.val('max_it', prefix=prefix))
        restart = int(self.val('gmres_restart', prefix=prefix))
        enlarge = int(self.val('enlarge_krylov_subspace', prefix=prefix))
        if maxiter < 0 or restart < 1 or enlarge < 1:
            raise ArgumentError('max_it must be nonnegative, gmres_restart '
                                'and enlarge_krylov_subspace positive.')
        return SolverConfig(method=method, tol=tol, maxiter=maxiter,
                            restart=min(restart, max(maxiter, 1)),
                            variant=variant, ortho=ortho,
                            verbosity=int(self.val('verbosity',
                                                   prefix=prefix)),
                            enlarge=enlarge)

    def symmetric_preconditioner(self, prefix=''):
        '''Whether the domain decomposition settings keep the preconditioned
        operator self-adjoint.

        Restricted and optimized Schwarz methods and the deflated coarse
        correction yield non-symmetric preconditioners.'''
        for name, values in (('schwarz_method', SCHWARZ_METHODS),
                             ('schwarz_coarse_correction',
                              COARSE_CORRECTIONS)):
            if prefix + name in self:
                _check(self[prefix + name], values, name)
        return not (self.any_of('schwarz_method', ('ras', 'oras', 'osm'),
                                prefix=prefix) or
                    self.any_of('schwarz_coarse_correction', ('deflated',),
                                prefix=prefix))


def _check(value, valid, name):
    if value not in valid:
        raise ArgumentError(
            'Invalid value \'{0}\' for option \'{1}\'. '.format(value, name)
            + 'Valid are {0}.'.format(', '.join(valid)))
