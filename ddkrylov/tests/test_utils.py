import itertools
import threading

import numpy
import pytest
from numpy.testing import assert_array_almost_equal, assert_array_equal

import ddkrylov
import ddkrylov.utils


def get_matrix_spd():
    a = numpy.linspace(1, 2, 10)
    a[-1] = 1e-2
    return numpy.diag(a)


def get_matrix_hpd():
    a = numpy.array(numpy.linspace(1, 2, 10), dtype=complex)
    a[0] = 5
    a[-1] = 1e-1
    A = numpy.diag(a)
    A[-1, 0] = 1e-1j
    A[0, -1] = -1e-1j
    return A


def get_matrix_nonsymm():
    a = numpy.array(range(1, 11), dtype=float)
    a[-1] = -1e1
    A = numpy.diag(a)
    A[0, -1] = 1e1
    return A


def get_matrix_comp_nonsymm():
    a = numpy.array(range(1, 11), dtype=complex)
    a[-1] = -1e1
    A = numpy.diag(a)
    A[0, -1] = 1.e1j
    return A


def get_laplacian(n):
    '''1D Laplacian with Dirichlet boundary conditions.'''
    return 2 * numpy.eye(n) - numpy.eye(n, k=1) - numpy.eye(n, k=-1)


def get_convection_diffusion(n):
    '''Diagonally dominant non-symmetric tridiagonal matrix.'''
    return 2.5 * numpy.eye(n) - 1.2 * numpy.eye(n, k=-1) \
        - 0.8 * numpy.eye(n, k=1)


def get_rhs(n, mu=1, dtype=float, seed=0):
    rng = numpy.random.RandomState(seed)
    b = rng.rand(n, mu)
    if numpy.issubdtype(numpy.dtype(dtype), numpy.complexfloating):
        b = b + 1j * rng.rand(n, mu)
    return b


def relative_residual(A, b, x):
    b = b.reshape(b.shape[0], -1)
    x = x.reshape(b.shape)
    return numpy.linalg.norm(b - numpy.dot(A, x), axis=0) \
        / numpy.linalg.norm(b, axis=0)


def check_solver(solver, A, b, x, iterations, tol):
    assert iterations == solver.iter
    assert iterations <= solver.config.maxiter
    assert solver.monitor.converged
    assert len(solver.resnorms) >= 1
    res = relative_residual(A, b, x)
    assert (res <= 1e3 * tol).all()


def dictproduct(d):
    '''enhance itertools product to process values of dicts

    example:
        d = {'a':[1,2],'b':[3,4]}
        then list(dictproduct(d)) ==
        [{'a':1,'b':3}, {'a':1,'b':4}, {'a':2,'b':3}, {'a':2,'b':4}]
    '''
    for p in itertools.product(*d.values()):
        yield dict(zip(d.keys(), p))


def run_ranks(target, comms):
    '''Run ``target(comm)`` in one thread per communicator and return the
    results in rank order. Exceptions of any rank are re-raised.'''
    results = [None] * len(comms)
    errors = []

    def run(comm):
        try:
            results[comm.rank] = target(comm)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(comm,)) for comm in comms]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    if errors:
        raise errors[0]
    return results


@pytest.mark.parametrize('a, b', itertools.product(
    [0., 1., 1.j, 1.+1.j, 1e8, 1e-8], [0., 1., 1.j, 1.+1.j, 1e8, 1e-8]))
def test_givens(a, b):
    x = numpy.array([[a], [b]])
    G = ddkrylov.utils.Givens(x)
    y = G.apply(x)

    I = numpy.eye(2)
    # check that G.G is unitary
    assert(numpy.linalg.norm(I - numpy.dot(G.G.T.conj(), G.G), 2) <= 1e-14)
    # check that absolute value of y[0] equals norm(x)
    assert(numpy.abs(numpy.linalg.norm(x, 2) - numpy.abs(y[0]))
           <= 1e-14*numpy.linalg.norm(x, 2))
    # check that y[0] == 0
    assert(numpy.linalg.norm(y[1], 2) <= 1e-14*numpy.linalg.norm(x, 2))


def test_givens_shape():
    with pytest.raises(ddkrylov.utils.ArgumentError):
        ddkrylov.utils.Givens(numpy.ones((3, 1)))


def test_shape_vecs():
    x = numpy.arange(4.)
    X = numpy.ones((4, 2))
    flat, (y, Y, other) = ddkrylov.utils.shape_vecs(x, X, None)
    assert not flat
    assert y.shape == (4, 1)
    assert Y is X
    assert other is None

    # reshaped vectors are views
    y[0, 0] = 10.
    assert x[0] == 10.

    flat, (y,) = ddkrylov.utils.shape_vecs(x)
    assert flat


def test_orthonormality():
    V = numpy.eye(5)[:, :3]
    assert ddkrylov.utils.orthonormality(V) == 0.
    d = numpy.full(5, 4.)
    numpy.testing.assert_almost_equal(
        ddkrylov.utils.orthonormality(V / 2, d), 0.)
    assert ddkrylov.utils.orthonormality(2 * V) > 1.
    assert ddkrylov.utils.orthonormality(numpy.zeros((5, 0))) == 0.


def test_workspace():
    ws = ddkrylov.utils.Workspace([
        (numpy.float64, [('res', (3,)), ('G', (3, 3))]),
        (numpy.complex128, [('r', (5, 3)), ('empty', (0, 3))])])
    assert len(ws.arenas) == 2
    assert ws.size == 3 + 9 + 15
    assert 'r' in ws and 'x' not in ws
    assert ws.offsets['G'] == (0, 3, 9, (3, 3))
    assert ws['r'].dtype == numpy.complex128
    assert ws['empty'].shape == (0, 3)

    # views alias the arenas
    ws['G'][...] = 1.
    assert_array_equal(ws.arenas[0][3:], numpy.ones(9))
    assert_array_equal(ws['res'], numpy.zeros(3))
    assert numpy.shares_memory(ws['r'], ws.arenas[1])
    assert ws['G'] is ws['G']

    with pytest.raises(KeyError):
        ws['x']


@pytest.mark.parametrize('layout', [
    [(float, [('a', (2,)), ('a', (3,))])],
    [(float, [('a', (2,))]), (complex, [('a', (3,))])],
    [(float, [('a', (-1, 2))])],
])
def test_workspace_invalid(layout):
    with pytest.raises(ddkrylov.utils.ArgumentError):
        ddkrylov.utils.Workspace(layout)


def test_generators():
    for A in [get_matrix_spd(), get_laplacian(6)]:
        assert_array_almost_equal(A, A.T)
        assert numpy.linalg.eigvalsh(A).min() > 0
    A = get_matrix_hpd()
    assert_array_almost_equal(A, A.T.conj())
    assert numpy.linalg.eigvalsh(A).min() > 0
