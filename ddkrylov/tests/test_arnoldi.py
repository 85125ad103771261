import numpy
import pytest
from numpy.testing import assert_array_almost_equal

import ddkrylov
from ddkrylov.arnoldi import Arnoldi, BlockArnoldi, block_qr, \
    rank_tolerance
from ddkrylov.comm import SelfComm
from ddkrylov.kernels import ScalarTraits
from ddkrylov.utils import orthonormality
import ddkrylov.tests.test_utils as test_utils


def get_operators():
    n = 30
    return [ddkrylov.SubdomainOperator(test_utils.get_laplacian(n)),
            ddkrylov.SubdomainOperator(test_utils.get_convection_diffusion(n),
                                       M='jacobi'),
            ddkrylov.SubdomainOperator(
                test_utils.get_laplacian(n),
                scaling=numpy.linspace(1, 2, n))]


@pytest.mark.parametrize('operator', get_operators())
@pytest.mark.parametrize('ortho', ['cgs', 'mgs', 'dcgs', 'dmgs'])
@pytest.mark.parametrize('variant', ['left', 'right', 'flexible'])
def test_arnoldi(operator, ortho, variant):
    m, mu = 8, 2
    v = test_utils.get_rhs(operator.dof, mu)
    traits = ScalarTraits(float)
    arnoldi = Arnoldi(operator, SelfComm(), m, mu, variant, ortho, traits,
                      store_arnoldi=True)
    beta = arnoldi.start(v)
    d = operator.scaling
    w = v if d is None else d[:, None] * v
    assert_array_almost_equal(beta, numpy.sqrt(numpy.sum(v * w, axis=0)))
    for _ in range(m):
        res = arnoldi.advance()
    assert arnoldi.iter == m
    assert res.shape == (mu,)

    for nu in range(mu):
        V, H = arnoldi.get(nu)
        assert V.shape == (operator.dof, m + 1)
        assert H.shape == (m + 1, m)
        assert orthonormality(V, d) <= 1e-8

        # Arnoldi relation of the preconditioned operator
        if variant == 'left':
            AV = operator.apply(operator.gmv(V[:, :m]))
        elif variant == 'right':
            AV = operator.gmv(operator.apply(V[:, :m]))
        else:
            AV = operator.gmv(arnoldi.Z[:m, :, nu].T)
        assert numpy.linalg.norm(AV - numpy.dot(V, H)) <= 1e-10

        # residual norm of the least squares problem
        e = numpy.zeros(m + 1)
        e[0] = beta[nu]
        y = numpy.linalg.lstsq(H, e, rcond=None)[0]
        assert abs(numpy.linalg.norm(e - numpy.dot(H, y)) - res[nu]) <= 1e-10


def test_arnoldi_too_many_steps():
    operator = get_operators()[0]
    arnoldi = Arnoldi(operator, SelfComm(), 1, traits=ScalarTraits(float))
    arnoldi.start(numpy.ones((operator.dof, 1)))
    arnoldi.advance()
    with pytest.raises(ddkrylov.utils.ArgumentError):
        arnoldi.advance()
    with pytest.raises(ddkrylov.utils.ArgumentError):
        arnoldi.get()


def test_arnoldi_invariant_subspace():
    # the Krylov subspace of an eigenvector has dimension one
    operator = ddkrylov.SubdomainOperator(numpy.diag(numpy.arange(1., 6.)))
    arnoldi = Arnoldi(operator, SelfComm(), 3, traits=ScalarTraits(float))
    v = numpy.zeros((5, 1))
    v[2] = 2.
    assert arnoldi.start(v)[0] == 2.
    assert arnoldi.advance()[0] <= 1e-14
    arnoldi.advance()
    assert numpy.isfinite(arnoldi.R).all()


def test_arnoldi_complex():
    A = test_utils.get_matrix_comp_nonsymm()
    operator = ddkrylov.SubdomainOperator(A)
    arnoldi = Arnoldi(operator, SelfComm(), 5, 1,
                      traits=ScalarTraits(complex),
                      store_arnoldi=True)
    arnoldi.start(test_utils.get_rhs(10, 1, dtype=complex))
    for _ in range(5):
        arnoldi.advance()
    V, H = arnoldi.get()
    assert orthonormality(V) <= 1e-8
    assert numpy.linalg.norm(numpy.dot(A, V[:, :5]) - numpy.dot(V, H)) \
        <= 1e-10


@pytest.mark.parametrize('ortho', ['cgs', 'mgs', 'dcgs', 'dmgs'])
@pytest.mark.parametrize('dtype', [float, complex])
def test_block_qr(ortho, dtype):
    P = test_utils.get_rhs(20, 3, dtype=dtype)
    d = numpy.linspace(1, 3, 20)
    rtol = rank_tolerance(numpy.finfo(float).eps)
    Q, R = block_qr(P, SelfComm(), d, ortho, rtol)
    assert orthonormality(Q, d) <= 1e-12
    assert_array_almost_equal(numpy.dot(Q, R), P)
    assert_array_almost_equal(R, numpy.triu(R))

    P[:, 2] = P[:, 0] + P[:, 1]
    with pytest.raises(ddkrylov.utils.BreakdownError):
        block_qr(P, SelfComm(), d, ortho, rtol)


def test_block_qr_invalid():
    with pytest.raises(ddkrylov.utils.ArgumentError):
        block_qr(numpy.ones((3, 1)), SelfComm(), ortho='householder')


@pytest.mark.parametrize('ortho', ['cgs', 'mgs', 'dcgs'])
@pytest.mark.parametrize('variant', ['left', 'right', 'flexible'])
def test_block_arnoldi(ortho, variant):
    n, m, mu = 30, 4, 3
    operator = ddkrylov.SubdomainOperator(
        test_utils.get_convection_diffusion(n), M='jacobi')
    v = test_utils.get_rhs(n, mu)
    arnoldi = BlockArnoldi(operator, SelfComm(), m, mu, variant, ortho,
                           ScalarTraits(float), store_arnoldi=True)
    beta = arnoldi.start(v)
    assert_array_almost_equal(beta, numpy.linalg.norm(v, axis=0))
    for _ in range(m):
        res = arnoldi.advance()

    V = numpy.hstack(arnoldi.V[:m+1])
    assert orthonormality(V) <= 1e-8
    H = arnoldi.H
    if variant == 'left':
        AV = operator.apply(operator.gmv(V[:, :m*mu]))
    elif variant == 'right':
        AV = operator.gmv(operator.apply(V[:, :m*mu]))
    else:
        AV = operator.gmv(numpy.hstack(arnoldi.Z[:m]))
    assert numpy.linalg.norm(AV - numpy.dot(V, H)) <= 1e-10

    # block residual norms of the least squares problem
    E = numpy.zeros(((m + 1) * mu, mu))
    E[:mu] = numpy.dot(V[:, :mu].T, v)
    Y = numpy.linalg.lstsq(H, E, rcond=None)[0]
    assert_array_almost_equal(
        numpy.linalg.norm(E - numpy.dot(H, Y), axis=0), res)


def test_block_arnoldi_breakdown():
    n, mu = 10, 2
    operator = ddkrylov.SubdomainOperator(numpy.diag(numpy.arange(1., 11.)))
    arnoldi = BlockArnoldi(operator, SelfComm(), 3, mu,
                           traits=ScalarTraits(float))
    v = numpy.ones((n, mu))
    with pytest.raises(ddkrylov.utils.BreakdownError):
        arnoldi.start(v)

    # the block Krylov subspace of two eigenvectors is invariant
    v = numpy.zeros((n, mu))
    v[0, 0] = v[1, 1] = 1.
    arnoldi.start(v)
    with pytest.raises(ddkrylov.utils.BreakdownError):
        arnoldi.advance()
