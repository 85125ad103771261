import logging

import numpy
from numpy.testing import assert_array_equal

from ddkrylov.convergence import ConvergenceMonitor


def test_relative():
    monitor = ConvergenceMonitor('cg', 3, 1e-2, 10)
    monitor.set_norm([1., 10., 0.])
    assert_array_equal(monitor.has_converged, [-10, -10, -10])

    assert not monitor.check(0, [1., 10., 0.])
    assert_array_equal(monitor.has_converged, [-10, -10, 0])

    assert not monitor.check(1, [0.5, 0.01, 1e-3])
    assert_array_equal(monitor.has_converged, [-10, 1, 0])
    assert_array_equal(monitor.unconverged, [True, False, False])

    # counters never revert
    assert monitor.check(2, [1e-3, 5., 5.])
    assert_array_equal(monitor.has_converged, [2, 1, 0])
    assert monitor.converged
    assert len(monitor.resnorms) == 3
    numpy.testing.assert_almost_equal(monitor.resnorms[1][:2], [0.5, 1e-3])


def test_absolute():
    monitor = ConvergenceMonitor('gmres', 2, -1e-3, 5)
    monitor.set_norm([100., 100.])
    assert not monitor.check(1, [1e-4, 1e-2])
    assert_array_equal(monitor.has_converged, [1, -5])
    assert_array_equal(monitor.resnorms[0], [1e-4, 1e-2])
    assert monitor.report(7) == 5


def test_zero_maxiter():
    monitor = ConvergenceMonitor('cg', 1, 1e-6, 0)
    assert monitor.sentinel == -1
    assert monitor.unconverged.all()
    assert monitor.report(0) == 0


def test_block():
    monitor = ConvergenceMonitor('bcg', 4, 1e-2, 10)
    monitor.set_norm([1., 1.])
    assert monitor.check_block(3, [1e-3, 1.], breadth=2) == 2
    assert_array_equal(monitor.has_converged, [3, 3, -10, -10])
    assert monitor.check_block(4, [1e-3, 1e-3], breadth=2) == 4
    assert_array_equal(monitor.has_converged, [3, 3, 4, 4])
    assert monitor.resnorms[0].shape == (4,)


def test_logging(caplog):
    monitor = ConvergenceMonitor('cg', 1, 1e-2, 10, verbosity=1)
    monitor.set_norm([1.])
    with caplog.at_level(logging.INFO, logger='ddkrylov.convergence'):
        monitor.check(0, [1.])
        monitor.check(1, [1e-3])
        monitor.report(1)
    messages = [record.getMessage() for record in caplog.records]
    assert messages[-1] == 'CG: converged in 1 iteration'
    assert 'relative residual' in messages[0]

    # only the first rank reports
    caplog.clear()
    monitor = ConvergenceMonitor('cg', 1, 1e-2, 10, verbosity=1, rank=1)
    with caplog.at_level(logging.INFO, logger='ddkrylov.convergence'):
        monitor.check(0, [1.])
    assert not caplog.records


def test_logging_columns(caplog):
    monitor = ConvergenceMonitor('gmres', 3, 1e-8, 10, verbosity=1)
    monitor.set_norm([1., 2., 4.])
    with caplog.at_level(logging.INFO, logger='ddkrylov.convergence'):
        monitor.check(1, [0.5, 0.5, 0.5])
    assert caplog.records[0].getMessage() == (
        'GMRES:    1 relative residual = 5.000000e-01 (rhs #1), '
        'min = 1.250000e-01')
