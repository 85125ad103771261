import numpy
import pytest
from numpy.testing import assert_array_equal

import ddkrylov
from ddkrylov.comm import SelfComm, ThreadComm, ThreadGroup, \
    as_communicator
import ddkrylov.tests.test_utils as test_utils


def test_self_comm():
    comm = SelfComm()
    buf = numpy.array([1., 2.])
    assert comm.allreduce(buf) is buf
    assert_array_equal(buf, [1., 2.])
    assert comm.rank == 0 and comm.size == 1
    assert comm.reductions == 1


@pytest.mark.parametrize('size', [1, 2, 4])
def test_thread_group(size):
    group = ThreadGroup(size, timeout=10)

    def target(comm):
        buf = numpy.array([comm.rank, 1.], dtype=float)
        comm.allreduce(buf)
        matrix = numpy.full((2, 2), 1j * comm.rank)
        comm.allreduce(matrix)
        return buf, matrix, comm.reductions

    results = test_utils.run_ranks(target, group.comms())
    for buf, matrix, reductions in results:
        assert_array_equal(buf, [size * (size - 1) / 2, size])
        assert_array_equal(matrix, numpy.full((2, 2),
                                              1j * size * (size - 1) / 2))
        assert reductions == 2


def test_thread_group_mismatched_shapes():
    group = ThreadGroup(2, timeout=10)

    def target(comm):
        comm.allreduce(numpy.zeros(2 + comm.rank))

    with pytest.raises(ddkrylov.utils.CommunicatorError):
        test_utils.run_ranks(target, group.comms())


def test_thread_group_mismatched_sequence():
    group = ThreadGroup(2, timeout=0.5)

    def target(comm):
        for _ in range(1 + comm.rank):
            comm.allreduce(numpy.zeros(1))

    with pytest.raises(ddkrylov.utils.CommunicatorError):
        test_utils.run_ranks(target, group.comms())


def test_as_communicator():
    assert isinstance(as_communicator(None), SelfComm)
    comm = ThreadGroup(1).comms()[0]
    assert isinstance(comm, ThreadComm)
    assert as_communicator(comm) is comm
    with pytest.raises(ddkrylov.utils.ArgumentError):
        as_communicator(object())
    with pytest.raises(ddkrylov.utils.ArgumentError):
        ThreadGroup(0)


def test_mpi_comm():
    pytest.importorskip('mpi4py.MPI')
    comm = ddkrylov.MPIComm()
    buf = numpy.ones(3)
    comm.allreduce(buf)
    assert_array_equal(buf, comm.size * numpy.ones(3))
    assert comm.reductions == 1
    with pytest.raises(ddkrylov.utils.ArgumentError):
        comm.allreduce(numpy.ones((3, 2))[:, 0])
