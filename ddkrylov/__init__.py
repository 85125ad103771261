from . import arnoldi, comm, convergence, kernels, linsys, operator, \
    options, storage, utils
from .__about__ import __version__
from ._convenience import bcg, bgmres, cg, gmres, pcg, select_method, solve

__all__ = [
    "arnoldi",
    "comm",
    "convergence",
    "kernels",
    "linsys",
    "operator",
    "options",
    "storage",
    "utils",
    "bcg",
    "bgmres",
    "cg",
    "gmres",
    "pcg",
    "select_method",
    "solve",
    "__version__",
]
from .cg import Cg, Bcg, Pcg
from .comm import SelfComm, ThreadGroup, MPIComm
from .direct import DirectSolver
from .linsys import Gmres, Bgmres
from .operator import (Operator, SubdomainOperator, ProjectedOperator,
                       ConstrainedOperator)
from .options import Options
