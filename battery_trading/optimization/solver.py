"""
LP solver capability for the ROI strategy.

Any solver handling continuous bounded variables and linear constraints can
implement LinearProgramSolver. HighsSolver uses scipy.optimize.linprog with
the HiGHS backend.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.optimize import linprog

from battery_trading.errors import InfeasibleModelError, SolverError
from battery_trading.optimization.lp_model import LPModel

logger = logging.getLogger(__name__)

# scipy.optimize.linprog status code for an infeasible problem
STATUS_INFEASIBLE = 2


@dataclass
class VariableAssignment:
    """Solved value of every model variable."""
    values: np.ndarray
    objective_value: float
    status: str = 'OPTIMAL'
    solve_time_seconds: float = 0.0

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, index: int) -> float:
        return float(self.values[index])


class LinearProgramSolver(ABC):
    """Solves an LPModel or raises."""

    name = 'abstract'

    @abstractmethod
    def solve(self, model: LPModel) -> VariableAssignment:
        """
        Solve the model to optimality.

        Raises:
            InfeasibleModelError: If the constraints cannot be satisfied
            SolverError: On any other solver failure or non-finite result
        """
        pass


class HighsSolver(LinearProgramSolver):
    """HiGHS via scipy.optimize.linprog."""

    name = 'HiGHS'

    def __init__(self, time_limit_seconds: Optional[float] = None, presolve: bool = True):
        self.time_limit_seconds = time_limit_seconds
        self.presolve = presolve

    def solve(self, model: LPModel) -> VariableAssignment:
        options = {'disp': False, 'presolve': self.presolve}
        if self.time_limit_seconds is not None:
            options['time_limit'] = self.time_limit_seconds

        logger.debug(
            f"Solving {model.name} with {self.name}: {model.n_vars} variables, "
            f"{len(model.b_ub)} inequality constraints"
        )
        start_time = time.time()
        result = linprog(model.c, A_ub=model.A_ub, b_ub=model.b_ub,
                         A_eq=model.A_eq, b_eq=model.b_eq,
                         bounds=model.bounds, method='highs', options=options)
        solve_time = time.time() - start_time

        if result.status == STATUS_INFEASIBLE:
            raise InfeasibleModelError(f"{model.name} is infeasible: {result.message}")
        if not result.success:
            raise SolverError(f"{self.name} failed with status {result.status}: {result.message}")

        x = np.asarray(result.x, dtype=float)
        if x.shape != (model.n_vars,) or not np.all(np.isfinite(x)) or not np.isfinite(result.fun):
            raise SolverError(f"{self.name} returned a non-numeric solution for {model.name}")

        logger.debug(f"{self.name} solved {model.name} in {solve_time:.3f}s, objective {result.fun:.4f}")
        return VariableAssignment(
            values=x,
            objective_value=float(result.fun),
            status='OPTIMAL',
            solve_time_seconds=solve_time,
        )
