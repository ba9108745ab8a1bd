import numpy as np
import cvxpy as cp
from collections.abc import Mapping
from .errors import InvalidDistribution, DimensionMismatch, IncompleteSpecification


# =====================================================================================================================
# Checks
# =====================================================================================================================

def check_probability_vector(p, name="build"):
    """
    :param p: probability vector
    :param name: name of caller (for error messages)
    """
    p = np.asarray(p, dtype=float)
    if p.ndim != 1 or p.size == 0:
        raise InvalidDistribution(f"[{name}] probability vector must be a nonempty vector")
    if not np.all(np.isfinite(p)):
        raise InvalidDistribution(f"[{name}] probability vector contains non-finite entries")
    if any(pi <= -1e-16 for pi in p):
        raise InvalidDistribution(f"[{name}] probability vector contains negative entries")
    if abs(sum(p) - 1) >= 1e-10:
        raise InvalidDistribution(f"[{name}] probability vector does not sum up to 1")
    return True


def check_spd(mat, name, strict=True):
    """
    :param mat: square matrix
    :param name: name of matrix (for error messages)
    :param strict: positive definite if True, positive semidefinite otherwise
    """
    mat = np.asarray(mat, dtype=float)
    if mat.ndim != 2 or mat.shape[0] != mat.shape[1]:
        raise DimensionMismatch(f"Invalid cost. The matrix ({name}) is not square.")
    is_symmetric = np.allclose(mat, mat.T)
    eigs = np.linalg.eigvalsh(.5 * (mat + mat.T))
    is_definite = np.all(eigs > 0) if strict else np.all(eigs >= -1e-12)
    if not (is_definite and is_symmetric):
        kind = "positive-definite" if strict else "positive-semidefinite"
        raise ValueError(f"Invalid cost. The matrix ({name}) is not symmetric {kind}.")
    return mat


# =====================================================================================================================
# Dynamics
# =====================================================================================================================

class Dynamics:
    """
    Dynamics of the form: x+ = Ax + Bu + c
    """

    def __init__(self, state_, input_, constant_=None):
        """
        :param state_: state matrix (A)
        :param input_: input matrix (B)
        :param constant_: (optional) constant vector (c)
        """
        self.__state = np.atleast_2d(np.array(state_, dtype=float))
        self.__input = np.array(input_, dtype=float)
        if self.__input.ndim == 1:
            self.__input = self.__input.reshape(-1, 1)
        self.__is_affine = constant_ is not None
        nx = self.__state.shape[0]
        if self.__state.shape != (nx, nx):
            raise DimensionMismatch(f"[Dynamics] state matrix must be square; shape {self.__state.shape} not valid")
        if self.__input.ndim != 2 or self.__input.shape[0] != nx:
            raise DimensionMismatch(f"[Dynamics] input matrix must have ({nx}) rows; "
                                    f"shape {self.__input.shape} not valid")
        self.__const = np.array(constant_, dtype=float).reshape(-1) if self.__is_affine else np.zeros(nx)
        if self.__const.size != nx:
            raise DimensionMismatch(f"[Dynamics] constant vector must have ({nx}) entries")

    @classmethod
    def from_data(cls, data):
        """
        :param data: instance of Dynamics or mapping with keys `A`, `B` and (optional) `c`
        :return: Dynamics, or None if the data does not describe dynamics
        """
        if isinstance(data, Dynamics):
            return data
        if not isinstance(data, Mapping) or not ("A" in data or "B" in data):
            return None
        for given, missing in (("A", "B"), ("B", "A")):
            if missing not in data:
                raise IncompleteSpecification(missing, f"[Dynamics] node data holds ({given}) but not ({missing})")
        return cls(data["A"], data["B"], data.get("c"))

    # TYPES
    @property
    def is_linear(self):
        return not self.__is_affine

    @property
    def is_affine(self):
        return self.__is_affine

    @property
    def num_states(self):
        return self.__state.shape[0]

    @property
    def num_inputs(self):
        return self.__input.shape[1]

    @property
    def A(self):
        return self.__state

    @property
    def B(self):
        return self.__input

    @property
    def c(self):
        return self.__const

    def __call__(self, x, u):
        """
        :return: next state (numpy arrays or cvxpy expressions)
        """
        return self.__state @ x + self.__input @ u + self.__const


# =====================================================================================================================
# Costs
# =====================================================================================================================

class NonleafCost:
    """
    Quadratic nonleaf (stage) cost: x'Qx + u'Ru
    """

    def __init__(self, Q, R):
        """
        :param Q: quadratic state cost matrix (symmetric positive-semidefinite)
        :param R: quadratic input cost matrix (symmetric positive-semidefinite)
        """
        self.__Q = check_spd(Q, "Q", strict=False)
        self.__R = check_spd(np.atleast_2d(R), "R", strict=False)

    @classmethod
    def from_data(cls, data):
        """
        :param data: instance of NonleafCost or mapping with keys `Q` and `R`
        :return: NonleafCost, or None if the data does not describe a cost
        """
        if isinstance(data, NonleafCost):
            return data
        if not isinstance(data, Mapping) or not ("Q" in data or "R" in data):
            return None
        for given, missing in (("Q", "R"), ("R", "Q")):
            if missing not in data:
                raise IncompleteSpecification(missing, f"[NonleafCost] node data holds ({given}) but not ({missing})")
        return cls(data["Q"], data["R"])

    @classmethod
    def zero(cls, num_states, num_inputs):
        return cls(np.zeros((num_states, num_states)), np.zeros((num_inputs, num_inputs)))

    @property
    def Q(self):
        return self.__Q

    @property
    def R(self):
        return self.__R

    @property
    def is_zero(self):
        return not (np.any(self.__Q) or np.any(self.__R))

    def __call__(self, x, u):
        x = np.asarray(x, dtype=float).reshape(-1)
        u = np.asarray(u, dtype=float).reshape(-1)
        return float(x @ self.__Q @ x + u @ self.__R @ u)

    def expression(self, x, u):
        """
        :return: cvxpy expression of the cost
        """
        cost = 0
        if np.any(self.__Q):
            cost += cp.quad_form(x, self.__Q)
        if np.any(self.__R):
            cost += cp.quad_form(u, self.__R)
        return cost


class LeafCost:
    """
    Quadratic leaf (terminal) cost: x'Qx
    """

    def __init__(self, Q):
        """
        :param Q: quadratic terminal cost matrix (symmetric positive-definite)
        """
        self.__Q = check_spd(Q, "QN")

    @property
    def Q(self):
        return self.__Q

    def __call__(self, x):
        x = np.asarray(x, dtype=float).reshape(-1)
        return float(x @ self.__Q @ x)

    def expression(self, x):
        return cp.quad_form(x, self.__Q)


# =====================================================================================================================
# Constraints
# =====================================================================================================================

class Rectangle:
    """
    A rectangle constraint of the form:
    lb <= z <= ub
    """

    def __init__(self, lower_bound, upper_bound):
        """
        :param lower_bound: vector of minimum values
        :param upper_bound: vector of maximum values
        """
        self.__lo_bound = np.array(lower_bound, dtype=float).reshape(-1)
        self.__up_bound = np.array(upper_bound, dtype=float).reshape(-1)
        self.__check_bounds(self.__lo_bound, self.__up_bound)

    @property
    def lower_bound(self):
        return self.__lo_bound

    @property
    def upper_bound(self):
        return self.__up_bound

    @property
    def dim(self):
        return self.__lo_bound.size

    @staticmethod
    def __check_bounds(lb, ub):
        if lb.size != ub.size:
            raise DimensionMismatch("Rectangle constraint - min and max bound dimensions are not equal")
        for i in range(lb.size):
            if lb[i] > ub[i]:
                raise ValueError(f"Rectangle constraint - min greater than max at index ({i})")

    def contains(self, z, tol=1e-6):
        z = np.asarray(z, dtype=float).reshape(-1)
        return bool(np.all(z >= self.__lo_bound - tol) and np.all(z <= self.__up_bound + tol))

    def constraints(self, z):
        """
        :param z: cvxpy expression
        :return: list of cvxpy constraints (infinite bounds are skipped)
        """
        cons = []
        lo = np.flatnonzero(np.isfinite(self.__lo_bound))
        up = np.flatnonzero(np.isfinite(self.__up_bound))
        if lo.size > 0:
            cons.append(z[lo] >= self.__lo_bound[lo])
        if up.size > 0:
            cons.append(z[up] <= self.__up_bound[up])
        return cons
