import numpy as np
import cvxpy as cp
from scipy.special import logsumexp
from scipy.optimize import minimize_scalar
from .build import check_probability_vector
from .errors import DimensionMismatch, NonConvergence, SolveFailure


def check_alpha(alpha, name):
    if not 0 < alpha <= 1:
        raise ValueError(f"[{name}] alpha must be in (0, 1]; ({alpha}) not valid")
    return float(alpha)


# =====================================================================================================================
# Risks
# =====================================================================================================================

# --------------------------------------------------------
# Base
# --------------------------------------------------------
class ConicRiskMeasure:
    """
    Base class for conic risk measures.

    A conic risk measure is the support function of its ambiguity set (risk envelope):
    risk(z) = max { q'z : q in A(p) }
    """

    def __init__(self, probabilities, name):
        self._probabilities = np.array(probabilities, dtype=float).reshape(-1)
        check_probability_vector(self._probabilities, name)
        self._num_outcomes = self._probabilities.size
        self._name = name

    # GETTERS
    @property
    def is_avar(self):
        return False

    @property
    def is_evar(self):
        return False

    @property
    def probabilities(self):
        return self._probabilities

    @property
    def num_outcomes(self):
        return self._num_outcomes

    def _check_random_variable(self, z):
        z = np.array(z, dtype=float).reshape(-1)
        if z.size != self._num_outcomes:
            raise DimensionMismatch(f"[{self._name}] random variable has ({z.size}) values, "
                                    f"but there are ({self._num_outcomes}) outcomes")
        return z

    def ambiguity_set(self, q):
        """
        :param q: cvxpy variable (probability vector)
        :return: list of cvxpy constraints which define the ambiguity set
        """
        raise NotImplementedError

    def epigraph(self, z, bound):
        """
        Lift `risk(z) <= bound` into conic constraints (with fresh auxiliary variables).

        :param z: cvxpy expression (vector of size `num_outcomes`)
        :param bound: cvxpy expression (scalar)
        :return: list of cvxpy constraints
        """
        raise NotImplementedError

    def risk(self, z):
        """
        :param z: values of random variable at each outcome
        :return: risk of `z`
        """
        return self.dual_risk(z)

    def dual_risk(self, z, solver=None):
        """
        Evaluate the risk by maximising over the ambiguity set with cvxpy.

        :param z: values of random variable at each outcome
        :param solver: (optional) cvxpy solver
        :return: risk of `z`
        """
        z = self._check_random_variable(z)
        q = cp.Variable(self._num_outcomes)
        problem = cp.Problem(cp.Maximize(q @ z), self.ambiguity_set(q))
        try:
            problem.solve(solver=solver)
        except cp.error.SolverError as e:
            raise SolveFailure("solver_error", str(e)) from e
        if problem.status != cp.OPTIMAL:
            raise SolveFailure(problem.status, f"[{self._name}] ambiguity set problem not solved")
        return float(problem.value)


# --------------------------------------------------------
# Conic (ambiguity set in conic form)
# --------------------------------------------------------
class Conic(ConicRiskMeasure):
    """
    Risk with ambiguity set of the form:
    A(p) = { q : b - Eq in K, Fq = 0 }
    where K is a product of a nonnegative orthant, a zero cone and second-order cones.
    """

    def __init__(self, probabilities, e, b, cone, f=None, name="Conic"):
        """
        :param probabilities: probability vector
        :param e: matrix E
        :param b: vector b
        :param cone: dimensions of K, dictionary with keys `nonneg` (int), `zero` (int), `soc` (list of int)
        :param f: (optional) matrix F
        """
        super().__init__(probabilities, name)
        self._matrix_e = np.atleast_2d(np.array(e, dtype=float))
        self._vector_b = np.array(b, dtype=float).reshape(-1)
        self._matrix_f = None if f is None else np.atleast_2d(np.array(f, dtype=float))
        self._cone = {"nonneg": int(cone.get("nonneg", 0)),
                      "zero": int(cone.get("zero", 0)),
                      "soc": [int(m) for m in cone.get("soc", [])]}
        self.__check_dimensions()

    def __check_dimensions(self):
        rows, cols = self._matrix_e.shape
        if cols != self._num_outcomes:
            raise DimensionMismatch(f"[{self._name}] matrix E must have ({self._num_outcomes}) columns")
        if self._vector_b.size != rows:
            raise DimensionMismatch(f"[{self._name}] vector b must have ({rows}) entries")
        if self._matrix_f is not None and self._matrix_f.shape[1] != self._num_outcomes:
            raise DimensionMismatch(f"[{self._name}] matrix F must have ({self._num_outcomes}) columns")
        if any(m < 2 for m in self._cone["soc"]):
            raise DimensionMismatch(f"[{self._name}] second-order cones must have dimension >= 2")
        if self._cone["nonneg"] + self._cone["zero"] + sum(self._cone["soc"]) != rows:
            raise DimensionMismatch(f"[{self._name}] dimension of cone does not match the rows of E")

    # GETTERS
    @property
    def e(self):
        return self._matrix_e

    @property
    def f(self):
        return self._matrix_f

    @property
    def b(self):
        return self._vector_b

    @property
    def k(self):
        return self._vector_b.size

    @property
    def cone(self):
        return self._cone

    def _cone_constraints(self, v, dual=False):
        """
        :param v: cvxpy expression of size `k`
        :param dual: constrain `v` in the dual cone K* instead
        :return: list of cvxpy constraints
        """
        cons = []
        nonneg, zero = self._cone["nonneg"], self._cone["zero"]
        if nonneg > 0:
            cons.append(v[:nonneg] >= 0)
        if zero > 0 and not dual:  # the dual of the zero cone is the whole space
            cons.append(v[nonneg:nonneg + zero] == 0)
        idx = nonneg + zero
        for m in self._cone["soc"]:
            cons.append(cp.SOC(v[idx], v[idx + 1:idx + m]))
            idx += m
        return cons

    def ambiguity_set(self, q):
        cons = self._cone_constraints(-self._matrix_e @ q + self._vector_b)
        if self._matrix_f is not None:
            cons.append(self._matrix_f @ q == 0)
        return cons

    def epigraph(self, z, bound):
        # risk(z) <= bound iff there is y in K* (and free v) with E'y + F'v = z and b'y <= bound
        y = cp.Variable(self.k)
        lhs = self._matrix_e.T @ y
        if self._matrix_f is not None:
            v = cp.Variable(self._matrix_f.shape[0])
            lhs = lhs + self._matrix_f.T @ v
        cons = self._cone_constraints(y, dual=True)
        cons += [lhs == z, y @ self._vector_b <= bound]
        return cons


# --------------------------------------------------------
# Average Value at Risk
# --------------------------------------------------------
class AVaR(Conic):
    """
    Risk item: Average Value at Risk class
    """

    def __init__(self, probabilities, alpha):
        """
        :param probabilities: probability vector
        :param alpha: AVaR risk parameter, in (0, 1]

        Note: ambiguity sets of coherent risk measures can be expressed by conic inequalities,
                defined by a tuple (E, F, cone, b)
        """
        alpha = check_alpha(alpha, "AVaR")
        p = np.array(probabilities, dtype=float).reshape(-1)
        n = p.size
        eye = np.eye(n)
        e = np.vstack((alpha * eye,
                       -eye,
                       np.ones((1, n))))
        # Matrix F not applicable for AVaR
        b = np.concatenate((p, np.zeros(n), [1.]))
        super().__init__(p, e, b, {"nonneg": 2 * n, "zero": 1}, name="AVaR")
        self.__alpha = alpha

    # GETTERS
    @property
    def is_avar(self):
        return True

    @property
    def alpha(self):
        return self.__alpha

    def risk(self, z):
        """
        Closed form: sort outcomes from worst to best and assign weight `p_i / alpha`
        until the weights sum up to 1.
        """
        z = self._check_random_variable(z)
        p = self._probabilities
        if self.__alpha == 1:
            return float(p @ z)
        weights = np.zeros(self._num_outcomes)
        remaining = 1.
        for i in np.argsort(-z, kind="stable"):
            weights[i] = min(p[i] / self.__alpha, remaining)
            remaining -= weights[i]
            if remaining <= 0:
                break
        return float(weights @ z)


# --------------------------------------------------------
# Entropic Value at Risk
# --------------------------------------------------------
class EVaR(ConicRiskMeasure):
    """
    Risk item: Entropic Value at Risk class

    EVaR(z) = inf_{t > 0} t * log(sum_i p_i * exp(z_i / t)) - t * log(alpha)
    """

    def __init__(self, probabilities, alpha, tol=1e-9, max_iter=500):
        """
        :param probabilities: probability vector
        :param alpha: EVaR risk parameter, in (0, 1]
        :param tol: tolerance of the line search over `log(t)` [default: 1e-9]
        :param max_iter: maximum number of iterations of the line search [default: 500]
        """
        super().__init__(probabilities, "EVaR")
        self.__alpha = check_alpha(alpha, "EVaR")
        self.__tol = tol
        self.__max_iter = max_iter
        self.__support = np.flatnonzero(self._probabilities > 0)
        self.__log_t_bounds = (np.log(1e-8), np.log(1e8))

    # GETTERS
    @property
    def is_evar(self):
        return True

    @property
    def alpha(self):
        return self.__alpha

    def ambiguity_set(self, q):
        p = self._probabilities
        cons = [q >= 0, cp.sum(q) == 1]
        off_support = np.flatnonzero(p <= 0)
        if off_support.size > 0:
            cons.append(q[off_support] == 0)
        cons.append(cp.sum(cp.rel_entr(q[self.__support], p[self.__support])) <= -np.log(self.__alpha))
        return cons

    def epigraph(self, z, bound):
        p = self._probabilities[self.__support]
        if self.__alpha == 1:
            return [p @ z[self.__support] <= bound]
        # sum_i p_i exp((z_i - bound - t log(alpha)) / t) <= 1, as exponential cones with t >= 0
        m = self.__support.size
        t = cp.Variable(nonneg=True)
        u = cp.Variable(m)
        w = -bound - t * np.log(self.__alpha) + z[self.__support]
        return [cp.constraints.ExpCone(w, t * np.ones(m), u), u @ p <= t]

    def risk(self, z):
        """
        Minimise the dual function over `t > 0`, with a bounded line search over `log(t)`.
        The random variable is centred and normalised first (EVaR is translation equivariant
        and positively homogeneous).
        """
        z = self._check_random_variable(z)
        p = self._probabilities[self.__support]
        z = z[self.__support]
        mean = float(p @ z)
        spread = float(z.max() - z.min())
        if self.__alpha == 1 or spread == 0:
            return mean
        d = (z - mean) / spread
        log_alpha = np.log(self.__alpha)

        def dual_function(log_t):
            t = np.exp(log_t)
            return t * (logsumexp(d / t, b=p) - log_alpha)

        result = minimize_scalar(dual_function,
                                 bounds=self.__log_t_bounds,
                                 method="bounded",
                                 options={"xatol": self.__tol, "maxiter": self.__max_iter})
        if not result.success or not np.isfinite(result.fun):
            raise NonConvergence(f"[EVaR] line search did not converge in ({self.__max_iter}) iterations: "
                                 f"{result.message}")
        return mean + spread * float(result.fun)


# =====================================================================================================================
# Parametric risks
# =====================================================================================================================

class ParametricRisk:
    """
    Risk measure with fixed parameters, which becomes a ConicRiskMeasure
    once it is given a probability vector (e.g., the conditional probabilities of the children of a node)
    """

    def __init__(self, kind, make, alpha=None):
        """
        :param kind: name of risk measure
        :param make: function which maps a probability vector to a ConicRiskMeasure
        :param alpha: (optional) risk parameter
        """
        self.__kind = kind
        self.__make = make
        self.__alpha = alpha

    @property
    def kind(self):
        return self.__kind

    @property
    def alpha(self):
        return self.__alpha

    def __call__(self, probabilities):
        return self.__make(probabilities)

    def __repr__(self):
        if self.__alpha is None:
            return f"ParametricRisk({self.__kind})"
        return f"ParametricRisk({self.__kind}, alpha={self.__alpha})"


def avar(alpha):
    """
    :param alpha: AVaR risk parameter, in (0, 1]
    :return: ParametricRisk which makes AVaR(p, alpha)
    """
    alpha = check_alpha(alpha, "AVaR")
    return ParametricRisk("avar", lambda p: AVaR(p, alpha), alpha)


def evar(alpha, tol=1e-9, max_iter=500):
    """
    :param alpha: EVaR risk parameter, in (0, 1]
    :return: ParametricRisk which makes EVaR(p, alpha)
    """
    alpha = check_alpha(alpha, "EVaR")
    return ParametricRisk("evar", lambda p: EVaR(p, alpha, tol, max_iter), alpha)


def conic(make_e, make_b, cone, make_f=None):
    """
    :param make_e: function which maps a probability vector to matrix E
    :param make_b: function which maps a probability vector to vector b
    :param cone: dimensions of K, or function which maps a probability vector to them
    :param make_f: (optional) function which maps a probability vector to matrix F
    :return: ParametricRisk which makes Conic(p, E, b, K, F)
    """
    def make(p):
        p = np.array(p, dtype=float).reshape(-1)
        return Conic(p,
                     make_e(p),
                     make_b(p),
                     cone(p) if callable(cone) else cone,
                     None if make_f is None else make_f(p))

    return ParametricRisk("conic", make)
