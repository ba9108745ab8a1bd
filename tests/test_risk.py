import unittest
import numpy as np
import cvxpy as cp
import raocp as r


class TestAVaR(unittest.TestCase):
    __rng = None

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        TestAVaR.__rng = np.random.default_rng(11)

    def test_alpha_one_is_mean(self):
        p = np.full(4, 0.25)
        z = np.array([1., -2., 3.5, 0.5])
        self.assertAlmostEqual(np.mean(z), r.risk.AVaR(p, 1.).risk(z), delta=1e-12)

    def test_alpha_small_is_max(self):
        p = np.full(5, 0.2)
        z = np.array([1., -2., 3.5, 0.5, 3.])
        self.assertAlmostEqual(3.5, r.risk.AVaR(p, 1e-9).risk(z), delta=1e-9)

    def test_closed_form_is_dual(self):
        rng = TestAVaR.__rng
        for _ in range(10):
            n = rng.integers(2, 8)
            p = rng.dirichlet(np.ones(n))
            alpha = rng.uniform(0.05, 1.)
            z = rng.normal(size=n)
            avar = r.risk.AVaR(p, alpha)
            self.assertAlmostEqual(avar.dual_risk(z), avar.risk(z), delta=1e-5)

    def test_conic_data(self):
        p = np.array([0.2, 0.3, 0.5])
        avar = r.risk.AVaR(p, 0.4)
        self.assertEqual((7, 3), avar.e.shape)
        self.assertEqual(7, avar.k)
        self.assertTrue(np.allclose(np.concatenate((p, np.zeros(3), [1.])), avar.b))
        self.assertTrue(np.allclose(0.4 * np.eye(3), avar.e[:3, :]))
        self.assertIsNone(avar.f)
        self.assertTrue(avar.is_avar)
        self.assertFalse(avar.is_evar)

    def test_epigraph(self):
        p = np.array([0.1, 0.6, 0.3])
        z = np.array([4., -1., 2.])
        avar = r.risk.AVaR(p, 0.3)
        bound = cp.Variable()
        problem = cp.Problem(cp.Minimize(bound), avar.epigraph(z, bound))
        problem.solve()
        self.assertAlmostEqual(avar.risk(z), problem.value, delta=1e-5)

    def test_dimension_mismatch(self):
        avar = r.risk.AVaR([0.5, 0.5], 0.5)
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = avar.risk([1., 2., 3.])

    def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            _ = r.risk.AVaR([0.5, 0.5], 0.)
        with self.assertRaises(ValueError):
            _ = r.risk.AVaR([0.5, 0.5], 1.2)
        with self.assertRaises(r.errors.InvalidDistribution):
            _ = r.risk.AVaR([0.5, 0.6], 0.5)


class TestEVaR(unittest.TestCase):
    __rng = None

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        TestEVaR.__rng = np.random.default_rng(13)

    def test_alpha_one_is_expectation(self):
        p = np.array([0.1, 0.2, 0.3, 0.4])
        z = np.array([5., -1., 2., 0.])
        self.assertAlmostEqual(p @ z, r.risk.EVaR(p, 1.).risk(z), delta=1e-12)

    def test_constant_is_constant(self):
        p = np.array([0.5, 0.5])
        self.assertAlmostEqual(3., r.risk.EVaR(p, 0.2).risk([3., 3.]), delta=1e-12)

    def test_primal_is_dual(self):
        rng = TestEVaR.__rng
        for _ in range(5):
            n = rng.integers(2, 6)
            p = rng.dirichlet(np.ones(n))
            alpha = rng.uniform(0.1, 0.9)
            z = rng.normal(size=n)
            evar = r.risk.EVaR(p, alpha)
            self.assertAlmostEqual(evar.dual_risk(z), evar.risk(z), delta=1e-4)

    def test_avar_below_evar(self):
        rng = TestEVaR.__rng
        for _ in range(50):
            n = rng.integers(2, 10)
            p = rng.dirichlet(np.ones(n))
            alpha = rng.uniform(0.01, 1.)
            z = rng.normal(scale=3., size=n)
            avar = r.risk.AVaR(p, alpha).risk(z)
            evar = r.risk.EVaR(p, alpha).risk(z)
            self.assertLessEqual(avar, evar + 1e-9)
            self.assertLessEqual(evar, np.max(z) + 1e-5)

    def test_zero_probability_outcome(self):
        p = np.array([0.5, 0., 0.5])
        z = np.array([1., 100., 2.])
        evar = r.risk.EVaR(p, 0.5)
        self.assertLessEqual(evar.risk(z), 2. + 1e-6)
        self.assertAlmostEqual(evar.dual_risk(z), evar.risk(z), delta=1e-4)

    def test_epigraph(self):
        p = np.array([0.25, 0.25, 0.5])
        z = np.array([1., 3., -2.])
        evar = r.risk.EVaR(p, 0.2)
        bound = cp.Variable()
        problem = cp.Problem(cp.Minimize(bound), evar.epigraph(z, bound))
        problem.solve()
        self.assertAlmostEqual(evar.risk(z), problem.value, delta=1e-4)

    def test_non_convergence(self):
        evar = r.risk.EVaR([0.3, 0.7], 0.1, max_iter=1)
        with self.assertRaises(r.errors.NonConvergence):
            _ = evar.risk([1., -1.])

    def test_dimension_mismatch(self):
        evar = r.risk.EVaR([0.3, 0.7], 0.1)
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = evar.risk([1.])


class TestConic(unittest.TestCase):

    def test_conic_is_avar(self):
        alpha = 0.3
        risk = r.risk.conic(lambda p: np.vstack((alpha * np.eye(p.size), -np.eye(p.size), np.ones((1, p.size)))),
                            lambda p: np.concatenate((p, np.zeros(p.size), [1.])),
                            lambda p: {"nonneg": 2 * p.size, "zero": 1})
        p = np.array([0.2, 0.2, 0.1, 0.5])
        z = np.array([3., -1., 7., 0.])
        self.assertEqual("conic", risk.kind)
        self.assertAlmostEqual(r.risk.AVaR(p, alpha).risk(z), risk(p).risk(z), delta=1e-5)

    def test_second_order_cone(self):
        # simplex intersected with a ball of radius 0.2 around p
        p = np.array([0.4, 0.3, 0.3])
        n = p.size
        e = np.vstack((-np.eye(n), np.ones((1, n)), np.zeros((1, n)), np.eye(n)))
        b = np.concatenate((np.zeros(n), [1., 0.2], p))
        risk = r.risk.Conic(p, e, b, {"nonneg": n, "zero": 1, "soc": [n + 1]})
        z = np.array([1., 2., 3.])
        value = risk.risk(z)
        self.assertGreaterEqual(value, p @ z - 1e-6)
        self.assertLessEqual(value, np.max(z) + 1e-6)
        bound = cp.Variable()
        problem = cp.Problem(cp.Minimize(bound), risk.epigraph(z, bound))
        problem.solve()
        self.assertAlmostEqual(value, problem.value, delta=1e-4)

    def test_cone_dimension_mismatch(self):
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = r.risk.Conic([0.5, 0.5], np.eye(2), [1., 1.], {"nonneg": 3})
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = r.risk.Conic([0.5, 0.5], np.eye(3), [1., 1., 1.], {"nonneg": 3})
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = r.risk.Conic([0.5, 0.5], np.eye(2), [1., 1.], {"soc": [1, 1]})


class TestParametricRisk(unittest.TestCase):

    def test_avar(self):
        risk = r.risk.avar(0.5)
        self.assertEqual("avar", risk.kind)
        self.assertEqual(0.5, risk.alpha)
        measure = risk([0.5, 0.5])
        self.assertTrue(measure.is_avar)
        self.assertEqual(0.5, measure.alpha)

    def test_evar(self):
        risk = r.risk.evar(0.2)
        self.assertEqual("evar", risk.kind)
        self.assertTrue(risk([0.1, 0.9]).is_evar)

    def test_invalid_alpha(self):
        with self.assertRaises(ValueError):
            _ = r.risk.avar(0.)
        with self.assertRaises(ValueError):
            _ = r.risk.evar(-0.5)


if __name__ == '__main__':
    unittest.main()
