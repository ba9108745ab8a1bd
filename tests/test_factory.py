import io
import unittest
from contextlib import redirect_stdout
import numpy as np
import raocp as r


class TestMarkovChain(unittest.TestCase):
    __p = np.array([[0.1, 0.8, 0.1],
                    [0.4, 0.6, 0],
                    [0, 0.3, 0.7]])

    def test_stopping_stage_failure(self):
        v = np.array([0.5, 0.4, 0.1])
        (N, tau) = (4, 5)
        with self.assertRaises(ValueError):
            _ = r.factory.MarkovChain(TestMarkovChain.__p, v, N, tau).build()

    def test_stage_and_stop_is_one(self):
        v = np.array([0.5, 0.4, 0.1])
        tree = r.factory.MarkovChain(TestMarkovChain.__p, v, 1, 1).build()
        self.assertEqual(4, tree.num_nodes)
        self.assertEqual(3, tree.num_leaf_nodes)

    def test_stop_is_one(self):
        v = np.array([0.5, 0.4, 0.1])
        tree = r.factory.MarkovChain(TestMarkovChain.__p, v, 3, 1).build()
        self.assertEqual(1 + 3 * 3, tree.num_nodes)
        for node in range(4, tree.num_nodes):
            self.assertEqual(tree.value_of_node(tree.ancestor_of_node(node)), tree.value_of_node(node))
            self.assertEqual(1., tree.conditional_probability_of_node(node))

    def test_stop_is_zero(self):
        v = np.array([0.2, 0.5, 0.3])
        tree = r.factory.MarkovChain(TestMarkovChain.__p, v, 3, 0).build()
        self.assertEqual(4, tree.num_nodes)
        self.assertEqual(1, tree.num_leaf_nodes)
        self.assertEqual([1, 1, 1], [tree.value_of_node(i) for i in range(1, 4)])

    def test_values_of_states(self):
        v = np.array([0.5, 0.5, 0.])
        tree = r.factory.MarkovChain(TestMarkovChain.__p, v, 2, values=["a", "b", "c"]).build()
        self.assertEqual(["a", "b"], [tree.value_of_node(i) for i in range(1, 3)])
        self.assertEqual(["a", "b", "c", "a", "b"], [tree.value_of_node(i) for i in range(3, 8)])

    def test_from_options(self):
        options = r.options.TreeOptions.from_dict({"horizonLength": 4, "branchingHorizon": 3})
        tree = r.factory.MarkovChain.from_options(TestMarkovChain.__p, [0.5, 0.5, 0.], options).build()
        self.assertEqual(32, tree.num_nodes)

    def test_invalid_distribution(self):
        with self.assertRaises(r.errors.InvalidDistribution):
            _ = r.factory.MarkovChain(TestMarkovChain.__p, [0.5, 0.6, -0.1], 3)
        with self.assertRaises(r.errors.InvalidDistribution):
            _ = r.factory.MarkovChain([[0.5, 0.4], [0.5, 0.5]], [0.5, 0.5], 3)
        with self.assertRaises(r.errors.InvalidDistribution):
            _ = r.factory.MarkovChain(TestMarkovChain.__p[:2, :], [0.5, 0.5, 0.], 3)
        with self.assertRaises(r.errors.InvalidDistribution):
            _ = r.factory.MarkovChain(TestMarkovChain.__p, [0., 0., 0.], 3)

    def test_invalid_horizon(self):
        with self.assertRaises(r.errors.InvalidHorizon):
            _ = r.factory.MarkovChain(TestMarkovChain.__p, [0.5, 0.5, 0.], 0)

    def test_values_dimension_failure(self):
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = r.factory.MarkovChain(TestMarkovChain.__p, [0.5, 0.5, 0.], 2, values=[1, 2])
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = r.factory.MarkovChain(TestMarkovChain.__p, [0.5, 0.5, 0.], 2,
                                      values=[[1, 2], [3, 4], [5]], dim_value=2)


class TestIidProcess(unittest.TestCase):

    def test_iid_branching_horizon(self):
        options = r.options.TreeOptions.from_dict({"horizonLength": 3, "branchingHorizon": 1})
        tree = r.factory.IidProcess.from_options([0.7, 0.3], options).build()
        self.assertEqual(7, tree.num_nodes)
        self.assertEqual(2, tree.num_leaf_nodes)
        self.assertAlmostEqual(0.3, tree.probability_of_node(6), delta=1e-12)

    def test_iid_zero_mass_outcome(self):
        tree = r.factory.IidProcess([0.5, 0., 0.5], 2, values=[-1, 0, 1]).build()
        self.assertEqual(7, tree.num_nodes)
        self.assertNotIn(0, tree.distinct_values())

    def test_iid_stop_is_zero(self):
        tree = r.factory.IidProcess([0.2, 0.3, 0.5], 2, 0).build()
        self.assertEqual(3, tree.num_nodes)
        self.assertEqual(2, tree.value_of_node(1))
        self.assertEqual(2, tree.value_of_node(2))

    def test_iid_invalid_distribution(self):
        with self.assertRaises(r.errors.InvalidDistribution):
            _ = r.factory.IidProcess([0.2, 0.3], 2)
        with self.assertRaises(r.errors.InvalidDistribution):
            _ = r.factory.IidProcess([-0.5, 1.5], 2)


class TestFromData(unittest.TestCase):
    __tree = None
    __num_samples = 200
    __ni = [3, 2, 2]

    @staticmethod
    def __construct_tree():
        if TestFromData.__tree is None:
            rng = np.random.default_rng(7)
            increments = rng.normal(size=(TestFromData.__num_samples, 2, 4))
            samples = np.cumsum(increments, axis=2)
            TestFromData.__tree = r.factory.FromData(samples, TestFromData.__ni).build()

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        TestFromData.__construct_tree()

    def test_data_tree_size(self):
        tree = TestFromData.__tree
        self.assertEqual(len(TestFromData.__ni) + 1, tree.num_stages)
        self.assertEqual(3, len(tree.nodes_of_stage(1)))
        for stage, ni in enumerate(TestFromData.__ni):
            for node in tree.nodes_of_stage(stage):
                self.assertLessEqual(len(tree.children_of_node(node)), ni)
                self.assertGreaterEqual(len(tree.children_of_node(node)), 1)

    def test_data_tree_probabilities(self):
        tol = 1e-9
        tree = TestFromData.__tree
        for node in tree.nonleaf_nodes:
            self.assertAlmostEqual(1., sum(tree.cond_prob_of_children_of_node(node)), delta=tol)
        for stage in range(tree.num_stages):
            self.assertAlmostEqual(1., sum(tree.probability_of_node(i) for i in tree.nodes_of_stage(stage)),
                                   delta=tol)
        for node in range(1, tree.num_nodes):
            # probabilities are fractions of samples
            count = tree.probability_of_node(node) * TestFromData.__num_samples
            self.assertAlmostEqual(round(count), count, delta=1e-6)

    def test_data_tree_values(self):
        tree = TestFromData.__tree
        for node in range(1, tree.num_nodes):
            self.assertEqual((2,), np.shape(tree.value_of_node(node)))

    def test_duplicate_representatives(self):
        samples = np.vstack((np.zeros((50, 2)), np.ones((50, 2))))
        tree = r.factory.FromData(samples, [3, 1]).build()
        self.assertEqual(5, tree.num_nodes)
        self.assertEqual(2, len(tree.children_of_node(0)))
        self.assertAlmostEqual(0.5, tree.probability_of_node(1), delta=1e-12)
        self.assertAlmostEqual(0.5, tree.probability_of_node(2), delta=1e-12)
        self.assertEqual({0., 1.}, {float(tree.value_of_node(1)[0]), float(tree.value_of_node(2)[0])})

    def test_forward_selection(self):
        points = np.array([[0.], [0.1], [5.], [5.2], [10.]])
        probs = np.full(5, 0.2)
        kept, closest = r.factory.FromData.forward_selection(points, probs, 3)
        self.assertEqual(3, len(kept))
        self.assertIn(4, kept)
        self.assertTrue(all(kept[closest[j]] in kept for j in range(5)))
        self.assertEqual(closest[0], closest[1])
        self.assertEqual(closest[2], closest[3])

    def test_few_samples_warning(self):
        rng = np.random.default_rng(3)
        samples = rng.normal(size=(10, 3))
        out = io.StringIO()
        with redirect_stdout(out):
            _ = r.factory.FromData(samples, [2, 2, 2]).build()
        self.assertIn("Warning", out.getvalue())

    def test_scaled(self):
        rng = np.random.default_rng(5)
        samples = rng.normal(size=(60, 2, 2)) * np.array([1., 1000.])[np.newaxis, :, np.newaxis]
        tree = r.factory.FromData(samples, [4, 1], scale=True).build()
        self.assertLessEqual(len(tree.children_of_node(0)), 4)
        self.assertAlmostEqual(1., sum(tree.cond_prob_of_children_of_node(0)), delta=1e-9)

    def test_from_options(self):
        options = r.options.TreeOptions(2, dim_value=1, ni=[2, 2])
        tree = r.factory.FromData.from_options(np.arange(40.).reshape(20, 2), options).build()
        self.assertEqual(3, tree.num_stages)
        with self.assertRaises(r.errors.DimensionMismatch):
            _ = r.factory.FromData.from_options(np.zeros((20, 3, 2)), options)

    def test_ni_longer_than_data(self):
        with self.assertRaises(r.errors.InvalidHorizon):
            _ = r.factory.FromData(np.zeros((10, 2)), [2, 2, 2])
        with self.assertRaises(r.errors.InvalidHorizon):
            _ = r.factory.FromData(np.zeros((10, 2)), [2, 0])


if __name__ == '__main__':
    unittest.main()
