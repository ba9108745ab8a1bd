import numpy as np
from scipy.spatial.distance import cdist
from .tree import Tree
from .options import TreeOptions
from .build import check_probability_vector
from .errors import InvalidDistribution, InvalidHorizon, DimensionMismatch


def check_values(values, num_values, dim_value, name="Factory"):
    """
    :param values: list of values of `w` (scalars or vectors)
    :param num_values: required number of values
    :param dim_value: required dimension of each value (or None)
    """
    values = list(values)
    if len(values) != num_values:
        raise DimensionMismatch(f"[{name}] expected ({num_values}) values, got ({len(values)})")
    if dim_value is not None:
        for v in values:
            if np.size(v) != dim_value:
                raise DimensionMismatch(f"[{name}] value ({v}) does not have dimension ({dim_value})")
    return values


def branch_out(horizon, branching_horizon, initial, transition):
    """
    Grow a tree breadth-first from the root.
    Nodes at stage `< branching_horizon` branch; all other nodes repeat their event with probability 1.

    :param horizon: number of final stage (N)
    :param branching_horizon: stage at which branching stops
    :param initial: (events, probabilities) of the children of the root
    :param transition: function which maps the event of a node to the (events, probabilities) of its children
    :return: stages, ancestors, conditional probabilities and events of all nodes (root event is -1)
    """
    stages, ancestors, cond_prob, events = [0], [-1], [1.], [-1]
    if branching_horizon == 0:
        initial_events, initial_probs = initial
        events_of_root = [initial_events[int(np.argmax(initial_probs))]]
        stage_one = (events_of_root, [1.])
    else:
        stage_one = initial
    frontier = [0]
    for stage in range(horizon):
        new_frontier = []
        for node in frontier:
            if node == 0:
                ev, pr = stage_one
            elif stage < branching_horizon:
                ev, pr = transition(events[node])
            else:
                ev, pr = [events[node]], [1.]
            for w, p in zip(ev, pr):
                new_frontier.append(len(stages))
                stages.append(stage + 1)
                ancestors.append(node)
                cond_prob.append(p)
                events.append(int(w))
        frontier = new_frontier
    return np.array(stages), np.array(ancestors), np.array(cond_prob), np.array(events)


class MarkovChain:
    """
    Factory class to construct scenario trees from stopped Markov chains
    """

    def __init__(self, transition_prob, initial_distribution, horizon, branching_horizon=None, values=None,
                 dim_value=None):
        """
        :param transition_prob: transition matrix of the Markov chain
        :param initial_distribution: initial distribution of `w`
        :param horizon: horizon of the scenario tree (N) or number of final stage
        :param branching_horizon: stage at which branching stops, no larger than `horizon` [default: horizon]
        :param values: (optional) value of `w` at each state of the chain [default: state index]
        :param dim_value: (optional) dimension of each value
        """
        self.__options = TreeOptions(horizon, branching_horizon, 1 if dim_value is None else dim_value)
        self.__transition_prob = np.array(transition_prob, dtype=float)
        self.__initial_distribution = np.array(initial_distribution, dtype=float).reshape(-1, )
        num_states = self.__initial_distribution.size
        if self.__transition_prob.shape != (num_states, num_states):
            raise InvalidDistribution(f"[MarkovChain] transition matrix must be ({num_states} x {num_states})")
        # check correctness of `transition_prob` and `initial_distribution`
        for pi in self.__transition_prob:
            check_probability_vector(pi, "MarkovChain")
        check_probability_vector(self.__initial_distribution, "MarkovChain")
        if values is None:
            values = list(range(num_states))
        self.__values = check_values(values, num_states, dim_value, "MarkovChain")

    @classmethod
    def from_options(cls, transition_prob, initial_distribution, options, values=None):
        """
        :param options: instance of TreeOptions
        """
        return cls(transition_prob, initial_distribution, options.horizon_length, options.branching_horizon,
                   values, options.dim_value if values is not None else None)

    def __cover(self, i):
        pi = self.__transition_prob[i, :]
        cover = np.flatnonzero(pi > 0)
        return cover, pi[cover]

    def build(self):
        """
        Generates a scenario tree from the given Markov chain
        """
        initial = np.flatnonzero(self.__initial_distribution > 0)
        stages, ancestors, probs, events = branch_out(self.__options.horizon_length,
                                                      self.__options.branching_horizon,
                                                      (initial, self.__initial_distribution[initial]),
                                                      self.__cover)
        values = [None] + [self.__values[w] for w in events[1:]]
        return Tree(stages, ancestors, probs, values=values)


class IidProcess:
    """
    Factory class to construct n-ary scenario trees from i.i.d. processes
    """

    def __init__(self, distribution, horizon, branching_horizon=None, values=None, dim_value=None):
        """
        :param distribution: distribution of `w`, size = number of events, `w`, per node before branching stops
        :param horizon: horizon of the scenario tree (N) or number of final stage
        :param branching_horizon: stage at which branching stops, no larger than `horizon` [default: horizon]
        :param values: (optional) value of `w` at each event [default: event index]
        :param dim_value: (optional) dimension of each value
        """
        self.__options = TreeOptions(horizon, branching_horizon, 1 if dim_value is None else dim_value)
        self.__distribution = np.array(distribution, dtype=float).reshape(-1, )
        check_probability_vector(self.__distribution, "IidProcess")
        if values is None:
            values = list(range(self.__distribution.size))
        self.__values = check_values(values, self.__distribution.size, dim_value, "IidProcess")
        self.__cover = np.flatnonzero(self.__distribution > 0)

    @classmethod
    def from_options(cls, distribution, options, values=None):
        """
        :param options: instance of TreeOptions
        """
        return cls(distribution, options.horizon_length, options.branching_horizon,
                   values, options.dim_value if values is not None else None)

    def __branch(self, _):
        return self.__cover, self.__distribution[self.__cover]

    def build(self):
        """
        Generates a scenario tree from the given n-ary distribution
        """
        stages, ancestors, probs, events = branch_out(self.__options.horizon_length,
                                                      self.__options.branching_horizon,
                                                      self.__branch(None),
                                                      self.__branch)
        values = [None] + [self.__values[w] for w in events[1:]]
        return Tree(stages, ancestors, probs, values=values)


class FromData:
    """
    Factory class to construct scenario trees from data
    """

    def __init__(self, samples, ni, scale=False):
        """
        :param samples: tensor of tree data, [samples x dimension x time] (or [samples x time])
        :param ni: maximum number of children per node at each stage (the horizon is `len(ni)`)
        :param scale: whether to standardise each variable before computing distances [default: False]
        """
        data = np.array(samples, dtype=float)
        if data.ndim == 2:
            data = data[:, np.newaxis, :]
        if data.ndim != 3 or data.shape[0] == 0 or data.shape[1] == 0:
            raise DimensionMismatch("[FromData] data provided is not a nonempty 2D or 3D array")
        if not np.all(np.isfinite(data)):
            raise DimensionMismatch("[FromData] data contains non-finite entries")
        self.__options = TreeOptions(len(ni), dim_value=data.shape[1], ni=ni)
        if len(self.__options.ni) > data.shape[2]:
            raise InvalidHorizon(f"[FromData] ni has ({len(self.__options.ni)}) stages, "
                                 f"but data only has ({data.shape[2]}) time steps")
        self.__data = data
        self.__scaled = self.__standardise(data) if scale else data

    @classmethod
    def from_options(cls, samples, options, scale=False):
        """
        :param options: instance of TreeOptions (with `ni`)
        """
        if options.ni is None:
            raise InvalidHorizon("[FromData] option (ni) is required")
        if options.horizon_length != len(options.ni):
            raise InvalidHorizon("[FromData] horizon length does not match the length of ni")
        factory = cls(samples, options.ni, scale)
        if factory.__data.shape[1] != options.dim_value:
            raise DimensionMismatch(f"[FromData] data has dimension ({factory.__data.shape[1]}), "
                                    f"expected ({options.dim_value})")
        return factory

    @staticmethod
    def __standardise(data):
        scaled = np.zeros(data.shape)
        for var in range(data.shape[1]):
            x = data[:, var, :]
            std = np.std(x)
            scaled[:, var, :] = (x - np.mean(x)) / (std if std > 0 else 1.)
        return scaled

    @staticmethod
    def forward_selection(points, probs, num_kept):
        """
        Optimal scenario reduction via forward selection.
        Greedily keep the points which minimise the Kantorovich distance between the original
        distribution and the distribution supported on the kept points.

        :param points: array of points, [number of points x dimension]
        :param probs: probability of each point
        :param num_kept: number of points to keep
        :return kept: indices of kept points (ascending)
        :return closest: closest[j] == r iff kept[r] is the kept point closest to point j
        """
        num_points = points.shape[0]
        if not 1 <= num_kept <= num_points:
            raise ValueError("[FromData] number of kept points must be between 1 and the number of points")
        dist = cdist(points, points)
        min_dist = np.full(num_points, np.inf)
        is_kept = np.zeros(num_points, dtype=bool)
        for _ in range(num_kept):
            costs = probs @ np.minimum(min_dist[:, np.newaxis], dist)
            costs[is_kept] = np.inf
            best = int(np.argmin(costs))
            is_kept[best] = True
            min_dist = np.minimum(min_dist, dist[:, best])
        kept = np.flatnonzero(is_kept)
        closest = np.argmin(dist[:, kept], axis=1)
        return kept, closest

    def build(self):
        """
        Generates a scenario tree from the given data
        """
        ni = self.__options.ni
        num_samples = self.__data.shape[0]
        stages, ancestors, probs, values = [0], [-1], [1.], [None]
        samples_of_node = {0: np.arange(num_samples)}
        frontier = [0]
        for stage, num_children in enumerate(ni):
            new_frontier = []
            for node in frontier:
                members = samples_of_node.pop(node)
                points = self.__scaled[members, :, stage]
                weights = np.full(members.size, 1 / members.size)
                kept, closest = self.forward_selection(points, weights, min(num_children, members.size))
                for r, representative in enumerate(kept):
                    assigned = members[closest == r]
                    if assigned.size == 0:
                        continue  # duplicate of another representative
                    child = len(stages)
                    stages.append(stage + 1)
                    ancestors.append(node)
                    probs.append(assigned.size / members.size)
                    values.append(self.__data[members[representative], :, stage].copy())
                    samples_of_node[child] = assigned
                    new_frontier.append(child)
            frontier = new_frontier
        if 3 * len(frontier) > num_samples:
            print(f"Warning: Tree has {len(frontier)} scenarios, but only {num_samples} samples in data.")
        return Tree(stages, ancestors, probs, values=values)
