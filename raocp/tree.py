import numpy as np
from .errors import InvalidNodeId, InvalidHorizon, InvalidDistribution, UnmappedValue, DimensionMismatch


class NodeIterator:
    """
    Restartable cursor over a fixed set of node indices, in ascending order
    """

    def __init__(self, nodes):
        """
        :param nodes: read-only array of node indices (shared, never copied)
        """
        self.__nodes = nodes
        self.__cursor = 0

    def has_next(self):
        """
        :return: whether there are more nodes to visit
        """
        return self.__cursor < self.__nodes.size

    def next(self):
        """
        Advance the cursor

        :return: index of next node
        """
        if not self.has_next():
            raise StopIteration
        node = int(self.__nodes[self.__cursor])
        self.__cursor += 1
        return node

    def restart(self):
        """
        Move the cursor back to the first node
        """
        self.__cursor = 0
        return self

    def __iter__(self):
        return self

    def __next__(self):
        return self.next()

    def __len__(self):
        return self.__nodes.size


class Tree:
    """
    Scenario tree with per-node values and data
    """

    def __init__(self, stages, ancestors, conditional_probability, values=None, children=None):
        """
        :param stages: array where `array position=node number` and `value at position=stage at node`
        :param ancestors: array where `array position=node number` and `value at position=node ancestor`
        :param conditional_probability: array where `array position=node number` and
                                        `value at position=probability of node given its ancestor`
        :param values: (optional) list where `list position=node number` and `value at position=value of w`
        :param children: (optional) list where `list position=node number` and `value at position=children of node`

        Note: avoid using this constructor directly; use a factory instead.
        """
        self.__stages = np.array(stages, dtype=np.intp).reshape(-1)
        self.__ancestors = np.array(ancestors, dtype=np.intp).reshape(-1)
        self.__conditional_probability = np.array(conditional_probability, dtype=float).reshape(-1)
        self.__probability = None  # this will be updated later (the user doesn't need to provide it)
        self.__values = [None] * self.__stages.size if values is None else list(values)
        self.__children = children  # ^
        self.__num_children = None  # ^
        self.__nodes_of_stage = None  # ^
        self.__all_nodes = None  # ^
        self.__nonleaf_nodes = None  # ^
        self.__leaf_nodes = None  # ^
        self.__node_data = {}
        self.__value_to_data = {}
        self.__update()

    def __update(self):
        num_nodes = self.__stages.size
        if self.__ancestors.size != num_nodes or self.__conditional_probability.size != num_nodes \
                or len(self.__values) != num_nodes:
            raise DimensionMismatch("[Tree] stages, ancestors, probabilities and values must have the same length")
        if num_nodes == 0 or self.__ancestors[0] != -1 or self.__stages[0] != 0:
            raise InvalidHorizon("[Tree] node 0 must be the root (stage 0, no ancestor)")
        # Check topology (ancestors are numbered before their children)
        for i in range(1, num_nodes):
            anc = self.__ancestors[i]
            if not 0 <= anc < i:
                raise InvalidNodeId(f"[Tree] ancestor ({anc}) of node ({i}) is not a preceding node")
            if self.__stages[i] != self.__stages[anc] + 1:
                raise InvalidHorizon(f"[Tree] stage of node ({i}) is not one more than the stage of its ancestor")
        # Update children
        if self.__children is None:
            children = [[] for _ in range(num_nodes)]
            for i in range(1, num_nodes):
                children[self.__ancestors[i]].append(i)
        else:
            children = [list(ch) for ch in self.__children] + \
                       [[] for _ in range(num_nodes - len(self.__children))]
        self.__children = [self.__read_only(np.array(ch, dtype=np.intp)) for ch in children]
        for i in range(num_nodes):
            if np.any(self.__ancestors[self.__children[i]] != i):
                raise InvalidNodeId(f"[Tree] children of node ({i}) do not agree with ancestors")
        if sum(ch.size for ch in self.__children) != num_nodes - 1:
            raise InvalidNodeId("[Tree] every node except the root must be the child of exactly one node")
        # Update number of children
        self.__num_children = self.__read_only(np.array([ch.size for ch in self.__children], dtype=np.intp))
        # Update probabilities (product of conditional probabilities along the path from the root)
        if np.any(self.__conditional_probability < 0) or self.__conditional_probability[0] != 1:
            raise InvalidDistribution("[Tree] conditional probabilities must be nonnegative and 1 at the root")
        probability = np.ones(num_nodes)
        for i in range(1, num_nodes):
            probability[i] = probability[self.__ancestors[i]] * self.__conditional_probability[i]
        self.__probability = self.__read_only(probability)
        for i in np.flatnonzero(self.__num_children):
            if abs(np.sum(self.__conditional_probability[self.__children[i]]) - 1) > 1e-9:
                raise InvalidDistribution(f"[Tree] probabilities of children of node ({i}) do not sum up to 1")
        # Update node sets
        self.__all_nodes = self.__read_only(np.arange(num_nodes, dtype=np.intp))
        self.__nonleaf_nodes = self.__read_only(np.flatnonzero(self.__num_children > 0))
        self.__leaf_nodes = self.__read_only(np.flatnonzero(self.__num_children == 0))
        self.__nodes_of_stage = [self.__read_only(np.flatnonzero(self.__stages == k))
                                 for k in range(self.num_stages)]

    @staticmethod
    def __read_only(arr):
        arr.flags.writeable = False
        return arr

    def __check_node(self, node_idx):
        if isinstance(node_idx, (bool, np.bool_)) or not isinstance(node_idx, (int, np.integer)):
            raise InvalidNodeId(f"[Tree] node index must be an integer; ({node_idx!r}) not valid")
        if not 0 <= node_idx < self.num_nodes:
            raise InvalidNodeId(f"[Tree] node index ({node_idx}) not in range [0, {self.num_nodes})")
        return int(node_idx)

    def __check_stage(self, stage_idx):
        if isinstance(stage_idx, (bool, np.bool_)) or not isinstance(stage_idx, (int, np.integer)) \
                or not 0 <= stage_idx < self.num_stages:
            raise InvalidHorizon(f"[Tree] stage ({stage_idx}) not in range [0, {self.num_stages})")
        return int(stage_idx)

    @staticmethod
    def value_key(value):
        """
        :param value: value of `w` at some node
        :return: hashable key for `value` (vectors become tuples, single-entry vectors become scalars)
        """
        if value is None:
            return None
        if isinstance(value, (np.ndarray, list, tuple)):
            arr = np.asarray(value)
            if arr.size == 1:
                return arr.reshape(-1)[0].item()
            return tuple(arr.reshape(-1).tolist())
        if isinstance(value, np.generic):
            return value.item()
        return value

    # --------------------------------------------------------
    # Sizes
    # --------------------------------------------------------
    @property
    def num_nodes(self):
        """
        :return: total number of nodes of the tree
        """
        return self.__stages.size

    @property
    def num_nonleaf_nodes(self):
        return self.__nonleaf_nodes.size

    @property
    def num_leaf_nodes(self):
        """
        :return: number of leaf nodes of the tree
        """
        return self.__leaf_nodes.size

    @property
    def horizon(self):
        """
        :return: index of last stage (N)
        """
        return int(self.__stages.max())

    @property
    def num_stages(self):
        """
        :return: number of stages including zero stage
        """
        return self.horizon + 1

    @property
    def max_num_children(self):
        """
        :return: maximum number of children per node
        """
        return int(self.__num_children.max())

    # --------------------------------------------------------
    # Topology
    # --------------------------------------------------------
    def ancestor_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: index of ancestor node (-1 for the root)
        """
        return int(self.__ancestors[self.__check_node(node_idx)])

    def children_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: array of children of given node (empty for leaf nodes)
        """
        return self.__children[self.__check_node(node_idx)]

    def stage_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: stage of given node
        """
        return int(self.__stages[self.__check_node(node_idx)])

    def nodes_of_stage(self, stage_idx):
        """
        :param stage_idx: index of stage
        :return: array of node indices at given stage
        """
        return self.__nodes_of_stage[self.__check_stage(stage_idx)]

    def is_leaf(self, node_idx):
        return self.__num_children[self.__check_node(node_idx)] == 0

    @property
    def nonleaf_nodes(self):
        return self.__nonleaf_nodes

    @property
    def leaf_nodes(self):
        return self.__leaf_nodes

    def siblings_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: array of siblings of given node (including the given node)
        """
        if self.__check_node(node_idx) == 0:
            return self.__all_nodes[:1]
        return self.__children[self.__ancestors[node_idx]]

    def ancestor_path(self, node_idx):
        """
        :param node_idx: node index
        :return: array of nodes from the root to the given node
        """
        node = self.__check_node(node_idx)
        path = np.zeros(self.__stages[node] + 1, dtype=np.intp)
        for stage in reversed(range(path.size)):
            path[stage] = node
            node = self.__ancestors[node]
        return path

    def get_scenarios(self):
        """
        :return: list of scenarios (paths from the root to each leaf node) as arrays
        """
        return [self.ancestor_path(leaf) for leaf in self.__leaf_nodes]

    # --------------------------------------------------------
    # Probabilities
    # --------------------------------------------------------
    def probability_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: probability to visit the given node
        """
        return float(self.__probability[self.__check_node(node_idx)])

    def conditional_probability_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: probability to visit the given node given that its ancestor is visited
        """
        return float(self.__conditional_probability[self.__check_node(node_idx)])

    def cond_prob_of_children_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: array of conditional probabilities of the children of a given node
        """
        return self.__conditional_probability[self.children_of_node(node_idx)]

    # --------------------------------------------------------
    # Values and data
    # --------------------------------------------------------
    def value_of_node(self, node_idx):
        """
        :param node_idx: node index
        :return: value of the disturbance (`w`) at the given node (if any)
        """
        return self.__values[self.__check_node(node_idx)]

    def set_value_at_node(self, node_idx, value):
        self.__values[self.__check_node(node_idx)] = value
        return self

    def distinct_values(self):
        """
        :return: list of distinct values of `w` on non-root nodes, in order of first appearance
        """
        seen = {}
        for i in range(1, self.num_nodes):
            key = self.value_key(self.__values[i])
            if key not in seen:
                seen[key] = self.__values[i]
        return list(seen.values())

    def map_values_to_data(self, values, data):
        """
        Attach data to every node whose value is in `values`

        :param values: list of unique values of `w`
        :param data: list of data (same length as `values`); `data[i]` is attached to `values[i]`
        """
        values = list(values)
        data = list(data)
        if len(values) != len(data):
            raise DimensionMismatch(f"[Tree] cannot map ({len(values)}) values to ({len(data)}) data")
        keys = [self.value_key(v) for v in values]
        if len(set(keys)) != len(keys):
            raise ValueError("[Tree] values mapped to data must be unique")
        self.__value_to_data = dict(zip(keys, data))
        return self

    def set_data_at_node(self, node_idx, data):
        """
        Attach data to a single node (takes precedence over data mapped from values)
        """
        self.__node_data[self.__check_node(node_idx)] = data
        return self

    def has_data_at_node(self, node_idx):
        node = self.__check_node(node_idx)
        return node in self.__node_data or self.value_key(self.__values[node]) in self.__value_to_data

    def data_at_node(self, node_idx):
        """
        :param node_idx: node index
        :return: data attached to the node, or to the value of `w` at the node
        """
        node = self.__check_node(node_idx)
        if node in self.__node_data:
            return self.__node_data[node]
        key = self.value_key(self.__values[node])
        if key not in self.__value_to_data:
            raise UnmappedValue(self.__values[node],
                                f"[Tree] value ({self.__values[node]}) of node ({node}) is not mapped to any data")
        return self.__value_to_data[key]

    def unmapped_values(self):
        """
        :return: list of values of non-root nodes that cannot be resolved to data
        """
        missing = {}
        for i in range(1, self.num_nodes):
            if not self.has_data_at_node(i):
                missing.setdefault(self.value_key(self.__values[i]), self.__values[i])
        return list(missing.values())

    # --------------------------------------------------------
    # Iterators
    # --------------------------------------------------------
    def iterator_nodes(self):
        return NodeIterator(self.__all_nodes)

    def iterator_nodes_at_stage(self, stage_idx):
        return NodeIterator(self.nodes_of_stage(stage_idx))

    def iterator_nonleaf_nodes(self):
        return NodeIterator(self.__nonleaf_nodes)

    def iterator_leaf_nodes(self):
        return NodeIterator(self.__leaf_nodes)

    def __str__(self):
        return f"Scenario Tree\n+ Nodes: {self.num_nodes}\n+ Stages: {self.num_stages}\n" \
               f"+ Scenarios: {self.num_leaf_nodes}"

    def __repr__(self):
        return f"Scenario tree with {self.num_nodes} nodes, {self.num_stages} stages " \
               f"and {self.num_leaf_nodes} scenarios"
