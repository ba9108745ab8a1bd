import time
import numpy as np
import cvxpy as cp
from . import tree
from . import build
from .errors import DimensionMismatch, IncompleteSpecification, SolveFailure, UnmappedValue


class Solution:
    """
    Solution of the risk-averse optimal control problem at a given initial state
    """

    def __init__(self, scenario_tree: tree.Tree, states, inputs, objective, status, solve_time=None):
        """
        :param scenario_tree: instance of Tree
        :param states: array of states, [num_nodes x num_states]
        :param inputs: array of inputs at nonleaf nodes, [num_nonleaf_nodes x num_inputs]
        :param objective: optimal value
        :param status: status reported by the solver
        :param solve_time: solve time in seconds (if known)
        """
        self.__tree = scenario_tree
        self.__states = np.array(states, dtype=float)
        self.__inputs = np.array(inputs, dtype=float)
        self.__states.setflags(write=False)
        self.__inputs.setflags(write=False)
        self.__objective = float(objective)
        self.__status = status
        self.__solve_time = solve_time
        self.__input_row = {int(node): row for row, node in enumerate(scenario_tree.nonleaf_nodes)}

    @property
    def states(self):
        return self.__states

    @property
    def inputs(self):
        return self.__inputs

    @property
    def objective(self):
        return self.__objective

    @property
    def status(self):
        return self.__status

    @property
    def solve_time(self):
        return self.__solve_time

    def state_at_node(self, node_idx):
        self.__tree.stage_of_node(node_idx)  # validates index
        return self.__states[node_idx]

    def input_at_node(self, node_idx):
        """
        :return: input at the given node, or None at leaf nodes
        """
        if self.__tree.is_leaf(node_idx):
            return None
        return self.__inputs[self.__input_row[node_idx]]

    @property
    def first_input(self):
        return self.__inputs[0]

    def scenario_states(self):
        """
        :return: list of state trajectories, one per scenario, [num_stages x num_states]
        """
        return [self.__states[path] for path in self.__tree.get_scenarios()]

    def scenario_inputs(self):
        """
        :return: list of input trajectories, one per scenario, [horizon x num_inputs]
        """
        return [np.array([self.__inputs[self.__input_row[int(i)]] for i in path[:-1]])
                for path in self.__tree.get_scenarios()]

    def __str__(self):
        return f"Solution\n+ Status: {self.__status}\n+ Objective: {self.__objective}"


class Controller:
    """
    Risk-averse optimal controller; one convex program over the scenario tree, parametric in the initial state

    Note: avoid using this constructor directly; use a factory instead
    """

    def __init__(self, scenario_tree: tree.Tree, num_states, num_inputs, dynamics, nonleaf_costs, leaf_cost,
                 input_constraint, state_constraint, risks, solver=None, solver_options=None, verbose=False):
        """
        :param scenario_tree: instance of Tree
        :param num_states: number of system states
        :param num_inputs: number of system inputs
        :param dynamics: list of dynamics (size: num_nodes, None at the root)
        :param nonleaf_costs: dictionary of nonleaf costs (keys: nonleaf nodes)
        :param leaf_cost: instance of LeafCost
        :param input_constraint: instance of Rectangle on the inputs
        :param state_constraint: instance of Rectangle on the states at non-root nodes (or None)
        :param risks: dictionary of risks (keys: nonleaf nodes)
        """
        self.__tree = scenario_tree
        self.__nx = num_states
        self.__nu = num_inputs
        self.__list_of_dynamics = dynamics
        self.__nonleaf_costs = nonleaf_costs
        self.__leaf_cost = leaf_cost
        self.__input_constraint = input_constraint
        self.__state_constraint = state_constraint
        self.__risks = risks
        self.__solver = solver
        self.__solver_options = {} if solver_options is None else dict(solver_options)
        self.__verbose = verbose
        self.__input_row = {int(node): row for row, node in enumerate(self.__tree.nonleaf_nodes)}
        self.__x0 = cp.Parameter(num_states, name="x0")
        self.__x = cp.Variable((self.__tree.num_nodes, num_states), name="x")
        self.__u = cp.Variable((self.__tree.num_nonleaf_nodes, num_inputs), name="u")
        self.__s = cp.Variable(self.__tree.num_nodes, name="s")
        self.__tau = cp.Variable(self.__tree.num_nonleaf_nodes, name="tau")
        self.__constraints = []
        self.__log("Building optimisation model...")
        self.__build()
        self.__log(f"Model has {len(self.__constraints)} constraints and "
                   f"{sum(v.size for v in self.__cvx.variables())} variables.")

    def __log(self, message):
        if self.__verbose:
            print(message)

    # GETTERS
    @property
    def tree(self):
        return self.__tree

    @property
    def num_states(self):
        return self.__nx

    @property
    def num_inputs(self):
        return self.__nu

    def dynamics_at_node(self, idx):
        return self.__list_of_dynamics[idx]

    def nonleaf_cost_at_node(self, idx):
        return self.__nonleaf_costs[idx]

    def risk_at_node(self, idx):
        return self.__risks[idx]

    @property
    def leaf_cost(self):
        return self.__leaf_cost

    @property
    def input_constraint(self):
        return self.__input_constraint

    @property
    def state_constraint(self):
        return self.__state_constraint

    @property
    def problem(self):
        return self.__cvx

    # --------------------------------------------------------
    # Model
    # --------------------------------------------------------
    def __build(self):
        self.__constraints.append(self.__x[0] == self.__x0)
        self.__impose_dynamics()
        self.__impose_cost()
        self.__impose_constraints()
        self.__impose_risk_constraints()
        self.__cvx = cp.Problem(cp.Minimize(self.__s[0]), self.__constraints)

    def __u_at(self, node):
        return self.__u[self.__input_row[node]]

    def __impose_dynamics(self):
        for node in range(1, self.__tree.num_nodes):
            anc = self.__tree.ancestor_of_node(node)
            self.__constraints.append(
                self.__x[node] == self.__list_of_dynamics[node](self.__x[anc], self.__u_at(anc))
            )

    def __impose_cost(self):
        for node in self.__tree.nonleaf_nodes:
            node = int(node)
            self.__constraints.append(
                self.__nonleaf_costs[node].expression(self.__x[node], self.__u_at(node)) <= self.__tau[
                    self.__input_row[node]]
            )
        for node in self.__tree.leaf_nodes:
            node = int(node)
            self.__constraints.append(self.__leaf_cost.expression(self.__x[node]) <= self.__s[node])

    def __impose_constraints(self):
        for node in self.__tree.nonleaf_nodes:
            self.__constraints += self.__input_constraint.constraints(self.__u_at(int(node)))
        if self.__state_constraint is not None:
            for node in range(1, self.__tree.num_nodes):
                self.__constraints += self.__state_constraint.constraints(self.__x[node])

    def __impose_risk_constraints(self):
        for node in self.__tree.nonleaf_nodes:
            node = int(node)
            children = self.__tree.children_of_node(node)
            self.__constraints += self.__risks[node].epigraph(
                self.__s[children], self.__s[node] - self.__tau[self.__input_row[node]]
            )

    # --------------------------------------------------------
    # Control
    # --------------------------------------------------------
    def control(self, initial_state):
        """
        :param initial_state: state at the root node
        :return: instance of Solution
        """
        x0 = np.array(initial_state, dtype=float).reshape(-1)
        if x0.size != self.__nx:
            raise DimensionMismatch(f"[Controller] initial state must have ({self.__nx}) entries, "
                                    f"got ({x0.size})")
        self.__x0.value = x0
        self.__log(f"Solving risk-averse optimal control problem at x0 = {x0}...")
        start = time.perf_counter()
        try:
            self.__cvx.solve(solver=self.__solver, verbose=self.__verbose, **self.__solver_options)
        except cp.error.SolverError as e:
            raise SolveFailure("solver_error", str(e)) from e
        elapsed = time.perf_counter() - start
        status = self.__cvx.status
        stats = self.__cvx.solver_stats
        if status != cp.OPTIMAL:
            raise SolveFailure(status, self.__diagnostic(status, stats))
        solve_time = stats.solve_time if stats is not None and stats.solve_time is not None else elapsed
        self.__log(f"Status: {status}, objective: {self.__cvx.value}, time: {solve_time:.4f} s")
        return Solution(self.__tree, self.__x.value, self.__u.value, self.__cvx.value, status, solve_time)

    @staticmethod
    def __diagnostic(status, stats):
        """
        :return: reason of a failed solve, as reported by the solver
        """
        reason = f"solver reported status ({status})"
        if stats is None:
            return reason
        if stats.solver_name:
            reason += f" from {stats.solver_name}"
        if stats.num_iters is not None:
            reason += f" after ({stats.num_iters}) iterations"
        if isinstance(stats.extra_stats, dict):
            reason += f"; {stats.extra_stats}"
        return reason

    def __str__(self):
        return f"Risk-averse optimal controller\n+ States: {self.__nx}\n+ Inputs: {self.__nu}\n" \
               f"+ Nodes: {self.__tree.num_nodes}"

    def __repr__(self):
        return f"Risk-averse optimal controller with {self.__nx} states, {self.__nu} inputs " \
               f"and {self.__tree.num_nodes} nodes"


class Factory:
    """
    Risk-averse optimal controller builder
    """

    def __init__(self):
        self.__tree = None
        self.__input_constraint = None
        self.__state_constraint = None
        self.__parametric_risk = None
        self.__leaf_cost = None
        self.__default_cost = None
        self.__default_dynamics = None
        self.__solver = None
        self.__solver_options = {}
        self.__verbose = False

    def with_scenario_tree(self, scenario_tree: tree.Tree):
        self.__tree = scenario_tree
        return self

    def with_input_bounds(self, umin, umax):
        self.__input_constraint = build.Rectangle(umin, umax)
        return self

    def with_state_bounds(self, xmin, xmax):
        self.__state_constraint = build.Rectangle(xmin, xmax)
        return self

    def with_parametric_risk(self, risk):
        """
        :param risk: instance of ParametricRisk, or function which maps a probability vector to a risk
        """
        if not callable(risk):
            raise TypeError("[Factory] parametric risk must be callable")
        self.__parametric_risk = risk
        return self

    def with_terminal_cost(self, terminal_cost_matrix):
        self.__leaf_cost = build.LeafCost(terminal_cost_matrix)
        return self

    def with_stage_cost(self, state_cost_matrix, input_cost_matrix):
        """
        Stage cost of nonleaf nodes without cost matrices (`Q`, `R`) in their data
        """
        self.__default_cost = build.NonleafCost(state_cost_matrix, input_cost_matrix)
        return self

    def with_dynamics(self, state_matrix, input_matrix, constant=None):
        """
        Dynamics of nodes without dynamics (`A`, `B`, optional `c`) in their data
        """
        self.__default_dynamics = build.Dynamics(state_matrix, input_matrix, constant)
        return self

    def with_solver(self, solver, **options):
        """
        :param solver: name of cvxpy solver (e.g., cp.CLARABEL)
        :param options: keyword arguments passed to the solver
        """
        self.__solver = solver
        self.__solver_options = options
        return self

    def with_verbose(self, enable=True):
        self.__verbose = enable
        return self

    # --------------------------------------------------------
    # Make
    # --------------------------------------------------------
    def __data_at_node(self, node):
        try:
            return self.__tree.data_at_node(node)
        except UnmappedValue:
            return None

    def __check_complete(self):
        required = (("scenarioTree", self.__tree),
                    ("inputBounds", self.__input_constraint),
                    ("parametricRiskCost", self.__parametric_risk),
                    ("terminalCostMatrix", self.__leaf_cost))
        for field, item in required:
            if item is None:
                raise IncompleteSpecification(field)

    def __resolve_dynamics(self, nx, nu):
        dynamics = [None]
        for node in range(1, self.__tree.num_nodes):
            dyn = build.Dynamics.from_data(self.__data_at_node(node))
            if dyn is None:
                dyn = self.__default_dynamics
            if dyn is None:
                raise IncompleteSpecification("dynamics",
                                              f"[Factory] controller specification is missing (dynamics); "
                                              f"node ({node}) with value ({self.__tree.value_of_node(node)}) "
                                              f"has no dynamics")
            if dyn.num_states != nx or dyn.num_inputs != nu:
                raise DimensionMismatch(f"[Factory] dynamics at node ({node}) have ({dyn.num_states}) states and "
                                        f"({dyn.num_inputs}) inputs; expected ({nx}) and ({nu})")
            dynamics.append(dyn)
        return dynamics

    def __resolve_costs(self, nx, nu):
        costs = {}
        for node in self.__tree.nonleaf_nodes:
            node = int(node)
            cost = build.NonleafCost.from_data(self.__data_at_node(node))
            if cost is None:
                cost = self.__default_cost if self.__default_cost is not None else build.NonleafCost.zero(nx, nu)
            if cost.Q.shape != (nx, nx) or cost.R.shape != (nu, nu):
                raise DimensionMismatch(f"[Factory] cost matrices at node ({node}) do not match "
                                        f"({nx}) states and ({nu}) inputs")
            costs[node] = cost
        return costs

    def __resolve_risks(self):
        risks = {}
        for node in self.__tree.nonleaf_nodes:
            node = int(node)
            risk = self.__parametric_risk(self.__tree.cond_prob_of_children_of_node(node))
            if risk.num_outcomes != self.__tree.children_of_node(node).size:
                raise DimensionMismatch(f"[Factory] risk at node ({node}) does not match its number of children")
            risks[node] = risk
        return risks

    def make_controller(self):
        self.__check_complete()
        nx = self.__leaf_cost.Q.shape[0]
        nu = self.__input_constraint.dim
        dynamics = self.__resolve_dynamics(nx, nu)
        if self.__state_constraint is not None and self.__state_constraint.dim != nx:
            raise DimensionMismatch(f"[Factory] state bounds must have ({nx}) entries")
        costs = self.__resolve_costs(nx, nu)
        risks = self.__resolve_risks()
        if self.__verbose:
            print(f"Making controller over {self.__tree.num_nodes} nodes...")
        return Controller(self.__tree, nx, nu, dynamics, costs, self.__leaf_cost, self.__input_constraint,
                          self.__state_constraint, risks, self.__solver, self.__solver_options, self.__verbose)
