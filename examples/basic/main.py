import numpy as np
import argparse
import raocp as r


parser = argparse.ArgumentParser(description='Example: risk-averse control of a double integrator.')
parser.add_argument("--horizon", type=int, default=4)
parser.add_argument("--stop", type=int, default=2)
parser.add_argument("--risk", type=str, default='avar', choices=['avar', 'evar'])
parser.add_argument("--alpha", type=float, default=0.5)
parser.add_argument("--verbose", action='store_true')
args = parser.parse_args()

# --------------------------------------------------------
# Generate scenario tree
# --------------------------------------------------------
p = np.array([[0.6, 0.3, 0.1],
              [0.3, 0.5, 0.2],
              [0.2, 0.3, 0.5]])
v = np.array([0.5, 0.4, 0.1])
tree = r.factory.MarkovChain(
    transition_prob=p,
    initial_distribution=v,
    horizon=args.horizon,
    branching_horizon=args.stop
).build()
print(tree)

# --------------------------------------------------------
# Generate problem data
# --------------------------------------------------------
# Dynamics (the sampling time depends on the state of the chain)
num_states, num_inputs = 2, 1
dynamics = []
for dt in [0.5, 1., 1.5]:
    A = np.array([[1., dt], [0., 1.]])
    B = np.array([[0.5 * dt ** 2], [dt]])
    dynamics += [{"A": A, "B": B}]
tree.map_values_to_data([0, 1, 2], dynamics)

# Costs
Q = np.eye(num_states)
R = 0.1 * np.eye(num_inputs)
QN = 10 * np.eye(num_states)

# Risk
risk = r.risk.avar(args.alpha) if args.risk == 'avar' else r.risk.evar(args.alpha)

# --------------------------------------------------------
# Make controller
# --------------------------------------------------------
controller = r.controller.Factory() \
    .with_scenario_tree(tree) \
    .with_input_bounds(-np.ones(num_inputs), np.ones(num_inputs)) \
    .with_state_bounds([-10., -5.], [10., 5.]) \
    .with_parametric_risk(risk) \
    .with_stage_cost(Q, R) \
    .with_terminal_cost(QN) \
    .with_verbose(args.verbose) \
    .make_controller()
print(controller)

# --------------------------------------------------------
# Control
# --------------------------------------------------------
x0 = np.array([-3., 1.])
solution = controller.control(x0)
print(solution)
print("First input:", solution.first_input)
for i, states in enumerate(solution.scenario_states()):
    print(f"Scenario {i} (probability {tree.probability_of_node(tree.leaf_nodes[i]):.3f}):",
          np.round(states[:, 0], 3))
