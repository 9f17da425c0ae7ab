"""
Verify that the optimizers do reasonable things on small test problems.
Run with: pytest tests/
"""
import json

import numpy as np
import pytest
from scipy.optimize import minimize

from distopt import (
    LBFGS,
    NO_NORMALIZATION,
    TRON,
    ConvergenceReason,
    DistributedGLMLossFunction,
    InvalidConfigurationError,
    LabeledPoint,
    LogisticLoss,
    OptimizationError,
    OptimizerConfig,
    OptimizerStatus,
    OptimizerType,
    PartitionedDataset,
    SquaredLoss,
    TwiceDiffFunction,
    build_optimizer,
    build_optimizer_from_config,
    sparse_vector,
)

PROBLEM_DIMENSION = 10
MAX_ITERATIONS = 1000 * PROBLEM_DIMENSION
CONVERGENCE_TOLERANCE = 1e-12
OBJECTIVE_TOLERANCE = 1e-6
GRADIENT_TOLERANCE = 1e-6
PARAMETER_TOLERANCE = 1e-4
RANDOM_SEED = 314159265359
RANDOM_SAMPLES = 100
CENTROID = 4.0


class CentroidObjective(TwiceDiffFunction):
    """
    sum_i w_i * ||c - CENTROID||^2 over the records, evaluated with a tree aggregation.

    The minimum is 0 at every coefficient equal to CENTROID, whatever the weights.
    """

    def __init__(self, points, tree_aggregate_depth=1):
        self.points = points
        self.tree_aggregate_depth = tree_aggregate_depth
        self.dimension = points.collect()[0].dimension

    def _aggregate(self, contribution):
        return self.points.tree_aggregate(
            np.zeros(self.dimension + 1),
            lambda acc, point: acc + point.weight * contribution,
            lambda a, b: a + b,
            depth=self.tree_aggregate_depth,
        )

    def calculate(self, coefficients, normalization_context=None):
        context = normalization_context or NO_NORMALIZATION
        delta = context.effective_coefficients(coefficients) - CENTROID
        total = self._aggregate(np.concatenate([[np.dot(delta, delta)], 2.0 * delta]))
        return total[0], context.effective_coefficients(total[1:])

    def hessian_vector(self, coefficients, direction, normalization_context=None):
        context = normalization_context or NO_NORMALIZATION
        curvature = context.effective_coefficients(context.effective_coefficients(2.0 * direction))
        return self._aggregate(np.concatenate([[0.0], curvature]))[1:]


class NonFiniteObjective(TwiceDiffFunction):
    """Finite at the origin only."""

    dimension = 3

    def calculate(self, coefficients, normalization_context=None):
        if np.any(coefficients != 0):
            return float('nan'), np.full(self.dimension, np.nan)
        return 1.0, np.ones(self.dimension)

    def hessian_vector(self, coefficients, direction, normalization_context=None):
        return direction.copy()


def _single_point_dataset(weight):
    features = sparse_vector([], [], PROBLEM_DIMENSION)
    return PartitionedDataset.parallelize([LabeledPoint(1.0, features, offset=0.0, weight=weight)], num_partitions=1)


def _make_optimizer(name, **kwargs):
    params = dict(
        tolerance=CONVERGENCE_TOLERANCE,
        max_num_iterations=MAX_ITERATIONS,
        normalization_context=NO_NORMALIZATION,
        is_tracking_state=True,
    )
    params.update(kwargs)
    return build_optimizer(name, **params)


def check_convergence(tracker):
    """Objective should be monotonically decreasing."""
    last_value = float('inf')
    for state in tracker.tracked_states:
        assert last_value >= state.value, f"current={state.value}, previous={last_value}"
        last_value = state.value


def easy_optimization_states_checks(tracker):
    """Expected parameters, expected objective, monotonic convergence."""
    assert tracker.converged
    assert len(tracker.tracked_time_history) > 0
    assert len(tracker.tracked_states) > 0
    assert len(tracker.tracked_states) == len(tracker.tracked_time_history)

    last = tracker.tracked_states[-1]
    if tracker.convergence_reason == ConvergenceReason.FUNCTION_VALUES_CONVERGED:
        assert last.value == pytest.approx(0.0, abs=OBJECTIVE_TOLERANCE)
    elif tracker.convergence_reason == ConvergenceReason.GRADIENT_CONVERGED:
        assert np.linalg.norm(last.gradient) == pytest.approx(0.0, abs=GRADIENT_TOLERANCE)

    np.testing.assert_allclose(last.coefficients, CENTROID, atol=PARAMETER_TOLERANCE)
    check_convergence(tracker)


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_easy_function_no_initial_value(name):
    optimizer = _make_optimizer(name)

    # Unweighted sample
    data = _single_point_dataset(weight=1.0)
    optimizer.optimize(CentroidObjective(data, tree_aggregate_depth=1))
    easy_optimization_states_checks(optimizer.state_tracker)

    # Weighted sample; starts from the previous result
    data2 = _single_point_dataset(weight=1.5)
    optimizer.optimize(CentroidObjective(data2, tree_aggregate_depth=1))
    easy_optimization_states_checks(optimizer.state_tracker)
    np.testing.assert_allclose(optimizer.state_tracker.tracked_states[0].coefficients, CENTROID,
                               atol=PARAMETER_TOLERANCE)


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_easy_function_initial_value(name):
    optimizer = _make_optimizer(name, is_reusing_previous_initial_state=False)
    rng = np.random.default_rng(RANDOM_SEED)

    for weight in (1.0, 0.5):
        data = _single_point_dataset(weight=weight)
        for _ in range(RANDOM_SAMPLES + 1):
            init_param = rng.random(PROBLEM_DIMENSION)
            optimizer.optimize(CentroidObjective(data, tree_aggregate_depth=1), init_param)

            assert optimizer.state_tracker is not None
            assert optimizer.is_done
            easy_optimization_states_checks(optimizer.state_tracker)
            np.testing.assert_array_equal(optimizer.state_tracker.tracked_states[0].coefficients, init_param)


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
@pytest.mark.parametrize("depth", [1, 2, 3])
def test_partitioned_centroid_objective(name, depth):
    points = [LabeledPoint(1.0, np.zeros(PROBLEM_DIMENSION), weight=w) for w in np.linspace(0.2, 3.0, 40)]
    data = PartitionedDataset.parallelize(points, num_partitions=13)
    optimizer = _make_optimizer(name)
    coefficients = optimizer.optimize(CentroidObjective(data, tree_aggregate_depth=depth))
    np.testing.assert_allclose(coefficients, CENTROID, atol=PARAMETER_TOLERANCE)
    easy_optimization_states_checks(optimizer.state_tracker)


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_logistic_regression_matches_scipy(name, logistic_dataset):
    objective = DistributedGLMLossFunction(logistic_dataset.values(), LogisticLoss(), regularization_weight=1.0)
    optimizer = _make_optimizer(name, tolerance=1e-10)
    coefficients = optimizer.optimize(objective)

    expected = minimize(
        objective.calculate, np.zeros(objective.dimension), jac=True, method='L-BFGS-B',
        options={'gtol': 1e-10, 'ftol': 1e-15, 'maxiter': 10000}
    ).x
    np.testing.assert_allclose(coefficients, expected, atol=1e-3)
    assert np.linalg.norm(objective.gradient(coefficients)) < 1e-2
    check_convergence(optimizer.state_tracker)


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_least_squares_matches_normal_equations(name, rng):
    x = rng.standard_normal((200, 5))
    y = x @ np.array([1.0, -2.0, 0.5, 3.0, 0.0]) + 0.1 * rng.standard_normal(200)
    data = PartitionedDataset.parallelize([LabeledPoint(yi, xi) for xi, yi in zip(x, y)], num_partitions=5)
    optimizer = _make_optimizer(name, tolerance=1e-10)
    coefficients = optimizer.optimize(DistributedGLMLossFunction(data, SquaredLoss()))
    np.testing.assert_allclose(coefficients, np.linalg.lstsq(x, y, rcond=None)[0], atol=1e-4)


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_non_finite_objective_raises(name):
    optimizer = _make_optimizer(name)
    with pytest.raises(OptimizationError):
        optimizer.optimize(NonFiniteObjective())

    tracker = optimizer.state_tracker
    assert not optimizer.is_done
    assert not tracker.converged
    assert tracker.convergence_reason is None
    assert len(tracker.tracked_states) == 1
    assert tracker.tracked_states[0].value == 1.0


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_max_iterations(name, logistic_dataset):
    objective = DistributedGLMLossFunction(logistic_dataset.values(), LogisticLoss())
    optimizer = _make_optimizer(name, max_num_iterations=1)
    with pytest.warns(UserWarning):
        optimizer.optimize(objective)
    tracker = optimizer.state_tracker
    assert optimizer.status == OptimizerStatus.MAX_ITERATIONS_REACHED
    assert optimizer.is_done
    assert tracker.converged
    assert tracker.convergence_reason == ConvergenceReason.MAX_ITERATIONS
    assert [s.iteration for s in tracker.tracked_states] == [0, 1]


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_tracking_disabled(name):
    optimizer = _make_optimizer(name, is_tracking_state=False)
    assert optimizer.status == OptimizerStatus.NOT_STARTED
    coefficients = optimizer.optimize(CentroidObjective(_single_point_dataset(1.0)))
    assert optimizer.state_tracker is None
    assert optimizer.is_done
    np.testing.assert_allclose(coefficients, CENTROID, atol=PARAMETER_TOLERANCE)


class MisleadingGradientObjective(TwiceDiffFunction):
    """Minimum at the origin, but the reported gradient points away from it."""

    dimension = 3

    def calculate(self, coefficients, normalization_context=None):
        return 1.0 + float(np.dot(coefficients, coefficients)), np.ones(self.dimension)

    def hessian_vector(self, coefficients, direction, normalization_context=None):
        return 2.0 * direction


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_non_finite_error_names_quantity_and_point(name):
    optimizer = _make_optimizer(name)
    with pytest.raises(OptimizationError, match=r"Objective value is not finite .* coefficients with norm"):
        optimizer.optimize(NonFiniteObjective())


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_no_acceptable_step_warns(name):
    optimizer = _make_optimizer(name)
    with pytest.warns(UserWarning, match="no step decreasing the objective"):
        coefficients = optimizer.optimize(MisleadingGradientObjective())
    tracker = optimizer.state_tracker
    assert tracker.convergence_reason == ConvergenceReason.FUNCTION_VALUES_CONVERGED
    assert optimizer.status == OptimizerStatus.CONVERGED
    assert len(tracker.tracked_states) == 1
    np.testing.assert_array_equal(coefficients, 0.0)


@pytest.mark.parametrize("name", ["lbfgs", "tron"])
def test_current_state_and_evaluation_count(name):
    data = _single_point_dataset(1.0)
    calls = []

    class CountingObjective(CentroidObjective):
        def calculate(self, coefficients, normalization_context=None):
            calls.append(1)
            return super().calculate(coefficients, normalization_context)

    optimizer = _make_optimizer(name)
    assert optimizer.current_state is None
    assert optimizer.num_evaluations == 0

    optimizer.optimize(CountingObjective(data))
    assert optimizer.num_evaluations == len(calls)
    assert optimizer.num_evaluations >= len(optimizer.state_tracker.tracked_states)
    assert optimizer.current_state is optimizer.state_tracker.latest_state


def test_reuse_flag_controls_default_start():
    data = _single_point_dataset(1.0)

    reusing = _make_optimizer("lbfgs")
    reusing.optimize(CentroidObjective(data))
    reusing.optimize(CentroidObjective(data))
    np.testing.assert_allclose(reusing.state_tracker.tracked_states[0].coefficients, CENTROID,
                               atol=PARAMETER_TOLERANCE)

    fresh = _make_optimizer("lbfgs", is_reusing_previous_initial_state=False)
    fresh.optimize(CentroidObjective(data))
    fresh.optimize(CentroidObjective(data))
    np.testing.assert_array_equal(fresh.state_tracker.tracked_states[0].coefficients, 0.0)


def test_tron_requires_hessian_vector():
    class ValueOnly:
        dimension = 2

    with pytest.raises(InvalidConfigurationError):
        TRON().optimize(ValueOnly())
    with pytest.raises(InvalidConfigurationError):
        LBFGS().optimize(ValueOnly())


@pytest.mark.parametrize("kwargs", [
    {"tolerance": 0.0},
    {"tolerance": -1.0},
    {"max_num_iterations": 0},
])
def test_invalid_optimizer_configuration(kwargs):
    with pytest.raises(InvalidConfigurationError):
        LBFGS(**kwargs)
    with pytest.raises(InvalidConfigurationError):
        TRON(**kwargs)


def test_build_optimizer():
    assert isinstance(build_optimizer('lbfgs'), LBFGS)
    assert isinstance(build_optimizer('TRON'), TRON)
    assert isinstance(build_optimizer(OptimizerType.TRON), TRON)
    with pytest.raises(InvalidConfigurationError):
        build_optimizer('sgd')
    with pytest.raises(InvalidConfigurationError):
        LBFGS(num_corrections=0)


def test_optimizer_config_round_trip():
    config = OptimizerConfig.from_dict({'optimizer_type': 'tron', 'tolerance': 1e-8, 'max_num_iterations': 50})
    assert config.optimizer_type == OptimizerType.TRON
    assert OptimizerConfig.from_dict(json.loads(json.dumps(config.to_dict()))) == config

    optimizer = build_optimizer_from_config(config, is_tracking_state=False)
    assert isinstance(optimizer, TRON)
    assert optimizer.tolerance == 1e-8
    assert optimizer.max_num_iterations == 50
    assert not optimizer.is_tracking_state

    with pytest.raises(InvalidConfigurationError):
        OptimizerConfig.from_dict({'optimizer': 'tron'})
    with pytest.raises(InvalidConfigurationError):
        OptimizerConfig(tolerance=0.0)


def test_verbose_prints_progress(capsys):
    optimizer = _make_optimizer("lbfgs", verbose=True)
    optimizer.optimize(CentroidObjective(_single_point_dataset(1.0)))
    out = capsys.readouterr().out
    assert "LBFGS iter 0" in out
    assert "finished" in out
    assert f"({optimizer.num_evaluations} objective evaluations)" in out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
