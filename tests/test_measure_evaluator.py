"""Tests for measure evaluation and the per-unit-of-work cache."""

import pytest

from recordflow.core.exceptions import (
    EvaluationError,
    InvalidArgumentError,
    MeasureEvaluationError,
    MissingParameterError,
    NotFoundError,
)
from recordflow.core.expression import ExpressionInterpreter
from recordflow.core.measure_evaluator import (
    MeasureCache,
    MeasureEvaluator,
    build_cache_key,
    measure_unit_of_work,
)
from recordflow.models import Measure, MeasureRequest


class CountingInterpreter(ExpressionInterpreter):
    """Interpreter that counts top-level evaluations."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def evaluate(self, expression, context=None):
        self.calls += 1
        return super().evaluate(expression, context)


class SingleMeasureStore:
    """Metadata stub holding one measure."""

    def __init__(self, measure):
        self.measure = measure

    def get_measure(self, identifier, version):
        if identifier == self.measure.identifier and version == self.measure.version:
            return self.measure
        return None

    def get_latest_measure(self, identifier):
        return self.measure if identifier == self.measure.identifier else None


class TestParameterResolution:
    """Test cases for parameter defaulting."""

    def test_default_used_when_not_supplied(self, measure_evaluator):
        assert measure_evaluator.evaluate("discounted", 1, {"amount": 100}) == pytest.approx(20.0)

    def test_supplied_value_wins(self, measure_evaluator):
        assert measure_evaluator.evaluate("discounted", 1, {"amount": 100, "rate": 0.5}) == pytest.approx(50.0)

    def test_missing_parameter(self, measure_evaluator):
        with pytest.raises(MissingParameterError) as exc_info:
            measure_evaluator.evaluate("discounted", 1, {"rate": 0.5})

        error = exc_info.value
        assert isinstance(error, InvalidArgumentError)
        assert error.parameter_name == "amount"
        assert error.measure_identifier == "discounted"
        assert error.version == 1

    def test_missing_parameter_never_reaches_interpreter(self, metadata_store):
        interpreter = CountingInterpreter()
        evaluator = MeasureEvaluator(metadata_store, interpreter)

        with pytest.raises(MissingParameterError):
            evaluator.evaluate("discounted", 1, {})
        assert interpreter.calls == 0

    def test_dollar_prefixed_names(self, measure_evaluator):
        assert measure_evaluator.evaluate("ratio", 1, {"amount": 9, "divisor": 3}) == 3.0


class TestVersions:
    """Test cases for version resolution."""

    def test_latest_version_when_omitted(self, measure_evaluator):
        result = measure_evaluator.evaluate_measure("discounted", None, {"amount": 10})

        assert result.identifier == "discounted"
        assert result.version == 2
        assert result.result == pytest.approx(4.0)

    def test_unknown_measure(self, measure_evaluator):
        with pytest.raises(NotFoundError) as exc_info:
            measure_evaluator.evaluate("missing")
        assert exc_info.value.resource_id == "missing"

    def test_unknown_version(self, measure_evaluator):
        with pytest.raises(NotFoundError) as exc_info:
            measure_evaluator.evaluate("discounted", 9, {"amount": 1})
        assert "version 9" in exc_info.value.message
        assert exc_info.value.context["version"] == 9


class TestEvaluationFailures:
    """Test cases for expression failures."""

    def test_failure_carries_identifier_and_version(self, measure_evaluator):
        with pytest.raises(MeasureEvaluationError) as exc_info:
            measure_evaluator.evaluate("ratio", 1, {"amount": 1, "divisor": 0})

        error = exc_info.value
        assert isinstance(error, EvaluationError)
        assert error.measure_identifier == "ratio"
        assert error.version == 1
        assert "Division by zero" in error.message

    def test_expression_over_length_limit_carries_identifier_and_version(self):
        store = SingleMeasureStore(Measure(identifier="tax", version=3, expression="rate * 2"))
        evaluator = MeasureEvaluator(store, ExpressionInterpreter(max_length=4))

        with pytest.raises(MeasureEvaluationError) as exc_info:
            evaluator.evaluate("tax", 3, {"rate": 1})

        error = exc_info.value
        assert error.measure_identifier == "tax"
        assert error.version == 3
        assert error.context["measure_identifier"] == "tax"
        assert "exceeds maximum of 4" in error.message

    def test_blank_expression_carries_identifier_and_version(self):
        store = SingleMeasureStore(Measure(identifier="tax", version=1, expression="   "))
        evaluator = MeasureEvaluator(store)

        with pytest.raises(MeasureEvaluationError) as exc_info:
            evaluator.evaluate("tax")

        assert exc_info.value.measure_identifier == "tax"
        assert exc_info.value.version == 1


class TestMeasureCache:
    """Test cases for caching within one unit of work."""

    def test_cache_key_is_sorted_by_name(self):
        assert build_cache_key("m", 1, {"b": 2, "a": "x"}) == 'm:1:a="x",b=2'

    def test_repeated_evaluation_hits_cache(self, metadata_store):
        interpreter = CountingInterpreter()
        evaluator = MeasureEvaluator(metadata_store, interpreter)

        with measure_unit_of_work() as cache:
            first = evaluator.evaluate("discounted", 1, {"amount": 100}, cache)
            second = evaluator.evaluate("discounted", 1, {"amount": 100, "rate": 0.2}, cache)

            assert first == second
            assert interpreter.calls == 1
            assert cache.hits == 1
            assert cache.misses == 1
            assert len(cache) == 1

        assert cache.cleared
        assert len(cache) == 0

    def test_no_cache_means_no_memoization(self, metadata_store):
        interpreter = CountingInterpreter()
        evaluator = MeasureEvaluator(metadata_store, interpreter)

        evaluator.evaluate("discounted", 1, {"amount": 100})
        evaluator.evaluate("discounted", 1, {"amount": 100})

        assert interpreter.calls == 2

    def test_units_of_work_do_not_share_results(self, metadata_store):
        interpreter = CountingInterpreter()
        evaluator = MeasureEvaluator(metadata_store, interpreter)

        with measure_unit_of_work() as cache:
            evaluator.evaluate("discounted", 1, {"amount": 100}, cache)
        with measure_unit_of_work() as cache:
            evaluator.evaluate("discounted", 1, {"amount": 100}, cache)
            assert cache.hits == 0

        assert interpreter.calls == 2

    def test_failed_evaluation_is_not_cached(self, measure_evaluator):
        cache = MeasureCache()
        with pytest.raises(MeasureEvaluationError):
            measure_evaluator.evaluate("ratio", 1, {"amount": 1, "divisor": 0}, cache)
        assert len(cache) == 0


class TestEvaluateMany:
    """Test cases for batch evaluation."""

    def test_results_in_request_order(self, measure_evaluator):
        results = measure_evaluator.evaluate_many([
            MeasureRequest(identifier="discounted", version=1, parameters={"amount": 10}),
            MeasureRequest(identifier="ratio", parameters={"amount": 10, "divisor": 4}),
        ])

        assert [(result.identifier, result.version) for result in results] == [("discounted", 1), ("ratio", 1)]
        assert results[0].result == pytest.approx(2.0)
        assert results[1].result == 2.5

    def test_shared_cache(self, measure_evaluator):
        request = MeasureRequest(identifier="discounted", version=1, parameters={"amount": 10})
        with measure_unit_of_work() as cache:
            measure_evaluator.evaluate_many([request, request], cache)
            assert cache.hits == 1

    def test_first_failure_propagates(self, measure_evaluator):
        with pytest.raises(NotFoundError):
            measure_evaluator.evaluate_many([
                MeasureRequest(identifier="missing"),
                MeasureRequest(identifier="discounted", parameters={"amount": 1}),
            ])
