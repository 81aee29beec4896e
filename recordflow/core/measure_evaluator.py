"""Measure evaluation with parameter resolution and per-unit-of-work caching."""

import json
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..models.core import Measure, MeasureRequest, MeasureResult
from .exceptions import (
    EvaluationError,
    InvalidExpressionError,
    MeasureEvaluationError,
    MissingParameterError,
    NotFoundError,
)
from .expression import ExpressionInterpreter
from .interfaces import MetadataStore
from .logging import get_logger

logger = get_logger(__name__)


def build_cache_key(identifier: str, version: int, parameters: Dict[str, Any]) -> str:
    """Build ``identifier:version:name=value,...`` over parameters sorted by name."""
    encoded = ",".join(
        f"{name}={json.dumps(parameters[name], sort_keys=True, default=str)}"
        for name in sorted(parameters)
    )
    return f"{identifier}:{version}:{encoded}"


class MeasureCache:
    """Memoized measure results for one unit of work.

    Create one per request (see ``measure_unit_of_work``) and discard it at
    the end; instances are never shared across units of work.
    """

    def __init__(self):
        self._results: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.cleared = False

    def lookup(self, key: str):
        """Return ``(found, value)`` for a cache key."""
        with self._lock:
            if key in self._results:
                self.hits += 1
                return True, self._results[key]
            self.misses += 1
            return False, None

    def store(self, key: str, value: Any) -> None:
        with self._lock:
            self._results[key] = value

    def clear(self) -> None:
        with self._lock:
            self._results.clear()
            self.cleared = True

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._results


@contextmanager
def measure_unit_of_work() -> Iterator[MeasureCache]:
    """Provide a fresh cache for one unit of work and clear it on exit."""
    cache = MeasureCache()
    try:
        yield cache
    finally:
        logger.debug(f"Measure unit of work finished: {cache.hits} hit(s), {cache.misses} miss(es)")
        cache.clear()


class MeasureEvaluator:
    """Evaluates versioned, parameterized measures."""

    def __init__(self, metadata_store: MetadataStore, interpreter: Optional[ExpressionInterpreter] = None):
        self.metadata_store = metadata_store
        self.interpreter = interpreter or ExpressionInterpreter()

    def evaluate(
        self,
        identifier: str,
        version: Optional[int] = None,
        parameters: Optional[Dict[str, Any]] = None,
        cache: Optional[MeasureCache] = None
    ) -> Any:
        """
        Evaluate a measure.

        Args:
            identifier: Measure identifier
            version: Version to evaluate; the latest version when None
            parameters: Supplied parameter values
            cache: Cache of the current unit of work; no memoization when None

        Returns:
            The measure's value

        Raises:
            NotFoundError: If the measure (or version) does not exist
            MissingParameterError: If a parameter has no value and no default
            MeasureEvaluationError: If the expression fails
        """
        return self.evaluate_measure(identifier, version, parameters, cache).result

    def evaluate_measure(
        self,
        identifier: str,
        version: Optional[int] = None,
        parameters: Optional[Dict[str, Any]] = None,
        cache: Optional[MeasureCache] = None
    ) -> MeasureResult:
        """Evaluate a measure and report which version produced the value."""
        measure = self._resolve_measure(identifier, version)
        resolved = self.resolve_parameters(measure, parameters)

        key = build_cache_key(measure.identifier, measure.version, resolved)
        if cache is not None:
            found, cached = cache.lookup(key)
            if found:
                logger.debug(f"Cache hit for measure: {identifier} version {measure.version}")
                return MeasureResult(identifier=measure.identifier, version=measure.version, result=cached)

        context: Dict[str, Any] = {}
        for name, value in resolved.items():
            context[name] = value
            context[f"${name}"] = value

        try:
            result = self.interpreter.evaluate(measure.expression, context)
        except (EvaluationError, InvalidExpressionError) as e:
            logger.error(f"Error evaluating measure: {identifier} version {measure.version}: {e.message}")
            raise MeasureEvaluationError(
                f"Measure evaluation failed: {e.message}",
                measure_identifier=measure.identifier,
                version=measure.version
            ) from e

        if cache is not None:
            cache.store(key, result)

        logger.debug(f"Evaluated measure: {identifier} version {measure.version} = {result!r}")
        return MeasureResult(identifier=measure.identifier, version=measure.version, result=result)

    def evaluate_many(self, requests: List[MeasureRequest], cache: Optional[MeasureCache] = None) -> List[MeasureResult]:
        """Evaluate several measures in order, sharing one cache.

        The first failure propagates; later requests are not evaluated.
        """
        if cache is not None:
            return [
                self.evaluate_measure(request.identifier, request.version, request.parameters, cache)
                for request in requests
            ]
        with measure_unit_of_work() as batch_cache:
            return self.evaluate_many(requests, batch_cache)

    @staticmethod
    def resolve_parameters(measure: Measure, supplied: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Resolve declared parameters: supplied value, then default, else MissingParameterError."""
        supplied = supplied or {}
        resolved: Dict[str, Any] = {}
        for parameter in measure.parameters:
            if parameter.name in supplied:
                resolved[parameter.name] = supplied[parameter.name]
            elif parameter.has_default:
                resolved[parameter.name] = parameter.default
            else:
                raise MissingParameterError(
                    f"Required parameter missing: {parameter.name}",
                    measure_identifier=measure.identifier,
                    version=measure.version,
                    parameter_name=parameter.name
                )
        return resolved

    def _resolve_measure(self, identifier: str, version: Optional[int]) -> Measure:
        if version is None:
            measure = self.metadata_store.get_latest_measure(identifier)
        else:
            measure = self.metadata_store.get_measure(identifier, version)

        if measure is None:
            suffix = f" version {version}" if version is not None else ""
            raise NotFoundError(
                f"Measure not found: {identifier}{suffix}",
                resource_type="measure",
                resource_id=identifier
            ).add_context(version=version)
        return measure
