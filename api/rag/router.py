import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

PERFORMANCE_THRESHOLD_MS = 2000
HISTORY_LIMIT = 100
DEFAULT_PERFORMANCE_MS = 1500


class RouteConfig(BaseModel):
    name: str
    max_concurrency: int
    timeout_ms: Optional[int]
    max_entries: int
    max_embeddings: int
    cache_strategy: str


ROUTE_CONFIGURATIONS: Dict[str, RouteConfig] = {
    'fast_track': RouteConfig(name='fast_track', max_concurrency=2, timeout_ms=3000,
                              max_entries=5, max_embeddings=3, cache_strategy='aggressive'),
    'standard': RouteConfig(name='standard', max_concurrency=3, timeout_ms=5000,
                            max_entries=10, max_embeddings=8, cache_strategy='balanced'),
    'comprehensive': RouteConfig(name='comprehensive', max_concurrency=5, timeout_ms=10000,
                                 max_entries=20, max_embeddings=15, cache_strategy='performance'),
    'emotion_focused': RouteConfig(name='emotion_focused', max_concurrency=3, timeout_ms=6000,
                                   max_entries=12, max_embeddings=10, cache_strategy='emotion_optimized'),
    'temporal_optimized': RouteConfig(name='temporal_optimized', max_concurrency=4, timeout_ms=7000,
                                      max_entries=15, max_embeddings=12, cache_strategy='temporal_aware'),
}

BASE_ESTIMATES_MS = {
    'fast_track': 800,
    'standard': 1500,
    'comprehensive': 3000,
    'emotion_focused': 2000,
    'temporal_optimized': 2200,
}


class QueryContext(BaseModel):
    message: str
    user_id: str
    complexity: str = 'simple'
    has_time_context: bool = False
    has_personal_pronouns: bool = False
    entry_count: int = 0
    expected_result_type: str = 'factual'


class RoutingDecision(BaseModel):
    primary: str
    fallback: str
    optimizations: List[str]
    skip_operations: List[str]
    expected_ms: int


class RoutedResult(BaseModel):
    result: Any = None
    route_used: str
    performance_ms: int
    adaptations_applied: List[str] = []


class SmartQueryRouter:
    """
    Picks a processing route for a query and runs the search under that
    route's time budget, falling back to cheaper routes on failure.
    """

    def __init__(self, configurations: Optional[Dict[str, RouteConfig]] = None):
        self.configurations = configurations or ROUTE_CONFIGURATIONS
        self.history: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.adaptation_count = 0

    def get_route_configuration(self, route: str) -> RouteConfig:
        return self.configurations.get(route) or self.configurations['standard']

    def route_query(self, context: QueryContext) -> RoutingDecision:
        optimizations = ['smart_routing']
        skip_operations: List[str] = []

        if context.complexity == 'simple' and context.entry_count < 20:
            primary, fallback = 'fast_track', 'standard'
            optimizations += ['aggressive_caching', 'minimal_processing']
            skip_operations += ['detailed_analysis', 'entity_extraction']
        elif context.complexity == 'complex' or context.entry_count > 100:
            primary, fallback = 'comprehensive', 'standard'
            optimizations += ['parallel_processing', 'chunked_analysis']
        elif context.expected_result_type == 'emotional':
            primary, fallback = 'emotion_focused', 'standard'
            optimizations += ['emotion_optimization', 'sentiment_prioritization']
        elif context.has_time_context:
            primary, fallback = 'temporal_optimized', 'standard'
            optimizations += ['temporal_indexing', 'date_range_optimization']
        else:
            primary, fallback = 'balanced', 'fast_track'
            optimizations.append('adaptive_processing')

        if self.average_performance(context.message) > PERFORMANCE_THRESHOLD_MS:
            optimizations.append('performance_boost')
            skip_operations.append('non_essential_operations')
            if primary == 'comprehensive':
                primary, fallback = 'standard', 'fast_track'

        expected_ms = self.estimate_performance(primary, context)
        logger.info(f"Selected route {primary} (fallback {fallback}), expected {expected_ms}ms")

        return RoutingDecision(
            primary=primary,
            fallback=fallback,
            optimizations=optimizations,
            skip_operations=skip_operations,
            expected_ms=expected_ms
        )

    async def _run_route(self, route: str, fn: Callable[[RouteConfig], Awaitable[Any]],
                         with_budget: bool = True) -> Any:
        config = self.get_route_configuration(route)
        if with_budget and config.timeout_ms:
            return await asyncio.wait_for(fn(config), timeout=config.timeout_ms / 1000)
        return await fn(config)

    async def execute_with_adaptive_routing(
        self,
        context: QueryContext,
        fn: Callable[[RouteConfig], Awaitable[Any]],
        decision: Optional[RoutingDecision] = None
    ) -> RoutedResult:
        """
        Run fn under the primary route, then the fallback route, then the
        minimal route with no time budget. Errors from the last attempt
        propagate.
        """
        decision = decision or self.route_query(context)
        adaptations: List[str] = []
        start = time.monotonic()
        route_used = decision.primary

        try:
            result = await self._run_route(decision.primary, fn)
        except Exception as e:
            logger.warning(f"Primary route {decision.primary} failed ({type(e).__name__}: {e}), trying fallback")
            adaptations.append('fallback_route_used')
            route_used = decision.fallback
            try:
                result = await self._run_route(decision.fallback, fn)
            except Exception as fallback_error:
                logger.warning(
                    f"Fallback route {decision.fallback} failed ({type(fallback_error).__name__}), "
                    f"using minimal processing"
                )
                adaptations.append('minimal_processing_fallback')
                route_used = 'emergency_fallback'
                try:
                    result = await self._run_route('fast_track', fn, with_budget=False)
                except Exception:
                    self.record_performance(context.message, route_used, self._elapsed_ms(start), False)
                    raise

        elapsed = self._elapsed_ms(start)
        if adaptations:
            self.adaptation_count += 1
        self.record_performance(context.message, route_used, elapsed, True)
        logger.info(f"Completed with route {route_used} ({elapsed}ms)")

        return RoutedResult(
            result=result,
            route_used=route_used,
            performance_ms=elapsed,
            adaptations_applied=adaptations
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    @staticmethod
    def _query_key(query: str) -> str:
        return query.strip().lower()

    def record_performance(self, query: str, route: str, performance_ms: int, success: bool) -> None:
        key = self._query_key(query)
        self.history.pop(key, None)
        self.history[key] = {
            'route': route,
            'performance': performance_ms,
            'timestamp': time.time(),
            'success': success,
        }
        while len(self.history) > HISTORY_LIMIT:
            self.history.popitem(last=False)

    def average_performance(self, query: str) -> float:
        entry = self.history.get(self._query_key(query))
        if entry:
            return entry['performance']

        successful = [h['performance'] for h in self.history.values() if h['success']]
        if not successful:
            return DEFAULT_PERFORMANCE_MS
        return sum(successful) / len(successful)

    def estimate_performance(self, route: str, context: QueryContext) -> int:
        estimate = float(BASE_ESTIMATES_MS.get(route, DEFAULT_PERFORMANCE_MS))
        if context.entry_count > 50:
            estimate *= 1.5
        if context.complexity == 'complex':
            estimate *= 1.3
        if context.has_time_context:
            estimate *= 1.1
        return round(estimate)

    def routing_analytics(self) -> Dict[str, Any]:
        distribution: Dict[str, int] = {}
        performance: Dict[str, List[int]] = {}
        successes: Dict[str, List[bool]] = {}

        for entry in self.history.values():
            route = entry['route']
            distribution[route] = distribution.get(route, 0) + 1
            performance.setdefault(route, []).append(entry['performance'])
            successes.setdefault(route, []).append(entry['success'])

        total = len(self.history)
        return {
            'total_queries': total,
            'route_distribution': distribution,
            'average_performance': {r: sum(p) / len(p) for r, p in performance.items()},
            'success_rates': {r: sum(s) / len(s) for r, s in successes.items()},
            'adaptation_frequency': self.adaptation_count / total if total else 0.0,
        }
