import asyncio

import pytest

from api.rag.router import QueryContext, RouteConfig, RoutingDecision, SmartQueryRouter


def _config(name: str, timeout_ms: int = 50) -> RouteConfig:
    return RouteConfig(name=name, max_concurrency=2, timeout_ms=timeout_ms,
                       max_entries=5, max_embeddings=3, cache_strategy='test')


FAST_CONFIGURATIONS = {
    name: _config(name)
    for name in ('fast_track', 'standard', 'comprehensive', 'emotion_focused', 'temporal_optimized')
}


def _context(**kwargs) -> QueryContext:
    values = {'message': 'how was my week', 'user_id': 'user-1', 'entry_count': 5}
    values.update(kwargs)
    return QueryContext(**values)


def _decision(primary: str, fallback: str) -> RoutingDecision:
    return RoutingDecision(primary=primary, fallback=fallback, optimizations=[],
                           skip_operations=[], expected_ms=100)


def test_route_selection():
    router = SmartQueryRouter()
    assert router.route_query(_context(complexity='simple')).primary == 'fast_track'
    assert router.route_query(_context(complexity='complex')).primary == 'comprehensive'
    assert router.route_query(_context(complexity='moderate', entry_count=150)).primary == 'comprehensive'
    assert router.route_query(
        _context(complexity='moderate', expected_result_type='emotional')
    ).primary == 'emotion_focused'
    assert router.route_query(
        _context(complexity='moderate', has_time_context=True)
    ).primary == 'temporal_optimized'

    balanced = router.route_query(_context(complexity='moderate'))
    assert balanced.primary == 'balanced'
    assert balanced.fallback == 'fast_track'


def test_balanced_route_uses_standard_configuration():
    router = SmartQueryRouter()
    assert router.get_route_configuration('balanced').name == 'standard'


def test_slow_history_downgrades_comprehensive_route():
    router = SmartQueryRouter()
    context = _context(complexity='complex')
    router.record_performance(context.message, 'comprehensive', 5000, True)

    decision = router.route_query(context)
    assert decision.primary == 'standard'
    assert decision.fallback == 'fast_track'
    assert 'performance_boost' in decision.optimizations


def test_estimate_performance():
    router = SmartQueryRouter()
    context = _context(complexity='complex', entry_count=60)
    assert router.estimate_performance('fast_track', context) == 1560


def test_history_is_bounded():
    router = SmartQueryRouter()
    for i in range(105):
        router.record_performance(f"query {i}", 'standard', 100, True)
    assert len(router.history) == 100
    assert 'query 0' not in router.history


@pytest.mark.asyncio
async def test_primary_route_success():
    router = SmartQueryRouter(FAST_CONFIGURATIONS)

    async def search(config):
        return config.name

    routed = await router.execute_with_adaptive_routing(_context(), search, _decision('standard', 'fast_track'))
    assert routed.result == 'standard'
    assert routed.route_used == 'standard'
    assert routed.adaptations_applied == []
    assert router.adaptation_count == 0


@pytest.mark.asyncio
async def test_timeout_uses_fallback_route():
    router = SmartQueryRouter(FAST_CONFIGURATIONS)

    async def search(config):
        if config.name == 'comprehensive':
            await asyncio.sleep(1)
        return config.name

    routed = await router.execute_with_adaptive_routing(
        _context(), search, _decision('comprehensive', 'standard')
    )
    assert routed.result == 'standard'
    assert routed.route_used == 'standard'
    assert routed.adaptations_applied == ['fallback_route_used']
    assert router.adaptation_count == 1


@pytest.mark.asyncio
async def test_emergency_fallback_runs_without_budget():
    router = SmartQueryRouter(FAST_CONFIGURATIONS)
    calls = []

    async def search(config):
        calls.append(config.name)
        if len(calls) < 3:
            raise RuntimeError("search failed")
        await asyncio.sleep(0.1)  # longer than any route budget
        return 'recovered'

    routed = await router.execute_with_adaptive_routing(
        _context(), search, _decision('comprehensive', 'standard')
    )
    assert calls == ['comprehensive', 'standard', 'fast_track']
    assert routed.result == 'recovered'
    assert routed.route_used == 'emergency_fallback'
    assert routed.adaptations_applied == ['fallback_route_used', 'minimal_processing_fallback']


@pytest.mark.asyncio
async def test_all_routes_failing_raises():
    router = SmartQueryRouter(FAST_CONFIGURATIONS)

    async def search(config):
        raise RuntimeError("database down")

    with pytest.raises(RuntimeError):
        await router.execute_with_adaptive_routing(_context(), search, _decision('standard', 'fast_track'))

    analytics = router.routing_analytics()
    assert analytics['total_queries'] == 1
    assert analytics['success_rates'] == {'emergency_fallback': 0.0}


@pytest.mark.asyncio
async def test_routing_analytics():
    router = SmartQueryRouter(FAST_CONFIGURATIONS)

    async def search(config):
        return []

    await router.execute_with_adaptive_routing(_context(message='a'), search, _decision('standard', 'fast_track'))
    await router.execute_with_adaptive_routing(_context(message='b'), search, _decision('fast_track', 'standard'))

    analytics = router.routing_analytics()
    assert analytics['total_queries'] == 2
    assert analytics['route_distribution'] == {'standard': 1, 'fast_track': 1}
    assert analytics['success_rates'] == {'standard': 1.0, 'fast_track': 1.0}
    assert analytics['adaptation_frequency'] == 0.0
