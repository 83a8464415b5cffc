# tests/test_correlation_agent.py
import pytest
import numpy as np
from insight_engine.agents.correlation_agent import (
    CorrelationAgent, pearson_correlation, correlation_p_value, classify_strength,
    classify_direction, interpret_correlation, find_correlations, correlation_matrix
)

class TestCorrelationEngine:

    @pytest.fixture
    def funnel_rows(self):
        """Spend drives clicks, clicks drive conversions, bounce moves the other way"""
        np.random.seed(7)
        rows = []
        for i in range(40):
            spend = float(100 + 10 * i)
            clicks = spend * 2 + float(np.random.normal(0, 20))
            rows.append({
                'campaign': f'campaign_{i}',
                'spend': spend,
                'clicks': clicks,
                'conversions': clicks * 0.05 + float(np.random.normal(0, 8)),
                'bounce_rate': 90 - 0.1 * i + float(np.random.normal(0, 0.5)),
                'noise': float(np.random.uniform(0, 1))
            })
        return rows

    def test_perfect_linear_relation(self):
        """y = 2x correlates perfectly"""
        x = [1, 2, 3, 4, 5]
        y = [2, 4, 6, 8, 10]

        assert pearson_correlation(x, y) == pytest.approx(1.0)
        assert pearson_correlation(x, [-v for v in y]) == pytest.approx(-1.0)

    def test_symmetry_and_bounds(self, funnel_rows):
        """Swapping the series changes nothing and r stays within [-1, 1]"""
        spend = [row['spend'] for row in funnel_rows]
        noise = [row['noise'] for row in funnel_rows]

        assert pearson_correlation(spend, noise) == pearson_correlation(noise, spend)
        assert -1.0 <= pearson_correlation(spend, noise) <= 1.0

    def test_degenerate_input(self):
        """Constant, empty and mismatched series give 0"""
        assert pearson_correlation([3, 3, 3], [1, 2, 3]) == 0
        assert pearson_correlation([], []) == 0
        assert pearson_correlation([1, 2, 3], [1, 2]) == 0

    def test_classification(self):
        """Strength bands use |r| and inclusive lower bounds"""
        assert classify_strength(0.7) == 'strong'
        assert classify_strength(-0.85) == 'strong'
        assert classify_strength(0.5) == 'moderate'
        assert classify_strength(0.49) == 'weak'
        assert classify_direction(0.4) == 'positive'
        assert classify_direction(-0.4) == 'negative'
        assert interpret_correlation(0.95) == 'very strong'
        assert interpret_correlation(-0.31) == 'weak'
        assert interpret_correlation(0.1) == 'very weak'

    def test_p_values(self):
        """p-values need more than two points and vanish at |r| = 1"""
        assert correlation_p_value(0.9, 2) is None
        assert correlation_p_value(1.0, 10) == 0.0
        assert correlation_p_value(0.9, 30) < 0.01
        assert correlation_p_value(0.1, 10) > 0.05

    def test_find_correlations(self, funnel_rows):
        """Surfaced pairs are distinct, above threshold and strongest first"""
        results = find_correlations(funnel_rows)
        magnitudes = [abs(result.correlation) for result in results]

        assert magnitudes == sorted(magnitudes, reverse=True)
        assert all(magnitude > 0.3 for magnitude in magnitudes)
        assert all(result.field1 != result.field2 for result in results)

        pairs = [frozenset((result.field1, result.field2)) for result in results]
        assert len(pairs) == len(set(pairs))
        assert frozenset(('spend', 'clicks')) in pairs

        top = results[0]
        assert top.strength == 'strong'
        assert top.sample_size == 40

    def test_negative_relation(self, funnel_rows):
        """Inverse relations are reported with a negative direction"""
        results = find_correlations(funnel_rows)
        bounce = [r for r in results if {r.field1, r.field2} == {'spend', 'bounce_rate'}]

        assert len(bounce) == 1
        assert bounce[0].direction == 'negative'
        assert bounce[0].correlation < 0

    def test_weak_pairs_are_dropped(self):
        """A pair with |r| just under the threshold is not surfaced"""
        rows = [{'x': x, 'y': y} for x, y in zip([1, 2, 3, 4, 5, 6], [1, -1, 1, -1, 1, -1])]

        assert abs(pearson_correlation([1, 2, 3, 4, 5, 6], [1, -1, 1, -1, 1, -1])) < 0.3
        assert find_correlations(rows) == []

    def test_rows_are_aligned(self):
        """Rows missing either field do not shift the pairing"""
        rows = [
            {'spend': 1, 'revenue': 2},
            {'spend': None, 'revenue': 100},
            {'spend': 2, 'revenue': 4},
            {'spend': 3, 'revenue': ''},
            {'spend': 3, 'revenue': 6},
            {'spend': 4, 'revenue': 8},
        ]
        results = find_correlations(rows)

        assert len(results) == 1
        assert results[0].correlation == pytest.approx(1.0)
        assert results[0].sample_size == 4

    def test_p_values_can_be_disabled(self, funnel_rows):
        """Without p-values the serialised result has no significance keys"""
        results = find_correlations(funnel_rows, include_p_values=False)
        data = results[0].to_dict()

        assert 'pValue' not in data
        assert data['coefficient'] == data['correlation']

    def test_edge_datasets(self):
        """Empty or single-field datasets yield nothing; non-lists raise"""
        assert find_correlations([]) == []
        assert find_correlations([{'a': 1, 'b': 2}, {'a': 10 ** 400, 'b': 3}]) == []
        assert find_correlations([{'spend': 1}, {'spend': 2}]) == []
        with pytest.raises(TypeError):
            find_correlations({'spend': [1, 2]})

    def test_correlation_matrix(self, funnel_rows):
        """The full matrix is symmetric with a unit diagonal"""
        matrix = correlation_matrix(funnel_rows)

        assert matrix['spend']['spend'] == 1.0
        assert matrix['spend']['clicks'] == matrix['clicks']['spend']
        assert 'campaign' not in matrix

    @pytest.mark.asyncio
    async def test_correlation_agent(self, funnel_rows):
        """The pipeline node stores serialised correlations"""
        agent = CorrelationAgent(threshold=0.3)
        state = {
            'cleaned_data': funnel_rows,
            'execution_log': [],
            'errors': []
        }

        result = await agent.process(state)

        assert result['current_step'] == 'correlations'
        assert result['next_action'] == 'patterns'
        assert len(result['correlations']) > 0
        assert 'pValue' in result['correlations'][0]
