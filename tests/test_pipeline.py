# tests/test_pipeline.py
import pytest
import numpy as np
from insight_engine.config import Config
from insight_engine.pipeline import AnalysisPipeline

class TestAnalysisPipeline:

    @pytest.fixture
    def pipeline(self):
        """Fresh pipeline with default configuration"""
        return AnalysisPipeline(Config())

    @pytest.fixture
    def marketing_records(self):
        """Daily campaign metrics with a growing budget"""
        np.random.seed(0)
        records = []
        for day in range(30):
            spend = 200 + 15 * day + float(np.random.normal(0, 10))
            records.append({
                'date': f'2024-03-{day + 1:02d}',
                'channel': ['search', 'social', 'email'][day % 3],
                'spend': round(spend, 2),
                'clicks': int(spend * 3 + np.random.normal(0, 40)),
                'conversions': str(int(spend * 0.1 + np.random.normal(0, 5))),
            })
        return records

    @pytest.mark.asyncio
    async def test_full_run(self, pipeline, marketing_records):
        """A valid dataset flows through every node"""
        result = await pipeline.run_analysis(
            records=marketing_records,
            project_name='march_campaigns',
            random_state=42,
            report_query='Which channel should get more budget?'
        )

        assert result['status'] == 'completed'
        assert result['errors'] == []
        assert result['current_step'] == 'report'
        assert set(result['numeric_fields']) == {'spend', 'clicks', 'conversions'}
        assert set(result['statistics']) == {'spend', 'clicks', 'conversions'}
        assert result['statistics']['spend']['count'] == 30

        pairs = [{c['field1'], c['field2']} for c in result['correlations']]
        assert {'spend', 'clicks'} in pairs

        assert any(p['type'] == 'trend' and p['field'] == 'spend' for p in result['patterns'])
        assert 'Which channel should get more budget?' in result['report_prompt']
        assert result['cleaning_report']['rows_removed'] == 0

    @pytest.mark.asyncio
    async def test_seeded_runs_match(self, pipeline, marketing_records):
        """The same seed reproduces the same clustering"""
        def clusters(result):
            return [p['metadata']['parameters'] for p in result['patterns'] if p['type'] == 'cluster']

        first = await pipeline.run_analysis(marketing_records, project_name='run_a', random_state=7)
        second = await pipeline.run_analysis(marketing_records, project_name='run_b', random_state=7)

        assert clusters(first) == clusters(second)

    @pytest.mark.asyncio
    async def test_invalid_records_stop_early(self, pipeline):
        """Validation failures end the run before any analysis"""
        result = await pipeline.run_analysis(records=[], project_name='empty_upload')

        assert result['status'] == 'failed'
        assert result['validation_report']['errors'] == ['Data array is empty']
        assert 'statistics' not in result or result['statistics'] is None

    @pytest.mark.asyncio
    async def test_cleaning_options(self, pipeline, marketing_records):
        """Per-run cleaning options override the configured ones"""
        records = marketing_records + [dict(marketing_records[0])]

        result = await pipeline.run_analysis(
            records=records,
            project_name='with_duplicate',
            cleaning_options={'remove_duplicates': False},
            random_state=1
        )

        assert result['cleaning_report']['rows_removed'] == 0
        assert result['statistics']['spend']['count'] == 31

    @pytest.mark.asyncio
    async def test_repeating_series_keeps_its_rows(self, pipeline):
        """Identical rows are time steps, so a repeating cycle is analysed as uploaded"""
        records = [{'sessions': [10, 20, 30, 40][i % 4]} for i in range(24)]

        result = await pipeline.run_analysis(records, project_name='weekly_cycle', random_state=0)

        assert result['status'] == 'completed'
        assert len(result['cleaned_data']) == 24
        assert result['statistics']['sessions']['count'] == 24
        seasonal = [p for p in result['patterns'] if p['type'] == 'seasonality']
        assert len(seasonal) == 1
        assert seasonal[0]['period'] == 4

    @pytest.mark.asyncio
    async def test_deduplication_is_opt_in(self, pipeline, marketing_records):
        """Duplicates are only dropped when a run asks for it"""
        records = marketing_records + [dict(marketing_records[0])]

        result = await pipeline.run_analysis(
            records=records,
            project_name='dedup_requested',
            cleaning_options={'remove_duplicates': True},
            random_state=1
        )

        assert result['cleaning_report']['rows_removed'] == 1
        assert result['statistics']['spend']['count'] == 30

    @pytest.mark.asyncio
    async def test_node_failure_marks_run_failed(self, pipeline, marketing_records, monkeypatch):
        """A failing analysis node fails the run even though later nodes still run"""
        from insight_engine.agents import correlation_agent

        def broken(*args, **kwargs):
            raise RuntimeError('correlation backend unavailable')

        monkeypatch.setattr(correlation_agent, 'find_correlations', broken)

        result = await pipeline.run_analysis(marketing_records, project_name='broken_step', random_state=2)

        assert result['status'] == 'failed'
        assert any('correlation backend unavailable' in e for e in result['errors'])
        assert result['report_prompt']
        assert pipeline.get_analysis_status('broken_step')['status'] == 'failed'

    @pytest.mark.asyncio
    async def test_status_tracking(self, pipeline, marketing_records):
        """Finished runs are listed and their status can be queried"""
        await pipeline.run_analysis(marketing_records, project_name='tracked', random_state=3)

        status = pipeline.get_analysis_status('tracked')
        assert status['status'] == 'completed'
        assert status['current_step'] == 'report'
        assert 'tracked' in pipeline.list_projects()

        assert pipeline.get_analysis_status('never_ran')['status'] == 'not_found'

    @pytest.mark.asyncio
    async def test_generated_project_name(self, pipeline, marketing_records):
        """Runs without a name get a timestamped one"""
        result = await pipeline.run_analysis(marketing_records, random_state=5)

        assert result['project_name'].startswith('analysis_')
