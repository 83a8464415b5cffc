# tests/test_api.py
import pytest
from fastapi.testclient import TestClient
from insight_engine.api.main import app

class TestAnalysisAPI:

    @pytest.fixture
    def client(self):
        """Test client with startup events run"""
        with TestClient(app) as client:
            yield client

    @pytest.fixture
    def records(self):
        """Twelve rows of two related metrics and one spike"""
        rows = []
        for i in range(12):
            rows.append({
                'campaign': f'campaign_{i}',
                'spend': 100 + 10 * i,
                'revenue': 250 + 24 * i if i != 11 else 5000,
            })
        return rows

    def test_health(self, client):
        """Health check answers without touching the pipeline"""
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json()['status'] == 'healthy'

    def test_root(self, client):
        """Root lists the service entry points"""
        assert client.get('/').json()['health'] == '/health'

    def test_statistics_endpoint(self, client, records):
        """Statistics are returned per numeric field"""
        response = client.post('/analysis/statistics', json={'records': records})

        assert response.status_code == 200
        statistics = response.json()['statistics']
        assert set(statistics) == {'spend', 'revenue'}
        assert statistics['revenue']['outliers'] == [5000.0]

    def test_correlations_endpoint(self, client, records):
        """Correlations carry strength and p-values"""
        response = client.post('/analysis/correlations', json={'records': records[:11]})

        assert response.status_code == 200
        correlations = response.json()['correlations']
        assert len(correlations) == 1
        assert correlations[0]['strength'] == 'strong'
        assert 'pValue' in correlations[0]

    def test_patterns_endpoint(self, client, records):
        """Seeded pattern requests are reproducible"""
        first = client.post('/analysis/patterns', json={'records': records, 'seed': 3}).json()
        second = client.post('/analysis/patterns', json={'records': records, 'seed': 3}).json()

        types = [p['type'] for p in first['patterns']]
        assert 'outlier' in types
        assert 'anomaly' in types

        def parameters(body):
            return [p['metadata']['parameters'] for p in body['patterns']]

        assert parameters(first) == parameters(second)

    def test_patterns_match_full_run_for_same_seed(self, client, records):
        """The pattern endpoint and a full run cluster identically for one seed"""
        def clusters(patterns):
            return [p['metadata']['parameters'] for p in patterns if p['type'] == 'cluster']

        direct = client.post('/analysis/patterns', json={'records': records, 'seed': 21}).json()
        run = client.post('/analysis/run', json={
            'records': records, 'project_name': 'seed_check', 'seed': 21
        }).json()

        assert clusters(direct['patterns'])
        assert clusters(direct['patterns']) == clusters(run['patterns'])

    def test_invalid_records_rejected(self, client):
        """Structurally invalid uploads get a 400 with the problems"""
        response = client.post('/analysis/statistics', json={'records': []})
        assert response.status_code == 400
        assert response.json()['detail'] == ['Data array is empty']

        response = client.post('/analysis/statistics', json={'records': [{'a': 1, 'b': 2}, {'a': 1}]})
        assert response.status_code == 400

    def test_run_and_status(self, client, records):
        """A full run is reported and can be looked up afterwards"""
        response = client.post('/analysis/run', json={
            'records': records,
            'project_name': 'api_run',
            'seed': 9,
            'report_query': 'Is revenue keeping up with spend?'
        })

        assert response.status_code == 200
        body = response.json()
        assert body['status'] == 'completed'
        assert body['project_name'] == 'api_run'
        assert 'Is revenue keeping up with spend?' in body['report_prompt']
        assert len(body['column_profiles']) == 3

        status = client.get('/analysis/status/api_run')
        assert status.status_code == 200
        assert status.json()['status'] == 'completed'
        assert 'api_run' in client.get('/analysis/projects').json()['projects']

    def test_unknown_project(self, client):
        """Unknown runs are a 404"""
        assert client.get('/analysis/status/does_not_exist').status_code == 404
