# tests/test_field_agent.py
import math
import pytest
from insight_engine.agents.field_agent import (
    FieldTypingAgent, ensure_dataset, is_missing, to_number, dataset_fields,
    numeric_fields, numeric_values, missing_count, aligned_pairs, profile_columns
)

class TestFieldTyping:

    @pytest.fixture
    def campaign_rows(self):
        """Small campaign export with mixed column types"""
        return [
            {'campaign': 'Winter Sale', 'spend': 120.5, 'clicks': '340', 'active': True, 'launched': '2024-01-01', 'notes': ''},
            {'campaign': 'Spring Promo', 'spend': None, 'clicks': '410', 'active': False, 'launched': '2024-02-01', 'notes': None},
            {'campaign': 'Summer Push', 'spend': 98, 'clicks': ' 275 ', 'active': True, 'launched': '2024-03-01', 'notes': ''},
            {'campaign': 'Autumn Deals', 'spend': '', 'clicks': '500', 'active': True, 'launched': '2024-04-01', 'notes': ''},
        ]

    def test_missing_markers(self):
        """None, empty or blank strings and NaN are missing; zero and False are not"""
        assert is_missing(None)
        assert is_missing('')
        assert is_missing('   ')
        assert is_missing(float('nan'))
        assert not is_missing(0)
        assert not is_missing(False)
        assert not is_missing('0')

    def test_numeric_conversion(self):
        """Numeric parsing accepts numbers, numeric text and booleans only"""
        assert to_number('12.5') == 12.5
        assert to_number(' 7 ') == 7.0
        assert to_number(3) == 3.0
        assert to_number(True) == 1.0
        assert to_number('abc') is None
        assert to_number('inf') is None
        assert to_number({'nested': 1}) is None

    def test_numeric_fields_classification(self, campaign_rows):
        """Only columns whose present values all parse are numeric"""
        fields = numeric_fields(campaign_rows)

        assert 'spend' in fields
        assert 'clicks' in fields
        assert 'active' in fields
        assert 'campaign' not in fields
        assert 'launched' not in fields
        # Order follows the first row's keys
        assert fields.index('spend') < fields.index('clicks')

    def test_all_missing_field_yields_no_values(self, campaign_rows):
        """A column with nothing in it is numeric by vacuity but has no data"""
        assert 'notes' in numeric_fields(campaign_rows)
        assert numeric_values(campaign_rows, 'notes') == []

    def test_numeric_values_in_row_order(self, campaign_rows):
        """Missing values are dropped and the rest converted in row order"""
        assert numeric_values(campaign_rows, 'spend') == [120.5, 98.0]
        assert numeric_values(campaign_rows, 'clicks') == [340.0, 410.0, 275.0, 500.0]
        assert missing_count(campaign_rows, 'spend') == 2

    def test_single_bad_value_excludes_field(self):
        """One unparseable value removes the field from numeric analysis"""
        rows = [{'revenue': 10}, {'revenue': 12}, {'revenue': 'n/a'}]
        assert numeric_fields(rows) == []

    def test_integers_beyond_float_range(self):
        """Huge integers do not parse, so their field is not numeric"""
        rows = [{'reach': 1, 'spend': 2}, {'reach': 10 ** 400, 'spend': 3}]

        assert to_number(10 ** 400) is None
        assert to_number('1' + '0' * 400) is None
        assert numeric_fields(rows) == ['spend']

    def test_fields_come_from_first_row(self):
        """Keys appearing only in later rows are ignored"""
        rows = [{'a': 1}, {'a': 2, 'b': 3}]
        assert dataset_fields(rows) == ['a']
        assert numeric_fields(rows) == ['a']

    def test_aligned_pairs_skip_partial_rows(self, campaign_rows):
        """Pairs only come from rows where both fields are present"""
        xs, ys = aligned_pairs(campaign_rows, 'spend', 'clicks')
        assert xs == [120.5, 98.0]
        assert ys == [340.0, 275.0]

    def test_empty_dataset(self):
        """An empty dataset has no fields"""
        assert numeric_fields([]) == []
        assert profile_columns([]) == []

    def test_non_list_input_raises(self):
        """Only a non-list argument is an error"""
        with pytest.raises(TypeError):
            ensure_dataset({'spend': 1})
        with pytest.raises(TypeError):
            numeric_fields('spend,clicks')

    def test_profile_columns(self, campaign_rows):
        """Column profiles infer display types and count nulls"""
        profiles = {profile.name: profile for profile in profile_columns(campaign_rows)}

        assert profiles['campaign'].type == 'string'
        assert profiles['clicks'].type == 'number'
        assert profiles['active'].type == 'boolean'
        assert profiles['launched'].type == 'date'
        assert profiles['spend'].null_count == 2
        assert profiles['campaign'].unique_values == 4
        assert math.isclose(profiles['clicks'].statistics['mean'], 381.25)
        assert profiles['campaign'].statistics == {}

    @pytest.mark.asyncio
    async def test_field_typing_agent(self, campaign_rows):
        """The pipeline node stores numeric fields and profiles"""
        agent = FieldTypingAgent()
        state = {
            'cleaned_data': campaign_rows,
            'execution_log': [],
            'errors': []
        }

        result = await agent.process(state)

        assert result['current_step'] == 'field_typing'
        assert result['next_action'] == 'statistics'
        assert 'spend' in result['numeric_fields']
        assert len(result['column_profiles']) == 6
        assert result['errors'] == []

    @pytest.mark.asyncio
    async def test_field_typing_agent_records_errors(self):
        """A malformed state is reported, not raised"""
        agent = FieldTypingAgent()
        state = {'records': 'not a list', 'execution_log': [], 'errors': []}

        result = await agent.process(state)

        assert result['next_action'] == 'error'
        assert len(result['errors']) == 1
