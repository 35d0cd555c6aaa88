import pandas as pd
import pytest

from ch_analytics.analysis import (
    FunnelResult,
    analyze_dropoffs,
    calculate_conversion_rates,
    n_day_retention_rates,
    retention_matrix
)
from ch_analytics.client import ClickHouseResult


STEPS = ['app_opened', 'add_to_cart', 'purchase']


@pytest.fixture
def funnel():
    return FunnelResult.from_level_counts(STEPS, {1: 30, 2: 15, 3: 5})


@pytest.fixture
def grouped():
    return {
        'ios': FunnelResult.from_level_counts(STEPS, {1: 10, 3: 10}, group='ios'),
        'android': FunnelResult.from_level_counts(STEPS, {1: 50, 2: 40, 3: 10}, group='android'),
    }


class TestConversion:
    def test_single_funnel(self, funnel):
        df = calculate_conversion_rates(funnel)

        assert len(df) == 1
        row = df.iloc[0]
        assert row['step1_users'] == 50
        assert row['step2_name'] == 'add_to_cart'
        assert row['conversion_1_to_2'] == 40.0
        assert row['conversion_2_to_3'] == 25.0
        assert row['total_conversion'] == 10.0
        assert 'group_value' not in df.columns

    def test_grouped(self, grouped):
        df = calculate_conversion_rates(grouped)

        assert df['group_value'].tolist() == ['android', 'ios']
        assert df.columns[0] == 'group_value'
        ios = df[df['group_value'] == 'ios'].iloc[0]
        assert ios['total_conversion'] == 50.0
        assert ios['conversion_2_to_3'] == 100.0

    def test_zero_users(self):
        df = calculate_conversion_rates(FunnelResult.from_level_counts(STEPS, {}))
        assert df.iloc[0]['conversion_1_to_2'] == 0
        assert df.iloc[0]['total_conversion'] == 0

    def test_empty_mapping(self):
        assert calculate_conversion_rates({}).empty


class TestDropoffs:
    def test_single_funnel(self, funnel):
        df = analyze_dropoffs(funnel)

        assert df['step_from'].tolist() == ['app_opened', 'add_to_cart']
        assert df['dropoff_count'].tolist() == [30, 15]
        assert df['dropoff_percent'].tolist() == [60.0, 75.0]
        assert df['dropoff_percent_total'].tolist() == [60.0, 30.0]
        assert df['retention_percent'].tolist() == [40.0, 25.0]
        assert df['is_critical'].tolist() == [False, True]

    def test_critical_step_per_group(self, grouped):
        df = analyze_dropoffs(grouped)

        critical = df[df['is_critical']]
        assert sorted(critical['group_value'].tolist()) == ['android', 'ios']
        android = critical[critical['group_value'] == 'android'].iloc[0]
        assert android['step_from'] == 'add_to_cart'

    def test_single_step_funnel(self):
        assert analyze_dropoffs(FunnelResult.from_level_counts(['a'], {1: 5})).empty


class TestRetention:
    def test_retention_matrix(self):
        result = ClickHouseResult(rows=[
            {'cohort_week': '2025-01-05', 'week_number': '0', 'users': '100'},
            {'cohort_week': '2025-01-05', 'week_number': '1', 'users': '40'},
            {'cohort_week': '2025-01-12', 'week_number': '0', 'users': '50'},
        ])

        users, rates = retention_matrix(result)

        assert users.loc['2025-01-05', 1] == 40
        assert users.loc['2025-01-12', 1] == 0
        assert rates.loc['2025-01-05', 0] == 1.0
        assert rates.loc['2025-01-05', 1] == 0.4

    def test_retention_matrix_empty(self):
        users, rates = retention_matrix(ClickHouseResult())
        assert users.empty and rates.empty

    def test_n_day_rates(self):
        df = pd.DataFrame([
            {'cohort_date': '2025-01-02', 'cohort_size': '200', 'day_1_retained': '50', 'day_7_retained': '20'},
            {'cohort_date': '2025-01-01', 'cohort_size': '0', 'day_1_retained': '0', 'day_7_retained': '0'},
        ])

        rates = n_day_retention_rates(df, days=(1, 7))

        assert rates['day_1_rate'].tolist() == [0.25, 0.0]
        assert rates['day_7_rate'].tolist() == [0.1, 0.0]

    def test_n_day_missing_column(self):
        df = pd.DataFrame([{'cohort_date': '2025-01-01', 'cohort_size': 1}])
        with pytest.raises(ValueError):
            n_day_retention_rates(df, days=(30,))
