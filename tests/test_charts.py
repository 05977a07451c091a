"""
Unit tests for chart helpers
"""
import pytest
from datetime import datetime
from app.utils.charts import percentage, period_key, rates, rating_summary


@pytest.mark.unit
class TestPeriodKey:

    def test_day(self):
        assert period_key(datetime(2030, 3, 14, 15, 0), "day") == "2030-03-14"

    def test_week_starts_on_sunday(self):
        # 2030-03-14 is a Thursday, 2030-03-10 the Sunday before
        assert period_key(datetime(2030, 3, 14), "week") == "2030-03-10"
        assert period_key(datetime(2030, 3, 10), "week") == "2030-03-10"
        assert period_key(datetime(2030, 3, 16), "week") == "2030-03-10"

    def test_month_and_year(self):
        assert period_key(datetime(2030, 3, 14), "month") == "2030-03"
        assert period_key(datetime(2030, 3, 14), "year") == "2030"

    def test_invalid_group(self):
        with pytest.raises(ValueError):
            period_key(datetime(2030, 3, 14), "hour")


@pytest.mark.unit
class TestRates:

    def test_percentage(self):
        assert percentage(1, 3) == 33.33
        assert percentage(5, 0) == 0.0

    def test_rates(self):
        assert rates(4, 3, 1) == {"completion_rate": 75.0, "cancellation_rate": 25.0}

    def test_rating_summary(self):
        summary = rating_summary([5, 4, 5, 1])
        assert summary["average_rating"] == 3.75
        assert summary["total"] == 4
        assert summary["distribution"] == {"1": 1, "2": 0, "3": 0, "4": 1, "5": 2}

    def test_rating_summary_empty(self):
        summary = rating_summary([])
        assert summary["average_rating"] == 0.0
        assert summary["distribution"]["5"] == 0
