"""
Testes para o cálculo de datas PM (F1-F3)
"""
from datetime import date, datetime, timezone

import pytest

from cmms.maintenance.exceptions import InvalidFrequency
from cmms.maintenance.frequency import next_due_date
from cmms.maintenance.models import PMFrequency


class TestF1_Steps:
    """F1: Passos por frequência."""

    @pytest.mark.parametrize("frequency,expected", [
        ("daily", date(2024, 3, 11)),
        ("weekly", date(2024, 3, 17)),
        ("monthly", date(2024, 4, 10)),
        ("quarterly", date(2024, 6, 10)),
        ("annually", date(2025, 3, 10)),
    ])
    def test_step_per_frequency(self, frequency, expected):
        """F1.1: Cada unidade soma o passo de calendário correto."""
        assert next_due_date(date(2024, 3, 10), frequency) == expected

    def test_result_is_after_input(self):
        """F1.2: A próxima data é sempre posterior à última."""
        last = date(2024, 1, 31)
        for frequency in PMFrequency:
            assert next_due_date(last, frequency) > last

    def test_datetime_reduced_to_date(self):
        """F1.3: Datetimes são tratados como datas de calendário."""
        stamp = datetime(2024, 3, 10, 23, 59, tzinfo=timezone.utc)
        assert next_due_date(stamp, "daily") == date(2024, 3, 11)

    def test_enum_and_case_insensitive(self):
        """F1.4: Aceita o enum e texto com espaços/maiúsculas."""
        assert next_due_date(date(2024, 3, 10), PMFrequency.WEEKLY) == date(2024, 3, 17)
        assert next_due_date(date(2024, 3, 10), " Monthly ") == date(2024, 4, 10)


class TestF2_MonthEndClamping:
    """F2: Fim de mês."""

    def test_jan_31_monthly_leap_year(self):
        """F2.1: 31 Jan + mensal = 29 Fev em ano bissexto."""
        assert next_due_date(date(2024, 1, 31), "monthly") == date(2024, 2, 29)

    def test_jan_31_monthly_common_year(self):
        """F2.2: 31 Jan + mensal = 28 Fev em ano comum."""
        assert next_due_date(date(2023, 1, 31), "monthly") == date(2023, 2, 28)

    def test_quarterly_clamps(self):
        """F2.3: 30 Nov + trimestral = 29 Fev (2024)."""
        assert next_due_date(date(2023, 11, 30), "quarterly") == date(2024, 2, 29)

    def test_feb_29_annually(self):
        """F2.4: 29 Fev + anual = 28 Fev."""
        assert next_due_date(date(2024, 2, 29), "annually") == date(2025, 2, 28)


class TestF3_InvalidFrequency:
    """F3: Frequências inválidas."""

    @pytest.mark.parametrize("value", ["fortnightly", "", None, 30])
    def test_rejects_unknown_unit(self, value):
        """F3.1: Unidade desconhecida → InvalidFrequency."""
        with pytest.raises(InvalidFrequency):
            next_due_date(date(2024, 1, 1), value)

    def test_invalid_frequency_is_value_error(self):
        """F3.2: InvalidFrequency também é ValueError."""
        with pytest.raises(ValueError):
            next_due_date(date(2024, 1, 1), "hourly")
