import unittest
from decimal import Decimal

from spendwise.income_normalization import (
    IncomeFrequency,
    IncomeStream,
    annual_equivalent,
    monthly_equivalent,
    normalize_income,
)


class IncomeNormalizationTests(unittest.TestCase):
    def test_weekly_and_monthly_streams(self) -> None:
        streams = [
            IncomeStream(id="1", source="Side gig", amount=Decimal("200"), frequency="weekly"),
            IncomeStream(id="2", source="Salary", amount=Decimal("1000"), frequency="monthly"),
        ]

        summary = normalize_income(streams)

        self.assertEqual(summary.monthly_total, Decimal("1866"))
        self.assertEqual(summary.annual_total, Decimal("22400"))
        self.assertEqual(
            [(row.monthly, row.annual) for row in summary.streams],
            [(Decimal("866"), Decimal("10400")), (Decimal("1000"), Decimal("12000"))],
        )

    def test_daily_and_annual_factors(self) -> None:
        daily = IncomeStream(id="1", source="Tips", amount=Decimal("10"), frequency="daily")
        annual = IncomeStream(id="2", source="Bonus", amount=Decimal("6000"), frequency="annual")

        self.assertEqual(monthly_equivalent(daily), Decimal("304.20"))
        self.assertEqual(annual_equivalent(daily), Decimal("3650"))
        self.assertEqual(monthly_equivalent(annual), Decimal("500"))
        self.assertEqual(annual_equivalent(annual), Decimal("6000"))

    def test_empty_streams_total_zero(self) -> None:
        summary = normalize_income([])

        self.assertEqual(summary.monthly_total, Decimal("0"))
        self.assertEqual(summary.annual_total, Decimal("0"))
        self.assertEqual(summary.streams, [])

    def test_frequency_is_normalized(self) -> None:
        self.assertEqual(IncomeFrequency.validate(" Weekly "), "weekly")
        self.assertEqual(IncomeFrequency.validate("yearly"), "annual")

    def test_rejects_unsupported_frequency(self) -> None:
        stream = IncomeStream(id="1", source="Rent", amount=Decimal("100"), frequency="quarterly")

        with self.assertRaises(ValueError):
            normalize_income([stream])

    def test_rejects_negative_amount(self) -> None:
        stream = IncomeStream(id="1", source="Refund", amount=Decimal("-5"), frequency="monthly")

        with self.assertRaises(ValueError):
            monthly_equivalent(stream)


if __name__ == "__main__":
    unittest.main()
