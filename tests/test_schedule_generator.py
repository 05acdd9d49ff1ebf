"""Tests for the installment schedule generator."""

import pytest
from datetime import date
from decimal import Decimal

from plan_engine.calculators.schedule import InstallmentScheduleGenerator
from plan_engine.errors import ValidationError
from plan_engine.models import InstallmentStatus, ScheduleRequest

from conftest import make_plan


class TestCollegeDueDates:

    def college_dates(self, first_due, count, frequency="monthly"):
        request = ScheduleRequest(
            number_of_installments=count,
            first_college_due_date=first_due,
            frequency=frequency,
        )
        return [inst.college_due_date for inst in InstallmentScheduleGenerator().generate(make_plan(), request)]

    def test_monthly_steps(self):
        assert self.college_dates(date(2025, 1, 15), 3) == [date(2025, 1, 15), date(2025, 2, 15), date(2025, 3, 15)]

    def test_month_end_clamps_without_drifting(self):
        """Each date is offset from the first one, so a short month does not pull later dates back."""
        assert self.college_dates(date(2025, 1, 31), 3) == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31)]
        assert self.college_dates(date(2024, 1, 31), 2) == [date(2024, 1, 31), date(2024, 2, 29)]

    def test_quarterly_crosses_year(self):
        assert self.college_dates(date(2025, 11, 30), 2, "quarterly") == [date(2025, 11, 30), date(2026, 2, 28)]


class TestInstallmentScheduleGenerator:

    @pytest.fixture
    def generator(self):
        return InstallmentScheduleGenerator()

    def test_even_split_with_remainder_on_last(self, generator):
        """1,000 over 3 installments: 333.33, 333.33, 333.34."""
        plan = make_plan(total='1000')
        request = ScheduleRequest(number_of_installments=3, first_college_due_date=date(2025, 2, 1))

        installments = generator.generate(plan, request)

        assert [inst.amount for inst in installments] == [
            Decimal('333.33'), Decimal('333.33'), Decimal('333.34')
        ]
        assert sum(inst.amount for inst in installments) == plan.total_value
        assert [inst.sequence for inst in installments] == [1, 2, 3]
        assert all(inst.status == InstallmentStatus.DRAFT for inst in installments)
        assert all(inst.plan_id == plan.id and inst.tenant_id == plan.tenant_id for inst in installments)

    def test_quarterly_dates_and_student_lead_time(self, generator):
        plan = make_plan(total='3000')
        request = ScheduleRequest(
            number_of_installments=3,
            first_college_due_date=date(2025, 1, 31),
            frequency='quarterly',
            student_lead_time_days=7,
        )

        installments = generator.generate(plan, request)

        assert [inst.college_due_date for inst in installments] == [
            date(2025, 1, 31), date(2025, 4, 30), date(2025, 7, 31)
        ]
        assert [inst.student_due_date for inst in installments] == [
            date(2025, 1, 24), date(2025, 4, 23), date(2025, 7, 24)
        ]

    def test_initial_payment_is_sequence_zero(self, generator):
        plan = make_plan(total='2000', start_date=date(2025, 1, 10))
        request = ScheduleRequest(
            number_of_installments=2,
            first_college_due_date=date(2025, 2, 1),
            initial_payment_amount=Decimal('500'),
        )

        installments = generator.generate(plan, request)

        initial = installments[0]
        assert initial.sequence == 0
        assert initial.is_initial_payment is True
        assert initial.amount == Decimal('500.00')
        assert initial.student_due_date == date(2025, 1, 10)
        assert [inst.amount for inst in installments[1:]] == [Decimal('750.00'), Decimal('750.00')]

    def test_rejects_unknown_frequency(self, generator):
        request = ScheduleRequest(number_of_installments=2, first_college_due_date=date(2025, 2, 1), frequency='weekly')
        with pytest.raises(ValidationError) as exc:
            generator.generate(make_plan(), request)
        assert exc.value.field == 'payment_frequency'

    def test_rejects_zero_installments(self, generator):
        request = ScheduleRequest(number_of_installments=0, first_college_due_date=date(2025, 2, 1))
        with pytest.raises(ValidationError) as exc:
            generator.generate(make_plan(), request)
        assert exc.value.field == 'number_of_installments'

    def test_rejects_initial_payment_covering_total(self, generator):
        request = ScheduleRequest(
            number_of_installments=2,
            first_college_due_date=date(2025, 2, 1),
            initial_payment_amount=Decimal('2000'),
        )
        with pytest.raises(ValidationError) as exc:
            generator.generate(make_plan(total='2000'), request)
        assert exc.value.field == 'initial_payment_amount'

    def test_rejects_negative_lead_time(self, generator):
        request = ScheduleRequest(
            number_of_installments=2, first_college_due_date=date(2025, 2, 1), student_lead_time_days=-1
        )
        with pytest.raises(ValidationError) as exc:
            generator.generate(make_plan(), request)
        assert exc.value.field == 'student_lead_time_days'

    def test_schedule_request_from_dict(self):
        request = ScheduleRequest.from_dict({
            'number_of_installments': '4',
            'first_college_due_date': '2025-02-01',
            'payment_frequency': 'quarterly',
            'initial_payment_amount': 250,
        })
        assert request.number_of_installments == 4
        assert request.first_college_due_date == date(2025, 2, 1)
        assert request.frequency == 'quarterly'
        assert request.initial_payment_amount == Decimal('250')
