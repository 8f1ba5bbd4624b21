import tempfile
from datetime import date, timedelta
from io import StringIO
from pathlib import Path

import pandas as pd
from dateutil.relativedelta import relativedelta
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APITestCase
from rest_framework import status

from .exceptions import InsufficientCredit, InvalidArgument, NotFound
from .models import Customer, Loan, LoanInstallment
from .services import (
    INSUFFICIENT_FUNDS_MESSAGE,
    adjusted_payment_amount,
    installment_due_dates,
    issue_loan,
    list_installments,
    list_loans,
    pay_loan,
)
from .tasks import ingest_initial_data


def make_customer(credit_limit=10000.0, used_credit_limit=2000.0):
    return Customer.objects.create(
        name="Fatih",
        surname="Terim",
        credit_limit=credit_limit,
        used_credit_limit=used_credit_limit,
    )


def make_loan(customer, due_dates, amount=200.0):
    loan = Loan.objects.create(
        customer=customer,
        loan_amount=amount * len(due_dates) / 1.2,
        interest_rate=0.2,
        number_of_installments=len(due_dates),
        create_date=timezone.localdate(),
    )
    for due_date in due_dates:
        LoanInstallment.objects.create(loan=loan, amount=amount, due_date=due_date)
    return loan


class ScheduleTests(TestCase):
    """Tests for due date and penalty/reward helpers."""

    def test_installment_due_dates_are_first_of_following_months(self):
        self.assertEqual(
            installment_due_dates(date(2024, 1, 31), 3),
            [date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)],
        )

    def test_installment_due_dates_cross_year_boundary(self):
        dates = installment_due_dates(date(2024, 11, 15), 3)
        self.assertEqual(dates[-1], date(2025, 2, 1))

    def test_adjusted_amount_on_due_date(self):
        installment = LoanInstallment(amount=1000.0, due_date=date(2024, 3, 1))
        self.assertEqual(adjusted_payment_amount(installment, date(2024, 3, 1)), 1000.0)

    def test_adjusted_amount_rewards_early_payment(self):
        installment = LoanInstallment(amount=1000.0, due_date=date(2024, 3, 1))
        paid = adjusted_payment_amount(installment, date(2024, 2, 25))
        self.assertAlmostEqual(paid, 995.0)

    def test_adjusted_amount_penalises_late_payment(self):
        installment = LoanInstallment(amount=1000.0, due_date=date(2024, 3, 1))
        paid = adjusted_payment_amount(installment, date(2024, 3, 4))
        self.assertAlmostEqual(paid, 1003.0)


class IssueLoanTests(TestCase):
    def setUp(self):
        self.customer = make_customer()

    def test_issue_loan_success(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)

        self.assertEqual(loan.loan_amount, 1000.0)
        self.assertEqual(loan.number_of_installments, 6)
        self.assertFalse(loan.is_paid)
        self.assertEqual(loan.create_date, timezone.localdate())

        installments = list(loan.installments.all())
        self.assertEqual(len(installments), 6)
        for installment in installments:
            self.assertAlmostEqual(installment.amount, 200.0)
            self.assertEqual(installment.paid_amount, 0)
            self.assertFalse(installment.is_paid)
            self.assertIsNone(installment.payment_date)

        self.customer.refresh_from_db()
        self.assertAlmostEqual(self.customer.used_credit_limit, 2200.0)

    def test_installment_due_dates(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 12)
        today = timezone.localdate()
        due_dates = [installment.due_date for installment in loan.installments.all()]
        self.assertEqual(due_dates[0], (today + relativedelta(months=1)).replace(day=1))
        self.assertEqual(due_dates[-1], (today + relativedelta(months=12)).replace(day=1))
        self.assertTrue(all(due_date.day == 1 for due_date in due_dates))

    def test_installments_sum_to_total_due(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.3, 9)
        total = sum(installment.amount for installment in loan.installments.all())
        self.assertAlmostEqual(total, 1300.0)
        self.customer.refresh_from_db()
        self.assertAlmostEqual(self.customer.used_credit_limit, 2000.0 + 1300.0)

    def test_customer_not_found(self):
        with self.assertRaises(NotFound) as ctx:
            issue_loan(99999, 1000.0, 0.2, 6)
        self.assertEqual(str(ctx.exception), "Customer not found")

    def test_invalid_installments(self):
        for installments in (1, 5, 7, 10, 18, 36):
            with self.assertRaises(InvalidArgument) as ctx:
                issue_loan(self.customer.customer_id, 1000.0, 0.2, installments)
            self.assertEqual(
                str(ctx.exception),
                "Invalid installment number. Allowed values are only 6, 9, 12 or 24.",
            )

    @override_settings(LOAN_ALLOWED_INSTALLMENTS=(3,))
    def test_allowed_installments_follow_settings(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 3)
        self.assertEqual(loan.installments.count(), 3)
        with self.assertRaisesMessage(InvalidArgument, "Allowed values are only 3."):
            issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)

    def test_invalid_interest_rate(self):
        for rate in (0.05, 0.0999, 0.51, 1.0):
            with self.assertRaises(InvalidArgument) as ctx:
                issue_loan(self.customer.customer_id, 1000.0, rate, 6)
            self.assertEqual(
                str(ctx.exception), "Invalid interest rate as it must be between 0.1-0.5."
            )

    def test_interest_rate_bounds_are_inclusive(self):
        issue_loan(self.customer.customer_id, 1000.0, 0.1, 6)
        issue_loan(self.customer.customer_id, 1000.0, 0.5, 6)
        self.assertEqual(Loan.objects.filter(customer=self.customer).count(), 2)

    def test_non_positive_amount(self):
        with self.assertRaises(InvalidArgument):
            issue_loan(self.customer.customer_id, 0, 0.2, 6)

    def test_non_finite_rate_or_amount_leaves_credit_untouched(self):
        cases = (
            (1000.0, float("nan")),
            (1000.0, float("inf")),
            (float("nan"), 0.2),
            (float("inf"), 0.2),
        )
        for amount, rate in cases:
            with self.assertRaises(InvalidArgument):
                issue_loan(self.customer.customer_id, amount, rate, 6)

        self.customer.refresh_from_db()
        self.assertEqual(self.customer.used_credit_limit, 2000.0)
        self.assertFalse(Loan.objects.exists())

    def test_validation_failures_are_logged(self):
        with self.assertLogs("loans.services", level="INFO") as logs:
            with self.assertRaises(InvalidArgument):
                issue_loan(self.customer.customer_id, 1000.0, 0.2, 5)
            with self.assertRaises(InvalidArgument):
                issue_loan(self.customer.customer_id, 1000.0, 0.9, 6)
            with self.assertRaises(InsufficientCredit):
                issue_loan(self.customer.customer_id, 100000.0, 0.2, 6)
        output = "\n".join(logs.output)
        self.assertIn("Rejected installment count 5", output)
        self.assertIn("Rejected interest rate 0.9", output)
        self.assertIn("lacks credit", output)

    def test_validation_order_installments_before_credit(self):
        self.customer.used_credit_limit = 9999.0
        self.customer.save()
        with self.assertRaises(InvalidArgument):
            issue_loan(self.customer.customer_id, 1000.0, 0.2, 5)

    def test_insufficient_credit(self):
        self.customer.used_credit_limit = 9500.0
        self.customer.save()

        with self.assertRaises(InsufficientCredit) as ctx:
            issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)
        self.assertEqual(
            str(ctx.exception), "Customer does not have enough credit for this loan."
        )

        self.customer.refresh_from_db()
        self.assertEqual(self.customer.used_credit_limit, 9500.0)
        self.assertFalse(Loan.objects.exists())
        self.assertFalse(LoanInstallment.objects.exists())

    def test_exact_available_credit_is_enough(self):
        self.customer.used_credit_limit = 8800.0
        self.customer.save()
        issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)
        self.customer.refresh_from_db()
        self.assertAlmostEqual(self.customer.used_credit_limit, 10000.0)


class ListingTests(TestCase):
    def setUp(self):
        self.customer = make_customer()

    def test_list_loans(self):
        first = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)
        second = issue_loan(self.customer.customer_id, 500.0, 0.1, 12)
        other = make_customer()
        issue_loan(other.customer_id, 1000.0, 0.2, 6)

        loans = list_loans(self.customer.customer_id)
        self.assertEqual([loan.loan_id for loan in loans], [first.loan_id, second.loan_id])

    def test_list_loans_empty(self):
        self.assertEqual(list_loans(self.customer.customer_id), [])

    def test_list_loans_customer_not_found(self):
        with self.assertRaises(NotFound):
            list_loans(99999)

    def test_list_installments(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 24)
        installments = list_installments(loan.loan_id)
        self.assertEqual(len(installments), 24)
        due_dates = [installment.due_date for installment in installments]
        self.assertEqual(due_dates, sorted(due_dates))

    def test_list_installments_loan_not_found(self):
        with self.assertRaises(NotFound) as ctx:
            list_installments(99999)
        self.assertEqual(str(ctx.exception), "Loan not found")


class PayLoanTests(TestCase):
    def setUp(self):
        self.customer = make_customer()

    def test_pay_single_installment_due_today(self):
        loan = make_loan(self.customer, [timezone.localdate()])

        result = pay_loan(loan.loan_id, 200.0)

        installment = loan.installments.get()
        self.assertTrue(installment.is_paid)
        self.assertEqual(installment.paid_amount, 200.0)
        self.assertEqual(installment.payment_date, timezone.localdate())
        self.assertEqual(result["installments_paid"], 1)
        self.assertEqual(result["total_paid"], 200.0)
        self.assertEqual(
            result["message"], "Successfully paid 1 installments. Total amount spent: 200.0"
        )

    def test_pay_insufficient_funds(self):
        loan = make_loan(self.customer, [timezone.localdate()])

        result = pay_loan(loan.loan_id, 100.0)

        installment = loan.installments.get()
        self.assertFalse(installment.is_paid)
        self.assertEqual(installment.paid_amount, 0)
        self.assertIsNone(installment.payment_date)
        self.assertEqual(result["installments_paid"], 0)
        self.assertEqual(result["message"], INSUFFICIENT_FUNDS_MESSAGE)

    def test_pay_loan_not_found(self):
        with self.assertRaises(NotFound):
            pay_loan(99999, 200.0)

    def test_non_finite_payment_pays_nothing(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)

        for amount in (float("nan"), float("inf"), float("-inf")):
            with self.assertRaises(InvalidArgument):
                pay_loan(loan.loan_id, amount)

        loan.refresh_from_db()
        self.assertFalse(loan.is_paid)
        self.assertFalse(loan.installments.filter(is_paid=True).exists())

    def test_late_payment_penalty(self):
        loan = make_loan(self.customer, [timezone.localdate() - timedelta(days=10)])
        pay_loan(loan.loan_id, 200.0)
        installment = loan.installments.get()
        self.assertAlmostEqual(installment.paid_amount, 202.0)

    def test_early_payment_reward_and_face_amount_deduction(self):
        today = timezone.localdate()
        loan = make_loan(
            self.customer, [today + timedelta(days=5), today + timedelta(days=35)]
        )

        # The remaining balance is reduced by face amounts, so 400 covers both.
        result = pay_loan(loan.loan_id, 400.0)

        first, second = loan.installments.all()
        self.assertAlmostEqual(first.paid_amount, 199.0)
        self.assertAlmostEqual(second.paid_amount, 193.0)
        self.assertEqual(result["installments_paid"], 2)
        self.assertEqual(result["total_paid"], 400.0)

    def test_pays_in_due_date_order_without_partial_payment(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)

        result = pay_loan(loan.loan_id, 450.0)

        installments = list(loan.installments.all())
        self.assertEqual([i.is_paid for i in installments], [True, True] + [False] * 4)
        self.assertEqual(result["installments_paid"], 2)
        self.assertAlmostEqual(result["total_paid"], 400.0)
        self.assertFalse(result["loan_paid"])

    def test_skips_already_paid_installments(self):
        today = timezone.localdate()
        loan = make_loan(self.customer, [today, today + timedelta(days=30)])
        first = loan.installments.first()
        first.is_paid = True
        first.paid_amount = 200.0
        first.payment_date = today
        first.save()

        result = pay_loan(loan.loan_id, 200.0)

        self.assertEqual(result["installments_paid"], 1)
        self.assertTrue(all(i.is_paid for i in loan.installments.all()))

    def test_paying_every_installment_marks_loan_paid(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)
        other = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)

        result = pay_loan(loan.loan_id, 1200.0)

        loan.refresh_from_db()
        other.refresh_from_db()
        self.assertTrue(loan.is_paid)
        self.assertTrue(result["loan_paid"])
        self.assertEqual(result["installments_paid"], 6)
        self.assertFalse(other.is_paid)
        self.assertFalse(other.installments.filter(is_paid=True).exists())

    def test_paid_off_loan_does_not_restore_credit(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)
        pay_loan(loan.loan_id, 1200.0)
        self.customer.refresh_from_db()
        self.assertAlmostEqual(self.customer.used_credit_limit, 2200.0)

    def test_paying_paid_loan_pays_nothing(self):
        loan = make_loan(self.customer, [timezone.localdate()])
        pay_loan(loan.loan_id, 200.0)
        result = pay_loan(loan.loan_id, 200.0)
        self.assertEqual(result["installments_paid"], 0)
        self.assertTrue(result["loan_paid"])


class LoanAPITests(APITestCase):
    """Tests for the loan HTTP endpoints."""

    def setUp(self):
        self.user = get_user_model().objects.create_user("admin", password="admin")
        self.client.force_authenticate(user=self.user)
        self.customer = make_customer()

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)
        response = self.client.get("/api/loans/list", {"customer_id": self.customer.customer_id})
        self.assertIn(
            response.status_code,
            (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN),
        )

    def test_basic_authentication(self):
        self.client.force_authenticate(user=None)
        self.client.credentials(HTTP_AUTHORIZATION="Basic YWRtaW46YWRtaW4=")
        response = self.client.get("/api/loans/list", {"customer_id": self.customer.customer_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_create_loan_success(self):
        data = {
            "customer_id": self.customer.customer_id,
            "amount": 1000,
            "interest_rate": 0.2,
            "installments": 6,
        }
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["number_of_installments"], 6)
        self.assertFalse(response.data["is_paid"])
        self.assertTrue(Loan.objects.filter(loan_id=response.data["loan_id"]).exists())

    def test_create_loan_missing_fields(self):
        response = self.client.post(
            "/api/loans/create", {"customer_id": self.customer.customer_id}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("Missing fields", response.data["error"])

    def test_create_loan_invalid_number(self):
        data = {
            "customer_id": self.customer.customer_id,
            "amount": "lots",
            "interest_rate": 0.2,
            "installments": 6,
        }
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "Invalid value for amount.")

    def test_create_loan_non_finite_numbers(self):
        for field in ("amount", "interest_rate"):
            for value in ("nan", "inf"):
                data = {
                    "customer_id": self.customer.customer_id,
                    "amount": 1000,
                    "interest_rate": 0.2,
                    "installments": 6,
                }
                data[field] = value
                response = self.client.post("/api/loans/create", data, format="json")
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertEqual(response.data["error"], f"Invalid value for {field}.")

        self.customer.refresh_from_db()
        self.assertEqual(self.customer.used_credit_limit, 2000.0)
        self.assertFalse(Loan.objects.exists())

    def test_create_loan_fractional_installments(self):
        data = {
            "customer_id": self.customer.customer_id,
            "amount": 1000,
            "interest_rate": 0.2,
            "installments": 6.7,
        }
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "Invalid value for installments.")
        self.assertFalse(Loan.objects.exists())

        data["installments"] = "6.7"
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_loan_whole_float_installments(self):
        data = {
            "customer_id": self.customer.customer_id,
            "amount": 1000,
            "interest_rate": 0.2,
            "installments": 6.0,
        }
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["number_of_installments"], 6)

    def test_create_loan_invalid_installments(self):
        data = {
            "customer_id": self.customer.customer_id,
            "amount": 1000,
            "interest_rate": 0.2,
            "installments": 5,
        }
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("6, 9, 12 or 24", response.data["error"])

    def test_create_loan_insufficient_credit(self):
        data = {
            "customer_id": self.customer.customer_id,
            "amount": 100000,
            "interest_rate": 0.2,
            "installments": 6,
        }
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Loan.objects.exists())

    def test_create_loan_unknown_customer(self):
        data = {"customer_id": 99999, "amount": 1000, "interest_rate": 0.2, "installments": 6}
        response = self.client.post("/api/loans/create", data, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_loans(self):
        issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)
        response = self.client.get("/api/loans/list", {"customer_id": self.customer.customer_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["loan_amount"], 1000.0)

    def test_list_loans_unknown_customer(self):
        response = self.client.get("/api/loans/list", {"customer_id": 99999})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_installments(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 9)
        response = self.client.get("/api/loans/installments", {"loan_id": loan.loan_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 9)

    def test_list_installments_unknown_loan(self):
        response = self.client.get("/api/loans/installments", {"loan_id": 99999})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_pay(self):
        loan = make_loan(self.customer, [timezone.localdate()])
        response = self.client.post(
            "/api/loans/pay", {"loan_id": loan.loan_id, "amount": 200.0}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["installments_paid"], 1)
        self.assertTrue(response.data["loan_paid"])

    def test_pay_with_query_parameters(self):
        loan = make_loan(self.customer, [timezone.localdate()])
        response = self.client.post(f"/api/loans/pay?loan_id={loan.loan_id}&amount=100")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["message"], INSUFFICIENT_FUNDS_MESSAGE)

    def test_pay_non_finite_amount(self):
        loan = issue_loan(self.customer.customer_id, 1000.0, 0.2, 6)
        for amount in ("nan", "inf", "-inf"):
            response = self.client.post(f"/api/loans/pay?loan_id={loan.loan_id}&amount={amount}")
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(response.data["error"], "Invalid value for amount.")

        loan.refresh_from_db()
        self.assertFalse(loan.is_paid)
        self.assertFalse(loan.installments.filter(is_paid=True).exists())

    def test_pay_fractional_loan_id(self):
        loan = make_loan(self.customer, [timezone.localdate()])
        response = self.client.post(
            "/api/loans/pay", {"loan_id": loan.loan_id + 0.5, "amount": 200.0}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "Invalid value for loan_id.")
        self.assertFalse(loan.installments.filter(is_paid=True).exists())

    def test_pay_unknown_loan(self):
        response = self.client.post(
            "/api/loans/pay", {"loan_id": 99999, "amount": 200.0}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class IngestionTests(TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.data_dir = Path(self.tmp.name)

    def _write_workbook(self):
        pd.DataFrame(
            [
                {"customer_id": 1, "name": "Ada", "surname": "Lovelace", "credit_limit": 5000, "used_credit_limit": 0},
                {"customer_id": 2, "name": "Alan", "surname": "Turing", "credit_limit": 8000, "used_credit_limit": 1000},
                {"customer_id": None, "name": "Nobody", "surname": "", "credit_limit": 1, "used_credit_limit": 0},
            ]
        ).to_excel(self.data_dir / "customer_data.xlsx", index=False)

    def test_ingest_customers(self):
        self._write_workbook()
        with override_settings(DATA_DIR=self.data_dir):
            self.assertEqual(ingest_initial_data(), 2)
            self.assertEqual(ingest_initial_data(), 2)

        self.assertEqual(Customer.objects.count(), 2)
        customer = Customer.objects.get(customer_id=2)
        self.assertEqual(customer.surname, "Turing")
        self.assertEqual(customer.available_credit, 7000.0)

    def test_ingest_without_workbook(self):
        with override_settings(DATA_DIR=self.data_dir):
            self.assertEqual(ingest_initial_data(), 0)
        self.assertFalse(Customer.objects.exists())

    def test_management_command_sync(self):
        self._write_workbook()
        out = StringIO()
        with override_settings(DATA_DIR=self.data_dir):
            call_command("ingest_initial_data", "--sync", stdout=out)
        self.assertIn("Ingested 2 customer(s).", out.getvalue())
