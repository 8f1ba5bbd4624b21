import logging
import math

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .exceptions import InsufficientCredit, InvalidArgument, NotFound
from .models import Customer, Loan, LoanInstallment


logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS_MESSAGE = "Insufficient funds to pay any installment."


def _allowed_installments():
    return tuple(settings.LOAN_ALLOWED_INSTALLMENTS)


def _format_choices(values):
    values = [str(value) for value in values]
    if len(values) == 1:
        return values[0]
    return f"{', '.join(values[:-1])} or {values[-1]}"


def installment_due_dates(start, count):
    # First day of each of the `count` months following `start`.
    return [(start + relativedelta(months=i)).replace(day=1) for i in range(1, count + 1)]


def adjusted_payment_amount(installment, paid_on):
    """Return the amount recorded for an installment paid on `paid_on`.

    Paying before the due date earns a discount and paying after it a
    penalty, both linear in the number of days between the two dates.
    """
    days = (paid_on - installment.due_date).days
    rate = settings.LOAN_DAILY_ADJUSTMENT_RATE
    if days < 0:
        discount = installment.amount * rate * abs(days)
        logger.info(
            "Applied reward of %s for paying %s day(s) early.", discount, abs(days)
        )
        return installment.amount - discount
    if days > 0:
        penalty = installment.amount * rate * days
        logger.info("Applied penalty of %s for paying %s day(s) late.", penalty, days)
        return installment.amount + penalty
    return installment.amount


def get_customer(customer_id, for_update=False):
    queryset = Customer.objects.select_for_update() if for_update else Customer.objects
    customer = queryset.filter(customer_id=customer_id).first()
    if customer is None:
        logger.info("Customer %s not found.", customer_id)
        raise NotFound("Customer not found")
    return customer


def get_loan(loan_id, for_update=False):
    queryset = Loan.objects.select_for_update() if for_update else Loan.objects
    loan = queryset.select_related("customer").filter(loan_id=loan_id).first()
    if loan is None:
        logger.info("Loan %s not found.", loan_id)
        raise NotFound("Loan not found")
    return loan


@transaction.atomic
def issue_loan(customer_id, amount, interest_rate, installments):
    logger.info(
        "Creating loan for customer %s: amount=%s, interest_rate=%s, installments=%s",
        customer_id,
        amount,
        interest_rate,
        installments,
    )
    # The row lock keeps concurrent issuances for one customer from both
    # passing the credit check against the same used limit.
    customer = get_customer(customer_id, for_update=True)

    allowed = _allowed_installments()
    if installments not in allowed:
        logger.info("Rejected installment count %s for customer %s.", installments, customer_id)
        raise InvalidArgument(
            f"Invalid installment number. Allowed values are only {_format_choices(allowed)}."
        )

    min_rate = settings.LOAN_MIN_INTEREST_RATE
    max_rate = settings.LOAN_MAX_INTEREST_RATE
    # NaN compares false against both bounds, so it is rejected explicitly.
    if not math.isfinite(interest_rate) or not min_rate <= interest_rate <= max_rate:
        logger.info("Rejected interest rate %s for customer %s.", interest_rate, customer_id)
        raise InvalidArgument(
            f"Invalid interest rate as it must be between {min_rate}-{max_rate}."
        )

    if not math.isfinite(amount) or amount <= 0:
        logger.info("Rejected loan amount %s for customer %s.", amount, customer_id)
        raise InvalidArgument("Loan amount must be a finite number greater than zero.")

    total_amount = amount * (1 + interest_rate)
    available_credit = customer.available_credit
    logger.info(
        "Customer %s has available credit %s, loan requires %s.",
        customer_id,
        available_credit,
        total_amount,
    )
    if available_credit < total_amount:
        logger.info(
            "Customer %s lacks credit: available %s, required %s.",
            customer_id,
            available_credit,
            total_amount,
        )
        raise InsufficientCredit("Customer does not have enough credit for this loan.")

    customer.used_credit_limit += total_amount
    customer.save(update_fields=["used_credit_limit"])

    today = timezone.localdate()
    loan = Loan.objects.create(
        customer=customer,
        loan_amount=amount,
        interest_rate=interest_rate,
        number_of_installments=installments,
        create_date=today,
        is_paid=False,
    )
    installment_amount = total_amount / installments
    LoanInstallment.objects.bulk_create(
        [
            LoanInstallment(
                loan=loan,
                amount=installment_amount,
                paid_amount=0.0,
                is_paid=False,
                due_date=due_date,
            )
            for due_date in installment_due_dates(today, installments)
        ]
    )
    logger.info(
        "Created loan %s with %s installments of %s.",
        loan.loan_id,
        installments,
        installment_amount,
    )
    return loan


def list_loans(customer_id):
    customer = get_customer(customer_id)
    loans = list(Loan.objects.filter(customer=customer).order_by("loan_id"))
    logger.info("Found %s loan(s) for customer %s.", len(loans), customer_id)
    return loans


def list_installments(loan_id):
    loan = get_loan(loan_id)
    installments = list(loan.installments.order_by("due_date", "installment_id"))
    logger.info("Found %s installment(s) for loan %s.", len(installments), loan_id)
    return installments


def _payment_result(loan, installments_paid, total_paid):
    if installments_paid == 0:
        message = INSUFFICIENT_FUNDS_MESSAGE
    else:
        message = (
            f"Successfully paid {installments_paid} installments. "
            f"Total amount spent: {total_paid}"
        )
    return {
        "loan_id": loan.loan_id,
        "installments_paid": installments_paid,
        "total_paid": total_paid,
        "loan_paid": loan.is_paid,
        "message": message,
    }


@transaction.atomic
def pay_loan(loan_id, amount):
    logger.info("Processing payment of %s for loan %s.", amount, loan_id)
    loan = get_loan(loan_id, for_update=True)
    # A NaN balance never compares below an installment and would pay them all.
    if not math.isfinite(amount):
        logger.info("Rejected payment amount %s for loan %s.", amount, loan_id)
        raise InvalidArgument("Payment amount must be a finite number.")
    installments = list(loan.installments.order_by("due_date", "installment_id"))

    today = timezone.localdate()
    remaining = amount
    total_paid = 0.0
    paid = []
    for installment in installments:
        if installment.is_paid:
            continue
        # Installments are paid in full or not at all, in due date order.
        if remaining < installment.amount:
            break
        installment.paid_amount = adjusted_payment_amount(installment, today)
        installment.is_paid = True
        installment.payment_date = today
        remaining -= installment.amount
        total_paid += installment.amount
        paid.append(installment)
        logger.info(
            "Paid installment due %s: amount=%s, paid_amount=%s",
            installment.due_date,
            installment.amount,
            installment.paid_amount,
        )

    if not paid:
        logger.info("Payment of %s for loan %s covered no installment.", amount, loan_id)
        return _payment_result(loan, 0, 0.0)

    LoanInstallment.objects.bulk_update(paid, ["paid_amount", "is_paid", "payment_date"])

    if all(installment.is_paid for installment in installments):
        loan.is_paid = True
        loan.save(update_fields=["is_paid"])
        logger.info("Loan %s has been fully paid.", loan_id)

    logger.info(
        "Paid %s installment(s) of loan %s, total %s.", len(paid), loan_id, total_paid
    )
    return _payment_result(loan, len(paid), total_paid)
