import math

from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status

from .exceptions import InsufficientCredit, InvalidArgument, LoanError, NotFound
from .services import issue_loan, list_installments, list_loans, pay_loan


ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    InsufficientCredit: status.HTTP_400_BAD_REQUEST,
}


def _error(exc):
    code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return Response({"error": str(exc)}, status=code)


def _require_fields(data, fields):
    missing = [field for field in fields if field not in data]
    if missing:
        return False, Response(
            {"error": f"Missing fields: {', '.join(missing)}"},
            status=status.HTTP_400_BAD_REQUEST,
        )
    return True, None


def _invalid(field):
    return Response(
        {"error": f"Invalid value for {field}."},
        status=status.HTTP_400_BAD_REQUEST,
    )


def _parse_int(value, field):
    try:
        parsed = int(value)
    except (TypeError, ValueError, OverflowError):
        return None, _invalid(field)
    # int() truncates floats such as 6.7 from JSON bodies.
    if isinstance(value, float) and parsed != value:
        return None, _invalid(field)
    return parsed, None


def _parse_float(value, field):
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None, _invalid(field)
    if not math.isfinite(parsed):
        return None, _invalid(field)
    return parsed, None


def _loan_payload(loan):
    return {
        "loan_id": loan.loan_id,
        "customer_id": loan.customer_id,
        "loan_amount": loan.loan_amount,
        "interest_rate": loan.interest_rate,
        "total_amount": loan.total_amount,
        "number_of_installments": loan.number_of_installments,
        "create_date": loan.create_date,
        "is_paid": loan.is_paid,
    }


def _installment_payload(installment):
    return {
        "installment_id": installment.installment_id,
        "loan_id": installment.loan_id,
        "amount": installment.amount,
        "paid_amount": installment.paid_amount,
        "due_date": installment.due_date,
        "is_paid": installment.is_paid,
        "payment_date": installment.payment_date,
    }


@api_view(["POST"])
def create_loan(request):
    ok, response = _require_fields(
        request.data, ["customer_id", "amount", "interest_rate", "installments"]
    )
    if not ok:
        return response

    customer_id, error = _parse_int(request.data["customer_id"], "customer_id")
    if error:
        return error
    amount, error = _parse_float(request.data["amount"], "amount")
    if error:
        return error
    interest_rate, error = _parse_float(request.data["interest_rate"], "interest_rate")
    if error:
        return error
    installments, error = _parse_int(request.data["installments"], "installments")
    if error:
        return error

    try:
        loan = issue_loan(customer_id, amount, interest_rate, installments)
    except LoanError as exc:
        return _error(exc)

    return Response(_loan_payload(loan), status=status.HTTP_201_CREATED)


@api_view(["GET"])
def view_loans(request):
    ok, response = _require_fields(request.query_params, ["customer_id"])
    if not ok:
        return response
    customer_id, error = _parse_int(request.query_params["customer_id"], "customer_id")
    if error:
        return error

    try:
        loans = list_loans(customer_id)
    except LoanError as exc:
        return _error(exc)

    return Response([_loan_payload(loan) for loan in loans])


@api_view(["GET"])
def view_installments(request):
    ok, response = _require_fields(request.query_params, ["loan_id"])
    if not ok:
        return response
    loan_id, error = _parse_int(request.query_params["loan_id"], "loan_id")
    if error:
        return error

    try:
        installments = list_installments(loan_id)
    except LoanError as exc:
        return _error(exc)

    return Response([_installment_payload(installment) for installment in installments])


@api_view(["POST"])
def pay(request):
    # Fields may arrive in the body or as query parameters.
    data = request.data if "loan_id" in request.data else request.query_params
    ok, response = _require_fields(data, ["loan_id", "amount"])
    if not ok:
        return response

    loan_id, error = _parse_int(data["loan_id"], "loan_id")
    if error:
        return error
    amount, error = _parse_float(data["amount"], "amount")
    if error:
        return error

    try:
        result = pay_loan(loan_id, amount)
    except LoanError as exc:
        return _error(exc)

    return Response(result)
