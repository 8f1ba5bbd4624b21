from django.contrib import admin

from .models import Customer, Loan, LoanInstallment


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("customer_id", "name", "surname", "credit_limit", "used_credit_limit")
    search_fields = ("name", "surname")


@admin.register(Loan)
class LoanAdmin(admin.ModelAdmin):
    list_display = ("loan_id", "customer", "loan_amount", "interest_rate", "number_of_installments", "create_date", "is_paid")
    list_filter = ("is_paid",)


@admin.register(LoanInstallment)
class LoanInstallmentAdmin(admin.ModelAdmin):
    list_display = ("installment_id", "loan", "amount", "paid_amount", "due_date", "is_paid", "payment_date")
    list_filter = ("is_paid",)
