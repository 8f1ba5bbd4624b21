from django.urls import path

from . import views

urlpatterns = [
    path("create", views.create_loan, name="loan-create"),
    path("list", views.view_loans, name="loan-list"),
    path("installments", views.view_installments, name="loan-installments"),
    path("pay", views.pay, name="loan-pay"),
]
