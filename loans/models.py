from django.db import models


class Customer(models.Model):
    customer_id = models.AutoField(primary_key=True)
    name = models.CharField(max_length=100)
    surname = models.CharField(max_length=100)
    credit_limit = models.FloatField(default=0)
    used_credit_limit = models.FloatField(default=0)

    @property
    def available_credit(self):
        return self.credit_limit - self.used_credit_limit

    def __str__(self):
        return f"{self.name} {self.surname} ({self.customer_id})"


class Loan(models.Model):
    loan_id = models.AutoField(primary_key=True)
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="loans")
    loan_amount = models.FloatField()
    interest_rate = models.FloatField()
    number_of_installments = models.IntegerField()
    create_date = models.DateField()
    is_paid = models.BooleanField(default=False)

    class Meta:
        ordering = ["loan_id"]

    @property
    def total_amount(self):
        return self.loan_amount * (1 + self.interest_rate)

    def __str__(self):
        return f"Loan {self.loan_id} for {self.customer_id}"


class LoanInstallment(models.Model):
    installment_id = models.AutoField(primary_key=True)
    loan = models.ForeignKey(Loan, on_delete=models.CASCADE, related_name="installments")
    amount = models.FloatField()
    paid_amount = models.FloatField(default=0)
    due_date = models.DateField()
    is_paid = models.BooleanField(default=False)
    payment_date = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["due_date", "installment_id"]

    def __str__(self):
        return f"Installment {self.installment_id} of loan {self.loan_id} due {self.due_date}"
