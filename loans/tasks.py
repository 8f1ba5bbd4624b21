import logging

import pandas as pd
from celery import shared_task
from django.conf import settings

from .models import Customer


logger = logging.getLogger(__name__)


def _get_value(row, *keys, default=None):
    for key in keys:
        if key in row and not pd.isna(row.get(key)):
            return row.get(key)
    return default


@shared_task
def ingest_initial_data():
    customer_file = settings.DATA_DIR / "customer_data.xlsx"
    if not customer_file.exists():
        logger.warning("No customer workbook at %s, nothing to ingest.", customer_file)
        return 0

    customers_df = pd.read_excel(customer_file)
    written = 0
    for _, row in customers_df.iterrows():
        customer_id_value = _get_value(row, "customer_id", "customer id")
        if customer_id_value is None:
            continue
        Customer.objects.update_or_create(
            customer_id=int(customer_id_value),
            defaults={
                "name": str(_get_value(row, "name", default="")).strip(),
                "surname": str(_get_value(row, "surname", default="")).strip(),
                "credit_limit": float(
                    _get_value(row, "credit_limit", "credit limit", default=0)
                ),
                "used_credit_limit": float(
                    _get_value(row, "used_credit_limit", "used credit limit", default=0)
                ),
            },
        )
        written += 1

    logger.info("Ingested %s customer(s) from %s.", written, customer_file)
    return written
