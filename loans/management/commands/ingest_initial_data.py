from django.core.management.base import BaseCommand

from loans.tasks import ingest_initial_data


class Command(BaseCommand):
    help = "Load customers from the Excel workbook in DATA_DIR."

    def add_arguments(self, parser):
        parser.add_argument(
            "--sync",
            action="store_true",
            help="Run the ingestion in this process instead of queueing it.",
        )

    def handle(self, *args, **options):
        if options["sync"]:
            written = ingest_initial_data()
            self.stdout.write(self.style.SUCCESS(f"Ingested {written} customer(s)."))
            return
        ingest_initial_data.delay()
        self.stdout.write(self.style.SUCCESS("Ingestion task queued."))
