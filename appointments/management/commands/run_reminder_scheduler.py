import signal
import threading

from django.core.management.base import BaseCommand

from appointments.reminders import ReminderScheduler


class Command(BaseCommand):
    help = "Run the appointment reminder scheduler in the foreground until SIGINT/SIGTERM."

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single reminder check and exit.",
        )

    def handle(self, *args, **options):
        scheduler = ReminderScheduler()

        if options["once"]:
            sent = scheduler.run_once()
            self.stdout.write(self.style.SUCCESS(f"Sent {sent or 0} reminders."))
            return

        stop_event = threading.Event()

        def _shutdown(signum, frame):
            self.stdout.write(f"Received signal {signum}, shutting down...")
            stop_event.set()

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

        scheduler.start()
        self.stdout.write(self.style.SUCCESS("Reminder scheduler running. Press Ctrl+C to stop."))
        try:
            while not stop_event.wait(timeout=1):
                pass
        finally:
            scheduler.stop()
        self.stdout.write(self.style.SUCCESS("Reminder scheduler stopped."))
