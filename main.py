"""
Agenda Assistant — Entry Point.

`python main.py` serves the WhatsApp webhook (with the minute reminder job).
`python main.py send-reminders` runs a single reminder sweep, for hosts that
drive it from an external cron instead.
"""

import argparse
import asyncio
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def _send_reminders() -> None:
    from src.adapters.twilio_notifier import TwilioNotifier
    from src.core.scheduler import send_due_reminders
    from src.data.db import TaskDB, UserDB

    sweep = asyncio.run(send_due_reminders(TwilioNotifier(), TaskDB(), UserDB()))
    logging.getLogger("main").info(
        "Sweep %s: %d reminder(s), %d template(s), %d skipped, %d failed",
        sweep.minute.isoformat(), sweep.reminders_sent, sweep.templates_sent,
        sweep.skipped, sweep.failed,
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="WhatsApp agenda assistant")
    parser.add_argument("command", nargs="?", default="serve", choices=["serve", "send-reminders"])
    args = parser.parse_args()

    if args.command == "send-reminders":
        _send_reminders()
    else:
        from src.bot.whatsapp_webhook import main

        main()
