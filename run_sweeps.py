"""
Runs the periodic maintenance jobs once. Meant for cron or a scheduler.

    python run_sweeps.py expire        # pending/in-progress past due -> expired
    python run_sweeps.py remind        # reminder mails for requirements due soon
    python run_sweeps.py purge-links   # delete expired secure links
    python run_sweeps.py all
"""
import argparse
import json

from loguru import logger
from sqlmodel import Session

from app.core.logging import setup_logging
from app.db.core import engine, init_db
from app.services.requirement import RequirementService
from app.services.secure_link import TokenIssuer

JOBS = ("expire", "remind", "purge-links")


def run(session: Session, job: str, days_before=None) -> dict:
    results = {}
    requirements = RequirementService(session)

    if job in ("expire", "all"):
        results["expired"] = requirements.expire_overdue()
    if job in ("remind", "all"):
        results["reminders_sent"] = requirements.send_reminders(days_before=days_before)
    if job in ("purge-links", "all"):
        results["links_purged"] = TokenIssuer(session).purge_expired()
    return results


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run requirement and secure-link sweeps once.")
    parser.add_argument("job", choices=JOBS + ("all",))
    parser.add_argument(
        "--days-before",
        type=int,
        default=None,
        help="Reminder window in days. Defaults to REMINDER_DAYS_BEFORE.",
    )
    args = parser.parse_args(argv)

    setup_logging()
    init_db()

    with Session(engine) as session:
        results = run(session, args.job, days_before=args.days_before)

    logger.info(f"Sweep '{args.job}' finished: {results}")
    print(json.dumps(results))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
