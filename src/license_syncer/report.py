import logging
import smtplib
import traceback
from datetime import datetime, timedelta
from email.message import EmailMessage

from license_syncer.config import Settings
from license_syncer.errors import ExitCode

logger = logging.getLogger(__name__)

SUBJECT_SUCCESS = "License sync SUCCESS"
SUBJECT_ERROR = "License sync ERROR"


class RunLog:
    """
    Append-only log of a single run.

    Every entry is also sent to the module logger so the console and the
    mailed report carry the same lines.
    """

    def __init__(self, started: datetime | None = None):
        self.started = started or datetime.now()
        self.entries: list[str] = []
        self.add(f"License sync started {self.started:%Y-%m-%d %H:%M:%S}")

    def add(self, message: str, level: int = logging.INFO) -> None:
        self.entries.append(f"{datetime.now():%H:%M:%S} {message}")
        logger.log(level, message)

    def info(self, message: str) -> None:
        self.add(message, logging.INFO)

    def warning(self, message: str) -> None:
        self.add(f"WARNING: {message}", logging.WARNING)

    def error(self, message: str) -> None:
        self.add(f"ERROR: {message}", logging.ERROR)

    def text(self) -> str:
        return "\n".join(self.entries) + "\n"

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


def source_position(exc: BaseException) -> str:
    """Describes where an exception was raised: innermost file, line and function."""
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return "unknown position"
    frame = frames[-1]
    return f"{frame.filename}:{frame.lineno} in {frame.name}"


def send_report(settings: Settings, subject: str, body: str) -> None:
    """Sends the plain-text run report through the configured relay."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_sender
    msg["To"] = ", ".join(settings.mail_recipients)
    msg.set_content(body)

    with smtplib.SMTP(settings.mail_relay, settings.mail_port) as smtp:
        smtp.send_message(msg)
    logger.info(f"Report '{subject}' sent to {', '.join(settings.mail_recipients)}")


class Reporter:
    """Persists and delivers the run log at the run's exit points."""

    def __init__(self, settings: Settings, run_log: RunLog):
        self.settings = settings
        self.run_log = run_log

    def persist(self) -> None:
        with open(self.settings.log_file, "a", encoding="utf-8") as f:
            f.write(self.run_log.text())
            f.write("\n")

    def deliver(self, subject: str) -> None:
        try:
            self.persist()
        except OSError as e:
            logger.error(f"Could not append run log to {self.settings.log_file}: {e}")
        try:
            send_report(self.settings, subject, self.run_log.text())
        except (OSError, smtplib.SMTPException) as e:
            logger.error(f"Could not send report via {self.settings.mail_relay}: {e}")

    def finish(self, provisioned: int, skipped: int, elapsed: timedelta) -> None:
        self.run_log.info(f"Elapsed time: {elapsed}")
        self.run_log.info(f"Licenses assigned: {provisioned}")
        self.run_log.info(f"Accounts skipped: {skipped}")
        self.run_log.info("Failures: 0")
        self.deliver(SUBJECT_SUCCESS)

    def fatal(self, exc: BaseException, exit_code: ExitCode) -> None:
        """Records a fatal error, delivers the ERROR report and exits with ``exit_code``."""
        self.run_log.error(f"{type(exc).__name__}: {describe_error(exc)}")
        self.run_log.error(f"At {source_position(exc)}")
        cause = exc.__cause__
        if cause is not None:
            self.run_log.error(f"Caused by {type(cause).__name__}: {describe_error(cause)}")
            self.run_log.error(f"At {source_position(cause)}")
        self.run_log.error(f"Run aborted with exit code {int(exit_code)}")
        self.deliver(SUBJECT_ERROR)
        raise SystemExit(int(exit_code))


def describe_error(exc: BaseException) -> str:
    # ODataError carries its text on .error.message rather than in args.
    error = getattr(exc, "error", None)
    message = getattr(error, "message", None)
    return message or str(exc)
