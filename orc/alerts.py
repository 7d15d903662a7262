from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .db import log_event
from .rollout import RunResult
from .settings import Settings, settings as default_settings


def send_email(subject: str, body: str, cfg: Settings | None = None) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - ORC_ENABLE_EMAIL=true
      - ORC_SMTP_HOST / ORC_SMTP_PORT
      - ORC_SMTP_USER / ORC_SMTP_PASSWORD
      - ORC_EMAIL_FROM / ORC_EMAIL_TO
    """
    cfg = cfg or default_settings
    if not cfg.enable_email:
        return False
    if not all([cfg.smtp_host, cfg.smtp_port, cfg.smtp_user, cfg.smtp_password, cfg.email_from, cfg.email_to]):
        return False

    msg = MIMEMultipart()
    msg["From"] = cfg.email_from
    msg["To"] = cfg.email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    try:
        server = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=30)
        server.starttls()
        server.login(cfg.smtp_user, cfg.smtp_password)
        server.sendmail(cfg.email_from, [cfg.email_to], msg.as_string())
        server.quit()
        return True
    except (smtplib.SMTPException, OSError) as e:
        # A failed notification never changes the outcome of the run.
        log_event("WARN", f"Could not send summary email: {type(e).__name__}: {e}")
        return False


def format_summary(result: RunResult, namespace: str) -> tuple[str, str]:
    mark = "OK" if result.ok else "ABORTED"
    subject = f"[orc] deploy {mark}: {namespace} ({result.run_id})"
    lines = [
        f"Namespace: {namespace}",
        f"Run: {result.run_id}",
        f"State: {result.state.value}",
        f"Started: {result.started_at}",
        f"Finished: {result.finished_at}",
    ]
    if result.failed_step:
        lines.append(f"Failed step: {result.failed_step}")
        lines.append(f"Error: {result.error}")
    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"  - {w}" for w in result.warnings)
    lines.append(f"Applied: {len(result.applied)} object(s)")
    return subject, "\n".join(lines)


def notify_run(result: RunResult, namespace: str, cfg: Settings | None = None) -> bool:
    subject, body = format_summary(result, namespace)
    return send_email(subject, body, cfg)
