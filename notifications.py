"""
Coach and parent notifications: email (SMTP or log) and Slack webhooks.

Delivery is fire-and-forget through tasks.fire_and_forget: a failed send is
logged and never blocks or fails the XP operation that triggered it.

Uses EMAIL_BACKEND config to choose the email transport:
  - "log" (default): writes the email to the log
  - "smtp": sends via SMTP using MAIL_* settings
Slack messages are posted only when SLACK_WEBHOOK_URL is set.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText

import requests
from flask import current_app

from tasks import fire_and_forget

logger = logging.getLogger(__name__)


def _send_email(to: str, subject: str, body: str, config: dict) -> bool:
    """SMTP send: no Flask context required (safe inside an RQ worker)."""
    try:
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = config.get("mail_from", "noreply@example.com")
        msg["To"] = to

        with smtplib.SMTP(config["mail_server"], config["mail_port"], timeout=10) as smtp:
            smtp.starttls()
            if config.get("mail_username") and config.get("mail_password"):
                smtp.login(config["mail_username"], config["mail_password"])
            smtp.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP send failed: %s", e)
        return False


def _post_slack(webhook_url: str, text: str) -> bool:
    try:
        response = requests.post(webhook_url, json={"text": text}, timeout=5)
        response.raise_for_status()
        return True
    except requests.RequestException as e:
        logger.warning("Slack webhook failed: %s", e)
        return False


def send_email(to: str, subject: str, body: str) -> bool:
    backend = current_app.config.get("EMAIL_BACKEND", "log")
    if backend == "log":
        logger.info("EMAIL [to=%s] subject=%s\n%s", to, subject, body)
        return True

    config = {
        "mail_from": current_app.config.get("MAIL_FROM", "noreply@example.com"),
        "mail_server": current_app.config.get("MAIL_SERVER", "localhost"),
        "mail_port": current_app.config.get("MAIL_PORT", 587),
        "mail_username": current_app.config.get("MAIL_USERNAME", ""),
        "mail_password": current_app.config.get("MAIL_PASSWORD", ""),
    }
    return fire_and_forget(_send_email, to, subject, body, config)


def send_slack(text: str) -> bool:
    webhook_url = current_app.config.get("SLACK_WEBHOOK_URL", "")
    if not webhook_url:
        return False
    return fire_and_forget(_post_slack, webhook_url, text)


def notify_video_pending(coach_emails: list[str], student_name: str, challenge_id: str,
                         pending_xp: int) -> None:
    subject = f"Video to review: {student_name}"
    body = (
        f"{student_name} submitted video proof for {challenge_id}.\n"
        f"{pending_xp} XP is waiting on your verification."
    )
    for email in coach_emails:
        send_email(email, subject, body)
    send_slack(f":movie_camera: {student_name} submitted {challenge_id} ({pending_xp} XP pending review)")


def notify_promotion(parent_email: str, student_name: str, new_belt: str) -> None:
    if not parent_email:
        return
    send_email(
        parent_email,
        f"{student_name} earned a {new_belt} belt!",
        f"Congratulations! {student_name} has been promoted to {new_belt} belt.",
    )


def notify_stale_reviews(coach_emails: list[str], club_name: str, count: int, hours: int) -> None:
    subject = f"{count} video submission(s) awaiting review"
    body = f"{club_name} has {count} video submission(s) pending for more than {hours} hours."
    for email in coach_emails:
        send_email(email, subject, body)
    send_slack(f":hourglass: {club_name}: {count} video review(s) older than {hours}h")
