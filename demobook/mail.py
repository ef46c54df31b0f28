import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app


log = logging.getLogger(__name__)


def send_email(subject: str, body: str, to_emails: list[str]) -> bool:
    cfg = current_app.config
    host = cfg.get('SMTP_HOST')
    port = cfg.get('SMTP_PORT', 587)
    user = cfg.get('SMTP_USER')
    pwd = cfg.get('SMTP_PASS')
    sender = cfg.get('MAIL_FROM') or user

    if not (host and user and pwd and sender):
        # Skip actual sending in dev if not configured
        log.info("SMTP not configured; not sending %r to %s", subject, ", ".join(to_emails))
        return False

    msg = MIMEMultipart()
    msg['From'] = sender
    msg['To'] = ", ".join(to_emails)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    with smtplib.SMTP(host, port) as server:
        server.starttls()
        server.login(user, pwd)
        server.sendmail(sender, to_emails, msg.as_string())
    return True


def send_magic_link(user, link: str) -> bool:
    course = current_app.config['COURSE_NAME']
    subject = f"Your {course} Bookings sign-in link"
    body = (
        f"Hi {user.name},\n\n"
        f"Use the link below to sign in. It expires in "
        f"{current_app.config['MAGIC_LINK_MAX_AGE'] // 60} minutes.\n\n"
        f"{link}\n\n"
        f"If you did not request this, you can ignore this email.\n"
    )
    sent = send_email(subject, body, [user.email])
    if not sent:
        log.info("Magic link for %s: %s", user.email, link)
    return sent


def send_password_reset(user, link: str) -> bool:
    course = current_app.config['COURSE_NAME']
    subject = f"Reset your {course} Bookings password"
    body = (
        f"Hi {user.name},\n\n"
        f"Follow this link to choose a new password:\n\n{link}\n\n"
        f"If you did not request a reset, you can ignore this email.\n"
    )
    sent = send_email(subject, body, [user.email])
    if not sent:
        log.info("Password reset link for %s: %s", user.email, link)
    return sent
