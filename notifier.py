"""Outbound messages for budget alerts and subscription renewal reminders.

Delivery is best-effort: a failed send is logged and reported as ``False``,
it never propagates to the operation that triggered it.
"""
import logging
import smtplib
from email.message import EmailMessage

from config import Config

logger = logging.getLogger(__name__)


def budget_alert_content(user, budget, kind, percentage):
    period = budget.period.lower()
    limit = f"{budget.total_limit:.2f}"
    used = "n/a" if percentage is None else f"{percentage:.1f}%"
    if kind == "critical":
        subject = "Budget Limit Reached!"
        line = f"You have reached {used} of your {period} budget limit of {limit}."
        advice = "Consider reviewing your expenses to avoid overspending."
    else:
        subject = "Budget Warning Alert"
        line = f"You have used {used} of your {period} budget limit of {limit}."
        advice = "Keep track of your spending to stay within budget."
    remaining = budget.total_limit - budget.current_spending
    text = (
        f"Hi {user.name},\n\n{line}\n\n"
        f"Budget Limit: {limit}\n"
        f"Current Spending: {budget.current_spending:.2f}\n"
        f"Remaining: {remaining:.2f}\n\n"
        f"{advice}\n"
    )
    html = (
        f"<h1>{subject}</h1><p>Hi {user.name},</p><p>{line}</p>"
        f"<ul><li>Budget Limit: <strong>{limit}</strong></li>"
        f"<li>Current Spending: <strong>{budget.current_spending:.2f}</strong></li>"
        f"<li>Remaining: <strong>{remaining:.2f}</strong></li></ul>"
        f"<p>{advice}</p>"
    )
    return subject, text, html


def reminder_content(user, subscription, days):
    plural = "" if days == 1 else "s"
    subject = f"Subscription Renewal Reminder: {subscription.service_name}"
    line = (
        f"Your subscription to {subscription.service_name} will renew in "
        f"{days} day{plural}."
    )
    details = [
        ("Cost", f"{subscription.cost:.2f}"),
        ("Billing Cycle", subscription.billing_cycle),
        ("Next Billing Date", subscription.next_billing_date.date().isoformat()),
        ("Category", subscription.category),
    ]
    text = f"Hi {user.name},\n\n{line}\n\n" + "".join(
        f"{label}: {value}\n" for label, value in details
    )
    html = (
        f"<h1>Subscription Renewal Reminder</h1><p>Hi {user.name},</p><p>{line}</p><ul>"
        + "".join(f"<li>{label}: <strong>{value}</strong></li>" for label, value in details)
        + "</ul>"
    )
    return subject, text, html


class Notifier:
    def deliver(self, user, subject, text, html):
        raise NotImplementedError

    def _send(self, user, content):
        subject, text, html = content
        if user is None:
            logger.warning("Dropping '%s': recipient unknown", subject)
            return False
        try:
            self.deliver(user, subject, text, html)
        except Exception:
            logger.exception("Failed to deliver '%s' to %s", subject, user.username)
            return False
        return True

    def budget_alert(self, user, budget, kind, percentage):
        return self._send(user, budget_alert_content(user, budget, kind, percentage))

    def subscription_reminder(self, user, subscription, days):
        return self._send(user, reminder_content(user, subscription, days))


class LogNotifier(Notifier):
    def deliver(self, user, subject, text, html):
        logger.info("Notification for %s: %s", user.username, subject)


class EmailNotifier(Notifier):
    def __init__(self, host, port, username=None, password=None, use_tls=True,
                 sender=Config.EMAIL_FROM, timeout=Config.NOTIFY_TIMEOUT_SECONDS):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def deliver(self, user, subject, text, html):
        if not user.email_notifications:
            logger.debug("Email disabled for %s, skipping '%s'", user.username, subject)
            return
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = user.email
        message.set_content(text)
        message.add_alternative(html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
        logger.info("Sent '%s' to %s", subject, user.email)


def get_notifier():
    if Config.SMTP_HOST:
        return EmailNotifier(
            Config.SMTP_HOST,
            Config.SMTP_PORT,
            username=Config.SMTP_USER,
            password=Config.SMTP_PASSWORD,
            use_tls=Config.SMTP_USE_TLS,
        )
    return LogNotifier()
