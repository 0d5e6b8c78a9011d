import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

import config

logger = logging.getLogger(__name__)


class EmailService:
    """Renders notification emails and delivers them over SMTP.

    With MAIL_DRIVER=log nothing is sent; the message is written to the log
    instead, which is what local development and the test suite use.
    """

    def __init__(self):
        self.env = Environment(
            loader=FileSystemLoader(str(config.TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, heading: str, name: str, paragraphs: List[str],
               details: Optional[List[Tuple[str, str]]] = None,
               link: Optional[Tuple[str, str]] = None) -> str:
        template = self.env.get_template("emails/notification.html")
        return template.render(
            app_name=config.APP_NAME,
            heading=heading,
            name=name,
            paragraphs=paragraphs,
            details=details or [],
            link=link,
        )

    def send_email(self, to_email: str, to_name: str, subject: str, html_body: str) -> bool:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((config.MAIL_FROM_NAME, config.MAIL_FROM_ADDRESS))
        message["To"] = formataddr((to_name, to_email))
        message.set_content("This message requires an HTML capable email client.")
        message.add_alternative(html_body, subtype="html")

        if config.MAIL_DRIVER == "log":
            logger.info("Email to %s: %s", to_email, subject)
            return True

        if config.MAIL_ENCRYPTION == "ssl":
            server = smtplib.SMTP_SSL(config.MAIL_HOST, config.MAIL_PORT, timeout=30)
        else:
            server = smtplib.SMTP(config.MAIL_HOST, config.MAIL_PORT, timeout=30)
        with server:
            if config.MAIL_ENCRYPTION == "tls":
                server.starttls()
            if config.MAIL_USERNAME:
                server.login(config.MAIL_USERNAME, config.MAIL_PASSWORD)
            server.send_message(message)
        logger.info("Email sent to %s: %s", to_email, subject)
        return True

    def send_verification_email(self, email: str, name: str, token: str) -> bool:
        verification_url = f"{config.BASE_URL}/verify-email?token={token}"
        body = self.render(
            "Verify your email",
            name,
            [f"Thanks for joining {config.APP_NAME}! Please confirm your email address to start writing reviews."],
            link=("Verify Email", verification_url),
        )
        return self.send_email(email, name, f"Verify your email - {config.APP_NAME}", body)

    def send_password_reset_email(self, email: str, name: str, reset_link: str) -> bool:
        body = self.render(
            "Password reset",
            name,
            [
                "We received a request to reset your password.",
                f"The link below expires in {config.RESET_TOKEN_HOURS} hour. "
                "If you did not request a reset you can ignore this email.",
            ],
            link=("Reset Password", reset_link),
        )
        return self.send_email(email, name, f"Reset your password - {config.APP_NAME}", body)

    def send_application_approval_email(self, email: str, name: str, stall_name: str,
                                        notes: str = "") -> bool:
        details = [("Stall", stall_name)]
        if notes:
            details.append(("Notes", notes))
        body = self.render(
            "Your stall application was approved",
            name,
            [f"Congratulations! {stall_name} is now live on {config.APP_NAME}."],
            details=details,
            link=("Manage your stall", f"{config.BASE_URL}/manage-stall"),
        )
        return self.send_email(email, name, f"Application Approved - {config.APP_NAME}", body)

    def send_application_decline_email(self, email: str, name: str, stall_name: str,
                                       notes: str = "") -> bool:
        details = [("Stall", stall_name)]
        if notes:
            details.append(("Reason", notes))
        body = self.render(
            "Your stall application was declined",
            name,
            ["Unfortunately we could not approve your stall application.",
             "You are welcome to submit a new application with updated documents."],
            details=details,
        )
        return self.send_email(email, name, f"Application Update - {config.APP_NAME}", body)

    def send_review_removed_email(self, email: str, name: str, stall_name: str,
                                  rating: int, reason: str) -> bool:
        body = self.render(
            "Review moderation notice",
            name,
            [f"Your review for {stall_name} has been removed by our moderation team.",
             "If you believe this was a mistake, please contact support@buzzarfeed.com."],
            details=[("Stall", stall_name), ("Your Rating", f"{rating}/5 stars"),
                     ("Reason for Removal", reason)],
        )
        return self.send_email(email, name, f"Your Review Has Been Removed - {config.APP_NAME}", body)

    def send_request_decision_email(self, email: str, name: str, kind: str, stall_name: str,
                                    approved: bool, notes: str = "") -> bool:
        decision = "approved" if approved else "rejected"
        details = [("Stall", stall_name), ("Decision", decision.title())]
        if notes:
            details.append(("Notes", notes))
        body = self.render(
            f"Your {kind} request was {decision}",
            name,
            [f"An administrator has reviewed your {kind} request for {stall_name}."],
            details=details,
        )
        return self.send_email(email, name, f"{kind.title()} Request {decision.title()} - {config.APP_NAME}", body)


email_service = EmailService()


def notify(send, *args, **kwargs) -> bool:
    """Deliver a notification without letting mail problems fail the caller"""
    try:
        return send(*args, **kwargs)
    except Exception:
        logger.exception("Failed to send notification email")
        return False
