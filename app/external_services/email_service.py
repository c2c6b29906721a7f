import smtplib
import ssl
import logging
from email.mime.text import MIMEText
from email.utils import parseaddr
from app.core.config import settings

logger = logging.getLogger(__name__)

class EmailClient:
    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_TLS
        self.from_email = settings.EMAILS_FROM_EMAIL

    @property
    def configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    @staticmethod
    def _validate_email(email: str) -> bool:
        parsed = parseaddr(email)[1]
        return '@' in parsed and '.' in parsed.split('@')[-1]

    def send_password_reset_link(self, to_email: str, reset_link: str) -> bool:
        if not self.configured:
            logger.warning(f"SMTP is not fully configured. Reset link for {to_email}: {reset_link}")
            return False
        return self.send_email(
            to_email,
            "Reset your password",
            f"Use this one-time link to reset your password: {reset_link}",
        )

    def send_email(self, to_email: str, subject: str, body: str) -> bool:
        """
        Send a plain-text email.
        Returns True if the email was handed to the SMTP server, False otherwise.
        """
        if not to_email or not subject or not body:
            logger.error("Email parameters cannot be empty")
            return False

        if not self._validate_email(to_email):
            logger.error(f"Invalid email address: {to_email}")
            return False

        msg = MIMEText(body)
        msg['Subject'] = subject
        msg['From'] = self.from_email
        msg['To'] = to_email

        try:
            if self.smtp_port == 465:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context) as server:
                    self._login(server)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                    if self.use_tls:
                        server.starttls()
                    self._login(server)
                    server.send_message(msg)

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused: {e}")
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error occurred: {e}")
        except OSError as e:
            logger.error(f"SMTP connection failed: {e}")
        return False

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
