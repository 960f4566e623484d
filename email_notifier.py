"""Email notification system for weather alerts."""

import asyncio
import html
import smtplib
import ssl
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr

from email_validator import validate_email, EmailNotValidError

from config import EmailConfig
from errors import MailerError

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30

BASE_STYLE = """
                body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
                .container { max-width: 600px; margin: 0 auto; padding: 20px; }
                .header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
                          color: white; padding: 30px; border-radius: 10px 10px 0 0; }
                .content { background: #f4f4f4; padding: 30px; border-radius: 0 0 10px 10px; }
                .footer { text-align: center; margin-top: 20px; color: #666; font-size: 12px; }
"""

class EmailNotifier:
    """Sends HTML alert, welcome and diagnostic emails over SMTP.

    smtplib is blocking, so every send runs on the notifier's own thread
    pool and the event loop only awaits the result. One instance is shared
    by the scheduler and the API.
    """

    def __init__(self, config: EmailConfig, max_workers: int = 4):
        """Initialize email notifier."""
        self.config = config
        self.from_email = config.smtp_username
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="smtp")

    def _create_smtp_connection(self):
        """Open an authenticated SMTP session (STARTTLS unless implicit TLS is configured)."""
        context = ssl.create_default_context()
        if self.config.smtp_use_ssl:
            server = smtplib.SMTP_SSL(
                self.config.smtp_host,
                self.config.smtp_port,
                timeout=SMTP_TIMEOUT_SECONDS,
                context=context
            )
        else:
            server = smtplib.SMTP(
                self.config.smtp_host,
                self.config.smtp_port,
                timeout=SMTP_TIMEOUT_SECONDS
            )

        try:
            if not self.config.smtp_use_ssl:
                server.starttls(context=context)
            server.login(self.config.smtp_username, self.config.smtp_password)
        except Exception:
            server.close()
            raise

        logger.debug("SMTP connection established successfully")
        return server

    def _build_message(self, to: str, subject: str, html_body: str) -> MIMEMultipart:
        try:
            to = validate_email(to, check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise MailerError(f"Invalid to address: {e}")

        msg = MIMEMultipart('alternative')
        msg['From'] = formataddr((self.config.sender_name, self.from_email))
        msg['To'] = to
        msg['Subject'] = subject
        msg.attach(MIMEText(html_body, 'html', 'utf-8'))
        return msg

    def _deliver(self, msg: MIMEMultipart):
        """Blocking send; runs on the executor."""
        try:
            with self._create_smtp_connection() as server:
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise MailerError(f"Failed to send email: {e}") from e

    async def _send_email(self, to: str, subject: str, html_body: str):
        msg = self._build_message(to, subject, html_body)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._deliver, msg)
        except MailerError:
            raise
        except Exception as e:
            # the executor task itself could not run or be joined
            raise MailerError(f"Email task failed: {e}") from e

        logger.info(f"Email sent to: {msg['To']}")

    def _create_alert_email_body(self, city: str, alert_message: str) -> str:
        return f"""
        <html>
        <head>
            <meta charset="UTF-8">
            <style>{BASE_STYLE}
                .alert-box {{ background: #fff3cd; border-left: 4px solid #ffc107;
                              padding: 15px; margin: 20px 0; border-radius: 5px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>🌤️ Weather Alert System</h1>
                    <p>Your personalized weather notification</p>
                </div>
                <div class="content">
                    <h2>Alert for {html.escape(city)}</h2>
                    <div class="alert-box">
                        <strong>Alert Message:</strong><br/>
                        {html.escape(alert_message)}
                    </div>
                    <p>This alert was triggered based on your weather preferences.</p>
                    <p><strong>What to do?</strong></p>
                    <ul>
                        <li>Check the current conditions</li>
                        <li>Plan accordingly for your day</li>
                        <li>Update your preferences if needed</li>
                    </ul>
                </div>
                <div class="footer">
                    <p>Weather Alert System - Powered by OpenWeatherMap</p>
                    <p>To update your preferences, visit your dashboard</p>
                </div>
            </div>
        </body>
        </html>
        """

    def _create_welcome_email_body(self, city: str) -> str:
        return f"""
        <html>
        <head>
            <meta charset="UTF-8">
            <style>{BASE_STYLE}
                .header {{ text-align: center; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>🎉 Welcome!</h1>
                    <p>You're now registered for weather alerts</p>
                </div>
                <div class="content">
                    <h2>Hi there! 👋</h2>
                    <p>Thank you for registering with Weather Alert System!</p>
                    <p><strong>Your Location:</strong> {html.escape(city)}</p>
                    <p>We'll monitor the weather in your area and send you alerts based on your preferences.</p>
                    <h3>What's Next?</h3>
                    <ul>
                        <li>Set your temperature thresholds (min/max)</li>
                        <li>Choose weather conditions to be alerted about (rain, snow, storms)</li>
                        <li>Receive automatic alerts every 2 hours</li>
                    </ul>
                </div>
                <div class="footer">
                    <p>Weather Alert System - Stay informed, stay prepared</p>
                </div>
            </div>
        </body>
        </html>
        """

    def _create_test_email_body(self, to: str, subject: str) -> str:
        return f"""
        <html>
        <body style="font-family: Arial, sans-serif; padding: 20px;">
            <h2>✅ Email Configuration Test</h2>
            <p>If you're reading this, your email configuration is working correctly!</p>
            <p><strong>Test Details:</strong></p>
            <ul>
                <li>Recipient: {html.escape(to)}</li>
                <li>Subject: {html.escape(subject)}</li>
                <li>Time: {datetime.now(timezone.utc).isoformat()}</li>
            </ul>
            <p>Your Weather Alert System is ready to send notifications.</p>
        </body>
        </html>
        """

    async def send_weather_alert(self, to: str, city: str, alert_message: str):
        """Send an alert email; returns once the SMTP server accepted it."""
        subject = f"⚠️ Weather Alert for {city}"
        await self._send_email(to, subject, self._create_alert_email_body(city, alert_message))

    async def send_welcome_email(self, to: str, city: str):
        subject = "Welcome to Weather Alert System! 🌤️"
        await self._send_email(to, subject, self._create_welcome_email_body(city))

    async def send_test_email(self, to: str, subject: str = "Weather Alert Test"):
        await self._send_email(to, subject, self._create_test_email_body(to, subject))

    def close(self):
        """Shut down the send executor, waiting for in-flight sends."""
        self._executor.shutdown(wait=True)
