# appointments/services/email_service.py
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape
from typing import Any, Callable, Dict, Optional, Tuple

from dateutil import parser

from appointments.models.settings import OrganizerInfo
from appointments.utils.exceptions import (
    NotificationError, PermanentError, TransientError, ValidationError
)
from appointments.utils.validators import InputValidator

logger = logging.getLogger(__name__)

TEMPLATE_KINDS = ('verification', 'confirmation', 'reminder', 'cancellation')


def describe_lead_time(seconds: int) -> str:
    """3600 -> '1 hour', 172800 -> '2 days'"""
    if seconds % 86400 == 0:
        days = seconds // 86400
        return f"{days} day{'s' if days != 1 else ''}"
    hours = seconds // 3600
    return f"{hours} hour{'s' if hours != 1 else ''}"


class EmailService:
    """Notification sender over SMTP.

    `send` raises TransientError for failures worth retrying (timeouts,
    dropped connections, 4xx SMTP replies) and PermanentError otherwise.
    """

    def __init__(self, config, organizer_lookup: Optional[Callable[[str], OrganizerInfo]] = None):
        # Email Configuration
        self.smtp_server = config.SMTP_SERVER
        self.smtp_port = config.SMTP_PORT
        self.smtp_username = config.SMTP_USERNAME
        self.smtp_password = config.SMTP_PASSWORD
        self.timeout = config.SMTP_TIMEOUT_SECONDS

        self.default_organizer = OrganizerInfo(
            name=config.BUSINESS_NAME,
            email=config.BUSINESS_EMAIL,
            address=config.BUSINESS_ADDRESS,
            phone=config.BUSINESS_PHONE
        )
        self.organizer_lookup = organizer_lookup

    def organizer_for(self, payload: Dict[str, Any]) -> OrganizerInfo:
        if self.organizer_lookup is not None and payload.get('user_id'):
            return self.organizer_lookup(payload['user_id'])
        return self.default_organizer

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_username and self.smtp_password)

    def send(self, contact: str, template_kind: str, payload: Dict[str, Any]) -> None:
        """Send one notification to an attendee"""
        if template_kind not in TEMPLATE_KINDS:
            raise NotificationError(f"Unknown notification template: {template_kind}")

        try:
            recipient = InputValidator.validate_email(contact)
        except ValidationError as e:
            raise PermanentError(f"Invalid attendee contact {contact!r}: {e}")

        organizer = self.organizer_for(payload)
        if not self.is_configured or not organizer.email:
            raise PermanentError("Email configuration not complete")

        subject, text_body, html_body = self.render(template_kind, payload, organizer)

        msg = MIMEMultipart('alternative')
        msg['From'] = f"{organizer.name} <{organizer.email}>"
        msg['To'] = recipient
        msg['Subject'] = subject

        msg.attach(MIMEText(text_body, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_body, 'html', 'utf-8'))

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"❌ Recipient refused for {template_kind} email: {e}")
            raise PermanentError(f"Recipient refused: {recipient}") from e
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"❌ SMTP authentication failed: {e}")
            raise PermanentError("SMTP authentication failed") from e
        except smtplib.SMTPResponseException as e:
            logger.error(f"❌ SMTP error {e.smtp_code} sending {template_kind} email: {e}")
            if 400 <= e.smtp_code < 500:
                raise TransientError(f"SMTP temporary failure {e.smtp_code}") from e
            raise PermanentError(f"SMTP failure {e.smtp_code}") from e
        except (smtplib.SMTPServerDisconnected, OSError) as e:
            logger.error(f"❌ Failed to reach SMTP server: {e}")
            raise TransientError(f"SMTP connection failed: {e}") from e

        logger.info(f"✅ {template_kind.title()} email sent successfully to {recipient}")

    def render(self, template_kind: str, payload: Dict[str, Any],
               organizer: Optional[OrganizerInfo] = None) -> Tuple[str, str, str]:
        """Subject, plain text and HTML bodies for a notification"""
        organizer = organizer or self.organizer_for(payload)
        details = self._details(payload)

        if template_kind == 'verification':
            subject = f"Confirm your appointment - {organizer.name}"
            intro = "Please confirm your appointment using the link below."
        elif template_kind == 'confirmation':
            subject = f"Appointment Confirmation - {organizer.name}"
            intro = "Your appointment is confirmed."
        elif template_kind == 'cancellation':
            subject = f"Appointment Cancelled - {organizer.name}"
            intro = "Your appointment has been cancelled."
        else:
            lead = describe_lead_time(int(payload.get('lead_seconds', 0)))
            subject = f"🔔 Appointment Reminder - {organizer.name}"
            intro = f"Your appointment is coming up in {lead}."

        return (
            subject,
            self._text(organizer, payload, details, intro),
            self._html(organizer, payload, details, intro)
        )

    def _details(self, payload: Dict[str, Any]) -> Dict[str, str]:
        start = parser.isoparse(payload['start'])
        return {
            'title': payload.get('title', ''),
            'date': start.strftime('%B %d, %Y'),
            'time': start.strftime('%I:%M %p %Z').strip(),
            'duration': f"{payload.get('duration')} minutes",
        }

    def _text(self, organizer: OrganizerInfo, payload: Dict[str, Any], details: Dict[str, str], intro: str) -> str:
        lines = [
            f"{organizer.name}",
            "",
            f"Hello {payload.get('attendee_name', '')}!",
            "",
            intro,
            "",
            f"📋 {details['title']}",
            f"📅 Date: {details['date']}",
            f"⏰ Time: {details['time']}",
            f"⏱️ Duration: {details['duration']}",
        ]
        if organizer.address:
            lines.append(f"🏢 Location: {organizer.address}")

        if payload.get('more_text'):
            lines += ["", payload['more_text']]

        if payload.get('confirm_url'):
            lines += ["", f"Confirm your appointment: {payload['confirm_url']}"]

        if payload.get('cancel_url'):
            lines += ["", f"Need to cancel? {payload['cancel_url']}"]

        if organizer.phone:
            lines += ["", f"📞 Contact us: {organizer.phone}"]

        lines += ["", "Best regards,", f"{organizer.name} Team"]
        return '\n'.join(lines)

    def _html(self, organizer: OrganizerInfo, payload: Dict[str, Any], details: Dict[str, str], intro: str) -> str:
        more_text = ''
        if payload.get('more_text'):
            more_text = f"<p>{escape(payload['more_text'])}</p>"

        actions = ''
        if payload.get('confirm_url'):
            actions = f'<p><a class="button" href="{escape(payload["confirm_url"])}">Confirm appointment</a></p>'
        if payload.get('cancel_url'):
            actions += f'<p><a class="button" href="{escape(payload["cancel_url"])}">Cancel appointment</a></p>'

        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; background: #f9f9f9; border-radius: 10px; }}
        .header {{ background: #4C1D95; color: white; padding: 20px; text-align: center; border-radius: 10px 10px 0 0; }}
        .content {{ padding: 20px; background: white; }}
        .button {{ display: inline-block; background: #4C1D95; color: white; padding: 10px 20px; border-radius: 5px; text-decoration: none; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>{escape(organizer.name)}</h1>
        </div>
        <div class="content">
            <h2>Hello {escape(payload.get('attendee_name', ''))}!</h2>
            <p><strong>{escape(intro)}</strong></p>
            <p><strong>📋</strong> {escape(details['title'])}</p>
            <p><strong>📅 Date:</strong> {details['date']}</p>
            <p><strong>⏰ Time:</strong> {details['time']}</p>
            <p><strong>⏱️ Duration:</strong> {details['duration']}</p>
            {more_text}
            {actions}
        </div>
    </div>
</body>
</html>
"""
