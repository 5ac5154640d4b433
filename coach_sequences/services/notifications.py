import os
import logging
from typing import List, Optional, Dict, Any
from datetime import datetime
import resend
from flask import current_app

logger = logging.getLogger(__name__)

class NotificationService:
    """Service for alerting sequence owners by email via Resend."""

    def __init__(self):
        self.resend_api_key = self._get_setting('RESEND_API_KEY')
        self.from_email = self._get_setting('NOTIFY_EMAIL_FROM') or 'automations@coach-sequences.app'
        self.to_emails = [e.strip() for e in (self._get_setting('NOTIFY_EMAIL_TO') or '').split(',') if e.strip()]

        enabled = self._get_setting('NOTIFICATIONS_ENABLED')
        if isinstance(enabled, str):
            enabled = enabled.lower() == 'true'
        self.enabled = bool(enabled)

        if self.resend_api_key:
            resend.api_key = self.resend_api_key
            logger.info("Resend API key configured")
        else:
            logger.warning("No Resend API key found - notifications will be disabled")
            self.enabled = False

    def _get_setting(self, name):
        """Get a setting from Flask config, or the environment outside an app context."""
        try:
            if current_app:
                return current_app.config.get(name)
        except RuntimeError:
            # No application context
            pass
        return os.environ.get(name)

    def _recipients(self, sequence) -> List[str]:
        recipients = []
        owner_email = getattr(sequence, 'owner_email', None)
        if owner_email:
            recipients.append(owner_email)
        for email in self.to_emails:
            if email not in recipients:
                recipients.append(email)
        return recipients

    def _send(self, subject: str, html_content: str, recipients: List[str]) -> bool:
        success_count = 0
        for email in recipients:
            try:
                response = resend.Emails.send({
                    "from": self.from_email,
                    "to": email,
                    "subject": subject,
                    "html": html_content
                })
                logger.info(f"Notification '{subject}' sent to {email}: {response.get('id')}")
                success_count += 1
            except Exception as e:
                logger.error(f"Failed to send notification to {email}: {str(e)}")
        return success_count > 0

    def send_scheduling_error_notification(self, sequence, enrollment, error_message: str) -> bool:
        """Notify the owner that a step's send window is misconfigured and the enrollment is paused."""
        if not self.enabled:
            logger.info("Notifications disabled - skipping scheduling error notification")
            return False

        subject = f"⚠️ Sequence paused: {sequence.name}"
        html_content = self._create_notification_template(
            title="Sequence Step Misconfigured",
            color="#dc3545",
            details={
                'Sequence': sequence.name,
                'Trigger': sequence.trigger_event,
                'Client': enrollment.client_id,
                'Step': enrollment.current_step_order,
                'Error': error_message,
            },
            body=("The enrollment is paused on this step until its send window is fixed. "
                  "The send window end must be after its start."),
            footer=f"Sequence ID: {sequence.id} | Enrollment ID: {enrollment.id}"
        )
        return self._send(subject, html_content, self._recipients(sequence))

    def send_enrollment_cancelled_notification(self, sequence, enrollment, reason: str) -> bool:
        """Notify the owner that an enrollment was cancelled after repeated failures."""
        if not self.enabled:
            logger.info("Notifications disabled - skipping cancellation notification")
            return False

        subject = f"🛑 Enrollment cancelled: {sequence.name}"
        html_content = self._create_notification_template(
            title="Enrollment Cancelled",
            color="#6c757d",
            details={
                'Sequence': sequence.name,
                'Client': enrollment.client_id,
                'Step': enrollment.current_step_order,
                'Reason': reason,
            },
            body="This client will not receive further messages from this sequence unless re-enrolled.",
            footer=f"Sequence ID: {sequence.id} | Enrollment ID: {enrollment.id}"
        )
        return self._send(subject, html_content, self._recipients(sequence))

    def _create_notification_template(self, title: str, color: str, details: Dict[str, Any],
                                      body: str, footer: Optional[str] = None) -> str:
        """Create HTML template for owner notifications."""
        details_html = "<br>".join(f"<strong>{label}:</strong> {value}" for label, value in details.items())
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: {color}; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
                .content {{ background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; }}
                .highlight {{ background: #f1f1f1; padding: 15px; border-left: 4px solid {color}; margin: 15px 0; }}
                .footer {{ margin-top: 20px; padding-top: 20px; border-top: 1px solid #ddd; font-size: 12px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>{title}</h1>
                    <p>Time: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}</p>
                </div>

                <div class="content">
                    <div class="highlight">
                        {details_html}
                    </div>
                    <p>{body}</p>
                </div>

                <div class="footer">
                    <p>This notification was sent by the coach automation sequence engine</p>
                    {f'<p>{footer}</p>' if footer else ''}
                </div>
            </div>
        </body>
        </html>
        """

# Global notification service instance
_notification_service = None

def get_notification_service() -> NotificationService:
    """Get the global notification service instance."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
