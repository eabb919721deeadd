from typing import Any, Dict, Optional

import requests
from loguru import logger

from app.core.config import settings


class MailDeliveryError(Exception):
    pass


class MailService:
    """
    Sends transactional emails through the external mail API.

    Without a configured `mail_service_url` (local development) the message
    is written to the log instead, so links can be copied from there.
    """
    MAGIC_LINK_TEMPLATE = "magic_link"
    INVITATION_TEMPLATE = "supplier_invitation"
    REMINDER_TEMPLATE = "requirement_reminder"
    ASSIGNED_TEMPLATE = "requirement_assigned"
    OVERDUE_TEMPLATE = "requirement_overdue"
    SUBMISSION_RECEIVED_TEMPLATE = "submission_received"
    SUBMISSION_APPROVED_TEMPLATE = "submission_approved"
    SUBMISSION_REJECTED_TEMPLATE = "submission_rejected"
    REVISION_REQUESTED_TEMPLATE = "revision_requested"

    def __init__(self, base_url: str = None, api_key: str = None):
        self.base_url = (base_url if base_url is not None else settings.mail_service_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.mail_api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def send_magic_link(self, email: str, name: str, magic_link: str):
        self._send(
            recipient=email,
            subject="Your login link",
            template=self.MAGIC_LINK_TEMPLATE,
            variables={"secure_link": magic_link, "name": name},
        )

    def send_invitation(self, email: str, company_name: str, invite_link: str):
        self._send(
            recipient=email,
            subject=f"{company_name} has invited you to collaborate on compliance",
            template=self.INVITATION_TEMPLATE,
            variables={"invite_link": invite_link, "company_name": company_name},
        )

    def send_requirement_reminder(self, email: str, title: str, due_date: str, link: str):
        self._send(
            recipient=email,
            subject=f"Reminder: '{title}' is due on {due_date}",
            template=self.REMINDER_TEMPLATE,
            variables={"requirement_title": title, "due_date": due_date, "link": link},
        )

    # ==========================================================================
    # REQUIREMENT WORKFLOW
    # ==========================================================================

    def send_requirement_assigned(self, email: str, company_name: str, title: str,
                                  due_date: Optional[str], link: str):
        self._send(
            recipient=email,
            subject=f"New requirement from {company_name}: {title}",
            template=self.ASSIGNED_TEMPLATE,
            variables={
                "company_name": company_name,
                "requirement_title": title,
                "due_date": due_date or "",
                "link": link,
            },
        )

    def send_requirement_overdue(self, email: str, title: str, link: str):
        self._send(
            recipient=email,
            subject=f"Overdue: {title}",
            template=self.OVERDUE_TEMPLATE,
            variables={"requirement_title": title, "link": link},
        )

    def send_submission_received(self, email: str, supplier_name: str, title: str, link: str):
        self._send(
            recipient=email,
            subject=f"Submission received from {supplier_name}: {title}",
            template=self.SUBMISSION_RECEIVED_TEMPLATE,
            variables={"supplier_name": supplier_name, "requirement_title": title, "link": link},
        )

    def send_submission_approved(self, email: str, company_name: str, title: str,
                                 notes: Optional[str], link: str):
        self._send(
            recipient=email,
            subject=f"Approved: {title}",
            template=self.SUBMISSION_APPROVED_TEMPLATE,
            variables={
                "company_name": company_name,
                "requirement_title": title,
                "notes": notes or "",
                "link": link,
            },
        )

    def send_submission_rejected(self, email: str, company_name: str, title: str,
                                 reason: str, link: str):
        self._send(
            recipient=email,
            subject=f"Action required: {title} submission rejected",
            template=self.SUBMISSION_REJECTED_TEMPLATE,
            variables={
                "company_name": company_name,
                "requirement_title": title,
                "reason": reason,
                "link": link,
            },
        )

    def send_revision_requested(self, email: str, company_name: str, title: str,
                                reason: str, link: str):
        self._send(
            recipient=email,
            subject=f"Revision requested: {title}",
            template=self.REVISION_REQUESTED_TEMPLATE,
            variables={
                "company_name": company_name,
                "requirement_title": title,
                "reason": reason,
                "link": link,
            },
        )

    def _send(self, recipient: str, subject: str, template: str, variables: Dict[str, Any]):
        if not self.is_configured:
            logger.info(f"[MAIL] (not configured) to={recipient} subject={subject!r} variables={variables}")
            return

        payload = {
            "recipient": recipient,
            "subject": subject,
            "template": template,
            "variables": variables,
            "sender_name": settings.mail_sender_name,
        }

        logger.info(f"[MAIL] Sending '{template}' email to {recipient}")

        try:
            response = requests.post(
                f"{self.base_url}/email/template",
                json=payload,
                headers={"Authorization": self.api_key},
                timeout=settings.mail_timeout_seconds,
            )
        except requests.RequestException as e:
            raise MailDeliveryError(f"Mail API request failed: {e}") from e

        # The mail API answers 202 Accepted
        if response.status_code != 202:
            raise MailDeliveryError(
                f"Mail API returned status {response.status_code}: {response.text[:200]}")

        logger.info(f"[MAIL] Email accepted for {recipient}")
