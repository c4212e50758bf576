"""
Alert email module for Contract Leads.

Renders and sends the two alert emails:
- Saved-search alerts: contracts listed in the order they were matched
- Profile alerts: contracts listed by match score with the match reasons

Supports both SMTP and SendGrid for email delivery.
"""

import html
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import sendgrid
from sendgrid.helpers.mail import Email, Mail, To

from .config import AppConfig, EmailConfig
from .db import Database
from .errors import NotificationError
from .match_scoring import ContractMatcher, MatchResult
from .models import ContractLead

logger = logging.getLogger(__name__)


# =============================================================================
# EMAIL TEMPLATES
# =============================================================================

SEARCH_ALERT_SUBJECT = '{count} new contract{plural} match "{search_name}"'
PROFILE_ALERT_SUBJECT = "{count} new contract{plural} match your profile"

CELL = "padding: 12px; border-bottom: 1px solid #eee;"
HEADER_CELL = "padding: 12px; text-align: left;"

SEARCH_ALERT_ROW = """
<tr>
  <td style="{cell}"><strong>{title}</strong><br/><span style="color: #666;">{agency}</span></td>
  <td style="{cell}">{deadline}</td>
  <td style="{cell}">{value}</td>
  <td style="{cell}">{link}</td>
</tr>"""

SEARCH_ALERT_HTML = """
<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>New Contract Matches</h2>
  <p>Your saved search "<strong>{search_name}</strong>" has {count} new matching contract{plural}.</p>
  <table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
    <thead>
      <tr style="background: #f5f5f5;">
        <th style="{header_cell}">Contract</th>
        <th style="{header_cell}">Deadline</th>
        <th style="{header_cell}">Est. Value</th>
        <th style="{header_cell}">Link</th>
      </tr>
    </thead>
    <tbody>{rows}
    </tbody>
  </table>
  <p style="margin-top: 20px;">
    <a href="{base_url}/search" style="background: #0070f3; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px;">View All Contracts</a>
  </p>
  <p style="color: #999; font-size: 12px; margin-top: 30px;">
    You received this email because you have alerts enabled for this saved search.
    <a href="{base_url}/saved-searches">Manage your alerts</a>
  </p>
</div>
"""

PROFILE_ALERT_ROW = """
<tr>
  <td style="{cell}">
    <strong>{title}</strong><br/>
    <span style="color: #666;">{agency}</span><br/>
    <span style="font-size: 12px; color: #888;">{reasons}</span>
  </td>
  <td style="{cell} text-align: center;">
    <span style="font-size: 20px; font-weight: bold; color: #0070f3;">{score}</span>
    <span style="font-size: 11px; color: #888;">/100</span>
  </td>
  <td style="{cell}">{deadline}</td>
  <td style="{cell}">{value}</td>
  <td style="{cell}">{link}</td>
</tr>"""

PROFILE_ALERT_HTML = """
<div style="font-family: sans-serif; max-width: 700px; margin: 0 auto;">
  <h2 style="color: #333;">New Contracts Match Your Profile</h2>
  <p>Hi {user_name},</p>
  <p>We found <strong>{count} new contract{plural}</strong> that match your company profile for <strong>{company_name}</strong>.</p>
  <table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
    <thead>
      <tr style="background: #f5f5f5;">
        <th style="{header_cell}">Contract</th>
        <th style="padding: 12px; text-align: center; width: 80px;">Match</th>
        <th style="{header_cell}">Deadline</th>
        <th style="{header_cell}">Est. Value</th>
        <th style="{header_cell}">Link</th>
      </tr>
    </thead>
    <tbody>{rows}
    </tbody>
  </table>
  <p style="margin-top: 20px;">
    <a href="{base_url}/dashboard" style="background: #0070f3; color: white; padding: 12px 24px; text-decoration: none; border-radius: 5px; display: inline-block;">View All Matches</a>
  </p>
  <p style="color: #999; font-size: 12px; margin-top: 30px;">
    You're receiving this because you have profile alerts enabled for "{company_name}".<br/>
    <a href="{base_url}/profile">Manage your alert settings</a>
  </p>
</div>
"""


# =============================================================================
# RENDERING
# =============================================================================

def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def format_deadline(contract: ContractLead) -> str:
    deadline = contract.response_deadline
    if not deadline:
        return "No deadline"
    return f"{deadline.month}/{deadline.day}/{deadline.year}"


def format_value(contract: ContractLead, missing: str) -> str:
    value = contract.contract_value
    if not value:
        return missing
    return f"${value:,.0f}"


def _link(contract: ContractLead) -> str:
    if not contract.source_url:
        return "-"
    return f'<a href="{html.escape(contract.source_url)}" style="color: #0070f3;">View</a>'


def render_search_alert(
    search_name: str,
    contracts: list[ContractLead],
    base_url: str = "",
) -> tuple[str, str]:
    """
    Render the saved-search alert email.

    Args:
        search_name: Name of the saved search
        contracts: Matched contracts, in display order
        base_url: Web app URL for the footer links

    Returns:
        Tuple of (subject, html)
    """
    count = len(contracts)
    rows = "".join(
        SEARCH_ALERT_ROW.format(
            cell=CELL,
            title=html.escape(c.title),
            agency=html.escape(c.agency),
            deadline=format_deadline(c),
            value=format_value(c, "Not specified"),
            link=_link(c),
        )
        for c in contracts
    )
    subject = SEARCH_ALERT_SUBJECT.format(count=count, plural=_plural(count), search_name=search_name)
    body = SEARCH_ALERT_HTML.format(
        search_name=html.escape(search_name),
        count=count,
        plural=_plural(count),
        header_cell=HEADER_CELL,
        rows=rows,
        base_url=base_url,
    )
    return subject, body


def render_profile_alert(
    company_name: str,
    user_name: Optional[str],
    matches: list[MatchResult],
    base_url: str = "",
) -> tuple[str, str]:
    """
    Render the profile match alert email.

    Matches are listed highest score first; ties keep their given order.

    Returns:
        Tuple of (subject, html)
    """
    ordered = sorted(matches, key=lambda m: m.match_score, reverse=True)
    count = len(ordered)
    rows = "".join(
        PROFILE_ALERT_ROW.format(
            cell=CELL,
            title=html.escape(m.contract.title),
            agency=html.escape(m.contract.agency),
            reasons=html.escape(" • ".join(m.match_reasons)),
            score=m.match_score,
            deadline=format_deadline(m.contract),
            value=format_value(m.contract, "TBD"),
            link=_link(m.contract),
        )
        for m in ordered
    )
    subject = PROFILE_ALERT_SUBJECT.format(count=count, plural=_plural(count))
    body = PROFILE_ALERT_HTML.format(
        user_name=html.escape(user_name or "there"),
        company_name=html.escape(company_name),
        count=count,
        plural=_plural(count),
        header_cell=HEADER_CELL,
        rows=rows,
        base_url=base_url,
    )
    return subject, body


# =============================================================================
# EMAIL SENDER
# =============================================================================

class EmailSender:
    """
    Outbound email transport.

    Usage:
        sender = EmailSender(settings.email)
        sender.send(settings.email.from_address, "user@example.com", subject, html)
    """

    def __init__(self, config: EmailConfig):
        self.config = config

    def send(self, from_addr: str, to: str, subject: str, html_body: str) -> None:
        """
        Send one HTML email.

        Raises:
            NotificationError: If the provider rejects or cannot be reached
        """
        try:
            if self.config.provider == "sendgrid":
                self._send_via_sendgrid(to, subject, html_body)
            else:
                self._send_via_smtp(from_addr, to, subject, html_body)
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(f"Failed to send email to {to}: {e}") from e
        logger.info(f"Sent email to {to}: {subject}")

    def _send_via_smtp(self, from_addr: str, to: str, subject: str, html_body: str) -> None:
        """Send email via SMTP."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
            server.starttls()
            if self.config.smtp_user and self.config.smtp_password:
                server.login(self.config.smtp_user, self.config.smtp_password)
            server.send_message(msg)

    def _send_via_sendgrid(self, to: str, subject: str, html_body: str) -> None:
        """Send email via SendGrid API."""
        if not self.config.sendgrid_api_key:
            raise NotificationError("SENDGRID_API_KEY is not set")

        client = sendgrid.SendGridAPIClient(api_key=self.config.sendgrid_api_key)
        message = Mail(
            from_email=Email(self.config.from_email, self.config.from_name),
            to_emails=To(to),
            subject=subject,
            html_content=html_body,
        )
        response = client.send(message)

        if response.status_code not in (200, 201, 202):
            raise NotificationError(f"SendGrid error: {response.status_code}")


# =============================================================================
# DISPATCHER
# =============================================================================

def _in_given_order(contracts: list[ContractLead], ids: list[str]) -> list[ContractLead]:
    by_id = {c.id: c for c in contracts}
    return [by_id[i] for i in ids if i in by_id]


class NotificationDispatcher:
    """
    Loads alert context and sends one email per dispatch.

    A missing recipient address is logged and reported as not sent; it is
    not an error.
    """

    def __init__(
        self,
        db: Database,
        sender: EmailSender,
        email_config: EmailConfig,
        app_config: Optional[AppConfig] = None,
        matcher: Optional[ContractMatcher] = None,
    ):
        self.db = db
        self.sender = sender
        self.email_config = email_config
        self.app_config = app_config or AppConfig()
        self.matcher = matcher or ContractMatcher()

    def send_search_alert(self, alert_id: str, contract_ids: list[str]) -> dict:
        """Send the saved-search alert email for the matched contract IDs."""
        alert = self.db.get_alert(alert_id)
        if alert is None or alert.saved_search is None:
            logger.error(f"Alert {alert_id} not found")
            return {"success": False, "error": "Alert not found"}

        user = self.db.get_user(alert.user_id)
        if user is None or not user.email:
            logger.warning(f"User {alert.user_id} has no email address")
            return {"success": True, "sent": False, "reason": "No email address"}

        contracts = _in_given_order(self.db.get_contracts_by_ids(contract_ids), contract_ids)
        if not contracts:
            return {"success": True, "sent": False, "reason": "No contracts"}

        subject, body = render_search_alert(alert.saved_search.name, contracts, self.app_config.app_base_url)
        self.sender.send(self.email_config.from_address, user.email, subject, body)
        logger.info(f"Alert email sent for {alert_id} ({len(contracts)} contracts)")
        return {"success": True, "sent": True, "alert_id": alert_id, "match_count": len(contracts)}

    def send_profile_alert(self, profile_id: str, contract_ids: list[str]) -> dict:
        """Send the profile match email; contracts are re-scored for display."""
        profile = self.db.get_profile(profile_id)
        if profile is None:
            logger.error(f"Profile {profile_id} not found")
            return {"success": False, "error": "Profile not found"}

        user = self.db.get_user(profile.user_id)
        if user is None or not user.email:
            logger.warning(f"User {profile.user_id} has no email address")
            return {"success": True, "sent": False, "reason": "No email address"}

        contracts = _in_given_order(self.db.get_contracts_by_ids(contract_ids), contract_ids)
        matches = [self.matcher.score(c, profile) for c in contracts]
        if not matches:
            return {"success": True, "sent": False, "reason": "No contracts"}

        subject, body = render_profile_alert(
            profile.company_name, user.name, matches, self.app_config.app_base_url
        )
        self.sender.send(self.email_config.from_address, user.email, subject, body)
        logger.info(f"Profile alert sent for {profile_id} ({len(matches)} contracts)")
        return {"success": True, "sent": True, "profile_id": profile_id, "match_count": len(matches)}
