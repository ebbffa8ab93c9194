"""Email notifications sent when support cases open and close."""

from __future__ import annotations

import html
import logging
import string
from dataclasses import dataclass
from typing import Any, List, Protocol, Sequence

import httpx

logger = logging.getLogger(__name__)

UNKNOWN_PROPERTY = "Unknown Property"

NEW_CASE_SUBJECT = "New Support Case | {propertyName}"
CLOSED_CASE_SUBJECT = "Support Case Closed | {propertyName}"

NEW_CASE_BODY = """\
<!DOCTYPE html>
<html lang="en">
  <body style="font-family: Arial, sans-serif; background-color: #f8f8f8; color: #222222;">
    <div style="max-width: 700px; margin: 30px auto; padding: 20px; background: #ffffff; border-radius: 8px;">
      <h1 style="background: #17293b; color: #ffffff; text-align: center; padding: 20px;">New Support Case</h1>
      <p>A new support case was opened for <strong>{propertyName}</strong>.</p>
      <table>
        <tr><th align="left">Case</th><td>{caseId}</td></tr>
        <tr><th align="left">Opened by</th><td>{openedBy}</td></tr>
        <tr><th align="left">Customer</th><td>{displayName1}</td></tr>
        <tr><th align="left">Inquiry</th><td>{inquiryAbout}</td></tr>
        <tr><th align="left">Details</th><td>{inquiryDetails}</td></tr>
        <tr><th align="left">Created</th><td>{createdAt}</td></tr>
      </table>
    </div>
  </body>
</html>
"""

CLOSED_CASE_BODY = """\
<!DOCTYPE html>
<html lang="en">
  <body style="font-family: Arial, sans-serif; background-color: #f8f8f8; color: #222222;">
    <div style="max-width: 700px; margin: 30px auto; padding: 20px; background: #ffffff; border-radius: 8px;">
      <h1 style="background: #17293b; color: #ffffff; text-align: center; padding: 20px;">Support Case Closed</h1>
      <p>The support case for <strong>{propertyName}</strong> was closed by {closedBy}.</p>
      <table>
        <tr><th align="left">Case</th><td>{caseId}</td></tr>
        <tr><th align="left">Customer</th><td>{displayName1}</td></tr>
        <tr><th align="left">Inquiry</th><td>{inquiryAbout}</td></tr>
        <tr><th align="left">Rating</th><td>{rating}</td></tr>
      </table>
    </div>
  </body>
</html>
"""


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return "N/A"


def _format(template: str, values: dict[str, Any], *, escape: bool) -> str:
    cleaned = {
        key: html.escape(str(value)) if escape else str(value)
        for key, value in values.items()
        if value not in (None, "")
    }
    return string.Formatter().vformat(template, (), _SafeDict(cleaned))


def _template_values(case: dict[str, Any], property_name: str | None) -> dict[str, Any]:
    conversation = case.get("conversation") or []
    first = conversation[0] if conversation else {}
    return {
        "caseId": case.get("id"),
        "propertyName": property_name or UNKNOWN_PROPERTY,
        "openedBy": case.get("openedBy"),
        "displayName1": case.get("displayName1"),
        "inquiryAbout": first.get("inquiryAbout"),
        "inquiryDetails": first.get("inquiryDetails"),
        "createdAt": case.get("createdAt"),
        "closedBy": case.get("closedBy"),
        "rating": case.get("rating"),
    }


@dataclass(slots=True)
class RenderedEmail:
    subject: str
    html: str


def render_case_opened(case: dict[str, Any], property_name: str | None) -> RenderedEmail:
    values = _template_values(case, property_name)
    return RenderedEmail(
        subject=_format(NEW_CASE_SUBJECT, values, escape=False),
        html=_format(NEW_CASE_BODY, values, escape=True),
    )


def render_case_closed(
    case: dict[str, Any], property_name: str | None, closed_by: str | None
) -> RenderedEmail:
    values = _template_values(case, property_name)
    if closed_by:
        values["closedBy"] = closed_by
    return RenderedEmail(
        subject=_format(CLOSED_CASE_SUBJECT, values, escape=False),
        html=_format(CLOSED_CASE_BODY, values, escape=True),
    )


class CaseNotifier(Protocol):
    async def case_opened(self, case: dict[str, Any], property_name: str | None) -> None: ...

    async def case_closed(
        self, case: dict[str, Any], property_name: str | None, closed_by: str | None
    ) -> None: ...


@dataclass(slots=True)
class SentEmail:
    recipients: list[str]
    subject: str
    html: str


class InMemoryNotifier:
    """Records rendered emails instead of sending them; used without a mail provider and in tests."""

    def __init__(self, recipients: Sequence[str] = ()) -> None:
        self.recipients = list(recipients)
        self.sent: List[SentEmail] = []

    async def _record(self, email: RenderedEmail) -> None:
        self.sent.append(SentEmail(recipients=self.recipients, subject=email.subject, html=email.html))
        logger.info("Email not sent, no mail provider configured: %s", email.subject)

    async def case_opened(self, case: dict[str, Any], property_name: str | None) -> None:
        await self._record(render_case_opened(case, property_name))

    async def case_closed(
        self, case: dict[str, Any], property_name: str | None, closed_by: str | None
    ) -> None:
        await self._record(render_case_closed(case, property_name, closed_by))


class SendGridNotifier:
    """Sends support case emails through the SendGrid v3 mail API."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_key: str,
        sender: str,
        recipients: Sequence[str],
        base_url: str = "https://api.sendgrid.com",
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._sender = sender
        self._recipients = list(recipients)
        self._url = f"{base_url.rstrip('/')}/v3/mail/send"

    async def case_opened(self, case: dict[str, Any], property_name: str | None) -> None:
        await self._send(render_case_opened(case, property_name))

    async def case_closed(
        self, case: dict[str, Any], property_name: str | None, closed_by: str | None
    ) -> None:
        await self._send(render_case_closed(case, property_name, closed_by))

    async def _send(self, email: RenderedEmail) -> None:
        if not self._recipients:
            logger.warning("No notification recipients configured; skipping %r", email.subject)
            return
        body = {
            "personalizations": [{"to": [{"email": address} for address in self._recipients]}],
            "from": {"email": self._sender},
            "subject": email.subject,
            "content": [{"type": "text/html", "value": email.html}],
        }
        response = await self._client.post(
            self._url,
            json=body,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        response.raise_for_status()
        logger.info("Sent email %r to %d recipient(s)", email.subject, len(self._recipients))
