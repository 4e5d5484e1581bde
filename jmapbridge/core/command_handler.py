"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), delegates the work
to the mail service and renders the results through the UserInterface.
Engine errors are shown as sanitized messages; credentials never appear.
"""

import logging
from typing import Any, Dict, List

from jmapbridge.core.request_engine import RequestEngine
from jmapbridge.core.services.mail_service import MailService
from jmapbridge.domain.errors import JmapBridgeError
from jmapbridge.domain.interfaces.user_interface import UserInterface
from jmapbridge.domain.models.session import CredentialContext

logger = logging.getLogger(__name__)


def _sender(email: Dict[str, Any]) -> str:
    senders: List[Dict[str, Any]] = email.get("from") or []
    if not senders:
        return ""
    first = senders[0]
    return first.get("name") or first.get("email") or ""


def _email_rows(emails: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "received": email.get("receivedAt"),
            "from": _sender(email),
            "subject": email.get("subject"),
            "unread": "$seen" not in (email.get("keywords") or {}),
            "id": email.get("id"),
        }
        for email in emails
    ]


EMAIL_COLUMNS = ["received", "from", "subject", "unread", "id"]


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        engine: RequestEngine,
        mail_service: MailService,
        credential: CredentialContext,
        ui: UserInterface,
    ):
        """Initializes the CommandHandler with required services."""
        self.engine = engine
        self.mail_service = mail_service
        self.credential = credential
        self.ui = ui

    def _report(self, action: str, error: Exception) -> None:
        if isinstance(error, JmapBridgeError):
            logger.error(f"{action} failed: {type(error).__name__}: {error}")
        else:
            logger.error(f"{action} failed: {error}", exc_info=True)
        self.ui.display_error(f"{action} failed: {error}")

    async def handle_session(self) -> bool:
        """Shows the discovered session for the configured credential."""
        logger.info("Handling 'session' command.")
        try:
            session = await self.engine.get_session(self.credential)
        except (JmapBridgeError, ValueError) as e:
            self._report("Session discovery", e)
            return False
        lines = [
            f"Account: {session.account_id}",
            f"Username: {session.username or '-'}",
            f"API URL: {session.api_endpoint}",
            "Capabilities:",
        ]
        lines.extend(f"  {uri}" for uri in sorted(session.capabilities))
        self.ui.display_output("\n".join(lines), title="Session")
        return True

    async def handle_availability(self) -> bool:
        logger.info("Handling 'availability' command.")
        try:
            flags = await self.mail_service.check_function_availability()
        except (JmapBridgeError, ValueError) as e:
            self._report("Availability check", e)
            return False
        self.ui.display_table(
            "Available features",
            ["feature", "available"],
            [{"feature": name, "available": available} for name, available in flags.items()],
        )
        return True

    async def handle_mailboxes(self) -> bool:
        logger.info("Handling 'mailboxes' command.")
        try:
            mailboxes = await self.mail_service.list_mailboxes()
        except (JmapBridgeError, ValueError) as e:
            self._report("Listing mailboxes", e)
            return False
        self.ui.display_table(
            "Mailboxes",
            ["name", "role", "totalEmails", "unreadEmails", "id"],
            sorted(mailboxes, key=lambda m: (m.get("sortOrder") or 0, m.get("name") or "")),
        )
        return True

    async def handle_recent(self, limit: int, mailbox: str) -> bool:
        logger.info(f"Handling 'recent' command: limit={limit}, mailbox={mailbox}")
        try:
            emails = await self.mail_service.get_recent_emails(limit=limit, mailbox_name=mailbox)
        except (JmapBridgeError, ValueError) as e:
            self._report("Fetching recent emails", e)
            return False
        self.ui.display_table(f"Recent emails in {mailbox}", EMAIL_COLUMNS, _email_rows(emails))
        return True

    async def handle_search(self, query: str, limit: int) -> bool:
        logger.info(f"Handling 'search' command: limit={limit}")
        try:
            emails = await self.mail_service.search_emails(query, limit=limit)
        except (JmapBridgeError, ValueError) as e:
            self._report("Search", e)
            return False
        self.ui.display_table(f"Search results for '{query}'", EMAIL_COLUMNS, _email_rows(emails))
        return True
