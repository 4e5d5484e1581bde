"""Core Service: Mail operations on top of the request execution engine.

Each public method validates its arguments, composes one or two batches of
JMAP method calls and returns plain dicts/lists taken from the responses.
Per-operation failures surface as the typed engine exceptions via unwrap().
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from jmapbridge.core.request_engine import RequestEngine
from jmapbridge.domain.errors import RequestError
from jmapbridge.domain.models.batch import LogicalOperation, operation, ref
from jmapbridge.domain.models.common import (
    CALENDARS_CAPABILITY,
    CONTACTS_CAPABILITY,
    MAIL_CAPABILITY,
    SUBMISSION_CAPABILITY,
)
from jmapbridge.domain.models.session import CredentialContext

logger = logging.getLogger(__name__)

EMAIL_SUMMARY_PROPERTIES = [
    "id", "threadId", "mailboxIds", "keywords", "subject", "from", "to",
    "receivedAt", "preview", "hasAttachment",
]
EMAIL_FULL_PROPERTIES = [
    "id", "threadId", "mailboxIds", "keywords", "subject", "from", "to", "cc",
    "bcc", "replyTo", "receivedAt", "sentAt", "preview", "hasAttachment",
    "textBody", "htmlBody", "bodyValues", "attachments",
]
MAILBOX_PROPERTIES = [
    "id", "name", "role", "parentId", "sortOrder",
    "totalEmails", "unreadEmails", "totalThreads", "unreadThreads",
]
NEWEST_FIRST = [{"property": "receivedAt", "isAscending": False}]
MAX_RECENT_EMAILS = 50


def _require(value: Any, name: str) -> None:
    if not value:
        raise ValueError(f"{name} is required")


def _require_ids(values: Optional[Sequence[str]], name: str) -> List[str]:
    if isinstance(values, str) or not values:
        raise ValueError(f"{name} must be a non-empty list")
    ids = [str(v) for v in values]
    if not all(ids):
        raise ValueError(f"{name} must not contain empty ids")
    return ids


def _require_limit(limit: int) -> int:
    if limit < 1:
        raise ValueError("limit must be a positive integer")
    return limit


def _pointer_token(value: str) -> str:
    """Escapes a map key for use in a JSON-pointer patch path."""
    return value.replace("~", "~0").replace("/", "~1")


def _addresses(emails: Optional[Sequence[str]]) -> List[Dict[str, str]]:
    return [{"email": address} for address in emails or []]


def check_set_response(payload: Mapping[str, Any], what: str) -> None:
    """Raises RequestError for the first notCreated/notUpdated/notDestroyed entry."""
    for key in ("notCreated", "notUpdated", "notDestroyed"):
        problems = payload.get(key) or {}
        if problems:
            item_id, error = next(iter(problems.items()))
            error = error or {}
            error_type = error.get("type", "unknown")
            description = error.get("description") or error_type
            raise RequestError(f"Failed to {what} ({item_id}): {description}", error_type=error_type, label=item_id)


class MailService:
    """Mail, mailbox and identity operations for one credential context."""

    def __init__(self, engine: RequestEngine, credential: CredentialContext):
        self.engine = engine
        self.credential = credential

    async def _account_id(self) -> str:
        session = await self.engine.get_session(self.credential)
        return session.account_id

    async def _call(self, operations: Sequence[LogicalOperation]) -> List[Mapping[str, Any]]:
        results = await self.engine.execute(operations, self.credential)
        return [result.unwrap() for result in results]

    # --- Mailboxes ---

    async def list_mailboxes(self) -> List[Dict[str, Any]]:
        account_id = await self._account_id()
        (mailboxes,) = await self._call([
            operation("Mailbox/get", {"accountId": account_id, "ids": None}, "mailboxes"),
        ])
        return list(mailboxes.get("list", []))

    async def _mailbox_by_role(self, account_id: str, role: str) -> Optional[Dict[str, Any]]:
        (found,) = await self._call([
            operation("Mailbox/get", {"accountId": account_id, "ids": None,
                                      "properties": ["id", "name", "role"]}, "mailboxes"),
        ])
        role = role.lower()
        mailboxes = found.get("list", [])
        for mailbox in mailboxes:
            if (mailbox.get("role") or "").lower() == role:
                return mailbox
        for mailbox in mailboxes:
            if (mailbox.get("name") or "").lower() == role:
                return mailbox
        return None

    async def _require_mailbox_by_role(self, account_id: str, role: str) -> str:
        mailbox = await self._mailbox_by_role(account_id, role)
        if mailbox is None:
            raise RequestError(f"No '{role}' mailbox found", error_type="notFound")
        return mailbox["id"]

    async def get_mailbox_stats(self, mailbox_id: Optional[str] = None) -> Any:
        """Returns counters for one mailbox, or for every mailbox when no id is given."""
        account_id = await self._account_id()
        ids = [mailbox_id] if mailbox_id else None
        (found,) = await self._call([
            operation("Mailbox/get", {"accountId": account_id, "ids": ids,
                                      "properties": MAILBOX_PROPERTIES}, "stats"),
        ])
        mailboxes = list(found.get("list", []))
        if mailbox_id is None:
            return mailboxes
        if not mailboxes:
            raise RequestError(f"Mailbox {mailbox_id} not found", error_type="notFound")
        return mailboxes[0]

    # --- Reading ---

    async def _query_and_get(self, account_id: str, filter_: Optional[Dict[str, Any]], limit: int,
                             properties: List[str] = EMAIL_SUMMARY_PROPERTIES) -> List[Dict[str, Any]]:
        query_args: Dict[str, Any] = {"accountId": account_id, "sort": NEWEST_FIRST, "limit": limit}
        if filter_:
            query_args["filter"] = filter_
        _, emails = await self._call([
            operation("Email/query", query_args, "query"),
            operation("Email/get", {"accountId": account_id, "ids": ref("query", "/ids"),
                                    "properties": properties}, "emails"),
        ])
        return list(emails.get("list", []))

    async def list_emails(self, mailbox_id: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
        _require_limit(limit)
        account_id = await self._account_id()
        filter_ = {"inMailbox": mailbox_id} if mailbox_id else None
        return await self._query_and_get(account_id, filter_, limit)

    async def get_email(self, email_id: str) -> Dict[str, Any]:
        _require(email_id, "email_id")
        account_id = await self._account_id()
        (found,) = await self._call([
            operation("Email/get", {
                "accountId": account_id,
                "ids": [email_id],
                "properties": EMAIL_FULL_PROPERTIES,
                "fetchTextBodyValues": True,
                "fetchHTMLBodyValues": True,
            }, "email"),
        ])
        emails = found.get("list", [])
        if not emails:
            raise RequestError(f"Email {email_id} not found", error_type="notFound")
        return emails[0]

    async def search_emails(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        _require(query, "query")
        _require_limit(limit)
        account_id = await self._account_id()
        return await self._query_and_get(account_id, {"text": query}, limit)

    async def get_recent_emails(self, limit: int = 10, mailbox_name: str = "inbox") -> List[Dict[str, Any]]:
        """Newest emails from a mailbox found by role (or name), capped at 50."""
        limit = min(_require_limit(limit), MAX_RECENT_EMAILS)
        account_id = await self._account_id()
        mailbox_id = await self._require_mailbox_by_role(account_id, mailbox_name or "inbox")
        return await self._query_and_get(account_id, {"inMailbox": mailbox_id}, limit)

    async def advanced_search(
        self,
        *,
        query: Optional[str] = None,
        sender: Optional[str] = None,
        recipient: Optional[str] = None,
        subject: Optional[str] = None,
        has_attachment: Optional[bool] = None,
        is_unread: Optional[bool] = None,
        mailbox_id: Optional[str] = None,
        after: Optional[str] = None,
        before: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Searches with several criteria combined (all must match).

        Args:
            query: Full-text search.
            sender: Matches the From header.
            recipient: Matches the To header.
            subject: Matches the subject.
            has_attachment: Only emails with (or without) attachments.
            is_unread: Only unread (True) or read (False) emails.
            mailbox_id: Restrict to one mailbox.
            after: UTC date-time lower bound on receivedAt.
            before: UTC date-time upper bound on receivedAt.
            limit: Maximum results.
        """
        _require_limit(limit)
        filter_: Dict[str, Any] = {}
        if query:
            filter_["text"] = query
        if sender:
            filter_["from"] = sender
        if recipient:
            filter_["to"] = recipient
        if subject:
            filter_["subject"] = subject
        if has_attachment is not None:
            filter_["hasAttachment"] = has_attachment
        if is_unread is True:
            filter_["notKeyword"] = "$seen"
        elif is_unread is False:
            filter_["hasKeyword"] = "$seen"
        if mailbox_id:
            filter_["inMailbox"] = mailbox_id
        if after:
            filter_["after"] = after
        if before:
            filter_["before"] = before
        account_id = await self._account_id()
        return await self._query_and_get(account_id, filter_ or None, limit)

    async def get_thread(self, thread_id: str) -> List[Dict[str, Any]]:
        """All emails of a conversation, fetched in one batch through the thread's emailIds."""
        _require(thread_id, "thread_id")
        account_id = await self._account_id()
        thread, emails = await self._call([
            operation("Thread/get", {"accountId": account_id, "ids": [thread_id]}, "thread"),
            operation("Email/get", {"accountId": account_id, "ids": ref("thread", "/list/*/emailIds"),
                                    "properties": EMAIL_SUMMARY_PROPERTIES}, "emails"),
        ])
        if not thread.get("list"):
            raise RequestError(f"Thread {thread_id} not found", error_type="notFound")
        return list(emails.get("list", []))

    # --- Attachments ---

    async def get_email_attachments(self, email_id: str) -> List[Dict[str, Any]]:
        _require(email_id, "email_id")
        account_id = await self._account_id()
        (found,) = await self._call([
            operation("Email/get", {"accountId": account_id, "ids": [email_id],
                                    "properties": ["id", "attachments"]}, "email"),
        ])
        emails = found.get("list", [])
        if not emails:
            raise RequestError(f"Email {email_id} not found", error_type="notFound")
        return list(emails[0].get("attachments") or [])

    async def download_attachment(self, email_id: str, attachment_id: str) -> str:
        """Returns a download URL for an attachment, matched by partId or blobId."""
        _require(email_id, "email_id")
        _require(attachment_id, "attachment_id")
        attachments = await self.get_email_attachments(email_id)
        for attachment in attachments:
            if attachment_id in (attachment.get("partId"), attachment.get("blobId")):
                return await self.engine.download_url(
                    self.credential,
                    attachment["blobId"],
                    attachment.get("name") or "attachment",
                    attachment.get("type") or "application/octet-stream",
                )
        raise RequestError(f"Attachment {attachment_id} not found on email {email_id}", error_type="notFound")

    # --- Sending ---

    async def list_identities(self) -> List[Dict[str, Any]]:
        account_id = await self._account_id()
        (identities,) = await self._call([
            operation("Identity/get", {"accountId": account_id, "ids": None}, "identities"),
        ])
        return list(identities.get("list", []))

    async def send_email(
        self,
        to: Sequence[str],
        subject: str,
        text_body: Optional[str] = None,
        html_body: Optional[str] = None,
        cc: Optional[Sequence[str]] = None,
        bcc: Optional[Sequence[str]] = None,
        from_address: Optional[str] = None,
        mailbox_id: Optional[str] = None,
    ) -> str:
        """Creates a draft and submits it.

        Args:
            to: Recipient addresses (at least one).
            subject: Subject line.
            text_body: Plain-text body.
            html_body: HTML body; at least one body is required.
            cc: CC addresses.
            bcc: BCC addresses.
            from_address: Sender; must match a configured identity.
            mailbox_id: Mailbox to draft in; defaults to the drafts mailbox.

        Returns:
            The submission id.
        """
        recipients = _require_ids(to, "to")
        _require(subject, "subject")
        if not text_body and not html_body:
            raise ValueError("Either text_body or html_body is required")

        account_id = await self._account_id()
        identities, mailboxes = await self._call([
            operation("Identity/get", {"accountId": account_id, "ids": None}, "identities"),
            operation("Mailbox/get", {"accountId": account_id, "ids": None,
                                      "properties": ["id", "name", "role"]}, "mailboxes"),
        ])

        identity = self._pick_identity(identities.get("list", []), from_address)
        by_role = {(m.get("role") or "").lower(): m["id"] for m in mailboxes.get("list", []) if m.get("role")}
        draft_mailbox = mailbox_id or by_role.get("drafts")
        if not draft_mailbox:
            raise RequestError("No drafts mailbox found", error_type="notFound")
        sent_mailbox = by_role.get("sent")

        email: Dict[str, Any] = {
            "mailboxIds": {draft_mailbox: True},
            "keywords": {"$draft": True, "$seen": True},
            "from": [{"name": identity.get("name") or "", "email": identity["email"]}],
            "to": _addresses(recipients),
            "subject": subject,
            "bodyValues": {},
        }
        if cc:
            email["cc"] = _addresses(cc)
        if bcc:
            email["bcc"] = _addresses(bcc)
        if text_body:
            email["textBody"] = [{"partId": "text", "type": "text/plain"}]
            email["bodyValues"]["text"] = {"value": text_body}
        if html_body:
            email["htmlBody"] = [{"partId": "html", "type": "text/html"}]
            email["bodyValues"]["html"] = {"value": html_body}

        on_success: Dict[str, Any] = {"keywords/$draft": None}
        if sent_mailbox and sent_mailbox != draft_mailbox:
            on_success[f"mailboxIds/{_pointer_token(draft_mailbox)}"] = None
            on_success[f"mailboxIds/{_pointer_token(sent_mailbox)}"] = True

        rcpt_to = _addresses(list(recipients) + list(cc or []) + list(bcc or []))
        created, submitted = await self._call([
            operation("Email/set", {"accountId": account_id, "create": {"draft": email}}, "createEmail"),
            operation("EmailSubmission/set", {
                "accountId": account_id,
                "create": {"submission": {
                    "emailId": "#draft",
                    "identityId": identity["id"],
                    "envelope": {"mailFrom": {"email": identity["email"]}, "rcptTo": rcpt_to},
                }},
                "onSuccessUpdateEmail": {"#submission": on_success},
            }, "submitEmail"),
        ])
        check_set_response(created, "create email")
        check_set_response(submitted, "submit email")
        submission_id = (submitted.get("created") or {}).get("submission", {}).get("id")
        if not submission_id:
            raise RequestError("Submission was not created", error_type="notCreated")
        logger.info(f"Email submitted to {len(rcpt_to)} recipient(s): submission {submission_id}")
        return submission_id

    @staticmethod
    def _pick_identity(identities: List[Dict[str, Any]], from_address: Optional[str]) -> Dict[str, Any]:
        if not identities:
            raise RequestError("No sending identities available", error_type="notFound")
        if not from_address:
            return identities[0]
        wanted = from_address.lower()
        for identity in identities:
            if (identity.get("email") or "").lower() == wanted:
                return identity
        raise ValueError(f"From address {from_address} is not a configured sending identity")

    # --- Flags and placement ---

    async def _update_emails(self, updates: Dict[str, Dict[str, Any]], what: str) -> None:
        account_id = await self._account_id()
        (result,) = await self._call([
            operation("Email/set", {"accountId": account_id, "update": updates}, "update"),
        ])
        check_set_response(result, what)

    async def mark_email_read(self, email_id: str, read: bool = True) -> None:
        _require(email_id, "email_id")
        await self.bulk_mark_read([email_id], read)

    async def delete_email(self, email_id: str) -> None:
        """Moves an email to the trash mailbox."""
        _require(email_id, "email_id")
        await self.bulk_delete([email_id])

    async def move_email(self, email_id: str, target_mailbox_id: str) -> None:
        _require(email_id, "email_id")
        await self.bulk_move([email_id], target_mailbox_id)

    async def add_labels(self, email_id: str, mailbox_ids: Sequence[str]) -> None:
        _require(email_id, "email_id")
        await self.bulk_add_labels([email_id], mailbox_ids)

    async def remove_labels(self, email_id: str, mailbox_ids: Sequence[str]) -> None:
        _require(email_id, "email_id")
        await self.bulk_remove_labels([email_id], mailbox_ids)

    # --- Bulk ---

    async def bulk_mark_read(self, email_ids: Sequence[str], read: bool = True) -> None:
        ids = _require_ids(email_ids, "email_ids")
        patch = {"keywords/$seen": True if read else None}
        await self._update_emails({email_id: patch for email_id in ids}, "update read state")

    async def bulk_move(self, email_ids: Sequence[str], target_mailbox_id: str) -> None:
        ids = _require_ids(email_ids, "email_ids")
        _require(target_mailbox_id, "target_mailbox_id")
        patch = {"mailboxIds": {target_mailbox_id: True}}
        await self._update_emails({email_id: patch for email_id in ids}, "move email")

    async def bulk_delete(self, email_ids: Sequence[str]) -> None:
        ids = _require_ids(email_ids, "email_ids")
        account_id = await self._account_id()
        trash_id = await self._require_mailbox_by_role(account_id, "trash")
        patch = {"mailboxIds": {trash_id: True}}
        await self._update_emails({email_id: patch for email_id in ids}, "delete email")

    async def bulk_add_labels(self, email_ids: Sequence[str], mailbox_ids: Sequence[str]) -> None:
        ids = _require_ids(email_ids, "email_ids")
        labels = _require_ids(mailbox_ids, "mailbox_ids")
        patch = {f"mailboxIds/{_pointer_token(label)}": True for label in labels}
        await self._update_emails({email_id: dict(patch) for email_id in ids}, "add labels")

    async def bulk_remove_labels(self, email_ids: Sequence[str], mailbox_ids: Sequence[str]) -> None:
        ids = _require_ids(email_ids, "email_ids")
        labels = _require_ids(mailbox_ids, "mailbox_ids")
        patch = {f"mailboxIds/{_pointer_token(label)}": None for label in labels}
        await self._update_emails({email_id: dict(patch) for email_id in ids}, "remove labels")

    # --- Account ---

    async def get_account_summary(self) -> Dict[str, Any]:
        session = await self.engine.get_session(self.credential)
        mailboxes = await self.get_mailbox_stats()
        return {
            "accountId": session.account_id,
            "username": session.username,
            "capabilities": sorted(session.capabilities),
            "mailboxCount": len(mailboxes),
            "totalEmails": sum(m.get("totalEmails") or 0 for m in mailboxes),
            "unreadEmails": sum(m.get("unreadEmails") or 0 for m in mailboxes),
            "mailboxes": [
                {k: m.get(k) for k in ("id", "name", "role", "totalEmails", "unreadEmails")}
                for m in mailboxes
            ],
        }

    async def check_function_availability(self) -> Dict[str, bool]:
        session = await self.engine.get_session(self.credential)
        return {
            "mail": session.has_capability(MAIL_CAPABILITY),
            "submission": session.has_capability(SUBMISSION_CAPABILITY),
            "contacts": session.has_capability(CONTACTS_CAPABILITY),
            "calendar": session.has_capability(CALENDARS_CAPABILITY),
        }
