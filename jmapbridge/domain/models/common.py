"""Defines common Value Objects used across the engine.

These objects represent simple values like capability URIs, result labels
and account identifiers, ensuring consistency and type safety.
"""

from typing import Dict, NewType, Tuple

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
CapabilityURI = NewType("CapabilityURI", str)   # e.g. 'urn:ietf:params:jmap:mail'
MethodName = NewType("MethodName", str)         # e.g. 'Email/query'
ResultLabel = NewType("ResultLabel", str)       # Client-chosen call id inside one batch
AccountId = NewType("AccountId", str)           # Server-assigned account identifier
JsonPointer = NewType("JsonPointer", str)       # e.g. '/ids' or '/list/*/threadId'
CredentialKey = NewType("CredentialKey", str)   # Hashed identity of a credential context

# === Capability URIs ===
CORE_CAPABILITY = CapabilityURI("urn:ietf:params:jmap:core")
MAIL_CAPABILITY = CapabilityURI("urn:ietf:params:jmap:mail")
SUBMISSION_CAPABILITY = CapabilityURI("urn:ietf:params:jmap:submission")
CONTACTS_CAPABILITY = CapabilityURI("urn:ietf:params:jmap:contacts")
CALENDARS_CAPABILITY = CapabilityURI("urn:ietf:params:jmap:calendars")

# Method prefix -> capabilities needed beyond core.
# Checked longest prefix first so 'EmailSubmission/' does not match 'Email'.
METHOD_CAPABILITIES: Dict[str, Tuple[CapabilityURI, ...]] = {
    "EmailSubmission/": (MAIL_CAPABILITY, SUBMISSION_CAPABILITY),
    "Identity/": (SUBMISSION_CAPABILITY,),
    "Email/": (MAIL_CAPABILITY,),
    "Mailbox/": (MAIL_CAPABILITY,),
    "Thread/": (MAIL_CAPABILITY,),
    "SearchSnippet/": (MAIL_CAPABILITY,),
    "ContactCard/": (CONTACTS_CAPABILITY,),
    "AddressBook/": (CONTACTS_CAPABILITY,),
    "CalendarEvent/": (CALENDARS_CAPABILITY,),
    "Calendar/": (CALENDARS_CAPABILITY,),
}


def capabilities_for_method(method_name: str) -> Tuple[CapabilityURI, ...]:
    """Returns the capabilities a JMAP method needs, derived from its prefix.

    Unknown prefixes (e.g. 'Core/echo') only need the core capability, which
    the batch builder always adds.
    """
    for prefix in sorted(METHOD_CAPABILITIES, key=len, reverse=True):
        if method_name.startswith(prefix):
            return METHOD_CAPABILITIES[prefix]
    return ()
