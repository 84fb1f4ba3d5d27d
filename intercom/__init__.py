"""Mailbox relay between trade parties."""

from intercom.client import MailboxClient

__all__ = [
    "MailboxClient",
]
