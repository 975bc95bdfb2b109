from app.notifications.base import GuardianCredentialsEmail, Notifier
from app.notifications.email import EmailNotifier, get_notifier

__all__ = ["GuardianCredentialsEmail", "Notifier", "EmailNotifier", "get_notifier"]
