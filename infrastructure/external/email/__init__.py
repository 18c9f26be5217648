from .mailgun import MailgunEmailSender

__all__ = ["MailgunEmailSender"]
