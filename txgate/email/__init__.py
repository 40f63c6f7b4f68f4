from .service import EmailDeliveryError, EmailResult, EmailService, mask_email

__all__ = ["EmailDeliveryError", "EmailResult", "EmailService", "mask_email"]
