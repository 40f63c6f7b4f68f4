from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText

from txgate.config import EmailSettings


class EmailDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True)
class EmailResult:
    ok: bool
    mode: str


def mask_email(email: str) -> str:
    text = (email or "").strip()
    at = text.find("@")
    if at <= 1:
        return "***"
    return f"{text[:2]}***@{text[at + 1:]}"


class EmailService:
    """Delivers verification, reset and login-challenge messages.

    In ``log`` mode nothing leaves the process: the message is written to the
    logger, with token and code only when ``log_include_secrets`` is set.
    """

    def __init__(
        self,
        settings: EmailSettings,
        app_name: str = "txgate",
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.app_name = app_name
        self.logger = logger or logging.getLogger("txgate.email")
        if settings.mode == "smtp" and not settings.smtp_host:
            raise RuntimeError("SMTP_HOST is required when EMAIL_MODE=smtp")

    @property
    def mode(self) -> str:
        return self.settings.mode

    async def send_email_verification(self, to: str, token: str, code: str, app_name: str | None = None) -> EmailResult:
        subject = f"{app_name or self.app_name} - Verify your email"
        body = "Email verification is required."
        return await self._deliver("email verification", to, subject, body, token, code)

    async def send_password_reset(self, to: str, token: str, code: str, app_name: str | None = None) -> EmailResult:
        subject = f"{app_name or self.app_name} - Reset your password"
        body = "A password reset was requested for this account."
        return await self._deliver("password reset", to, subject, body, token, code)

    async def send_login_challenge(self, to: str, token: str, code: str, app_name: str | None = None) -> EmailResult:
        subject = f"{app_name or self.app_name} - Confirm your sign-in"
        body = "Your sign-in needs to be confirmed."
        return await self._deliver("login challenge", to, subject, body, token, code)

    async def _deliver(self, kind: str, to: str, subject: str, intro: str, token: str, code: str) -> EmailResult:
        text = f"{intro}\n\nToken: {token}\nCode: {code}\n\nIf this was not you, ignore this message."
        if self.settings.mode == "log":
            if self.settings.log_include_secrets:
                self.logger.info(
                    "[email:log] would send %s to=%s subject=%s token=%s code=%s", kind, to, subject, token, code
                )
            else:
                self.logger.info("[email:log] would send %s to=%s subject=%s", kind, mask_email(to), subject)
            return EmailResult(ok=True, mode="log")

        message = MIMEText(text, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = self.settings.from_address
        message["To"] = to
        await asyncio.to_thread(self._send_smtp, message)
        self.logger.info("Sent %s email to=%s", kind, mask_email(to))
        return EmailResult(ok=True, mode="smtp")

    def _send_smtp(self, message: MIMEText) -> None:
        settings = self.settings
        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
                if settings.smtp_use_tls:
                    server.starttls()
                if settings.smtp_username and settings.smtp_password:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"SMTP delivery to {settings.smtp_host} failed: {exc}") from exc
