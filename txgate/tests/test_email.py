from __future__ import annotations

import smtplib
import unittest
from unittest.mock import MagicMock, patch

from txgate.config import EmailSettings
from txgate.email import EmailDeliveryError, EmailService, mask_email

TOKEN = "a" * 64
CODE = "123456"


class EmailServiceTests(unittest.IsolatedAsyncioTestCase):
    def test_mask_email(self) -> None:
        self.assertEqual(mask_email("alice@example.com"), "al***@example.com")
        self.assertEqual(mask_email("a@example.com"), "***")
        self.assertEqual(mask_email("not-an-address"), "***")

    async def test_log_mode_hides_secrets_by_default(self) -> None:
        service = EmailService(EmailSettings(), app_name="txgate")
        with self.assertLogs("txgate.email", level="INFO") as logs:
            result = await service.send_password_reset("alice@example.com", TOKEN, CODE)
        output = "\n".join(logs.output)
        self.assertTrue(result.ok)
        self.assertEqual(result.mode, "log")
        self.assertNotIn(TOKEN, output)
        self.assertNotIn(CODE, output)
        self.assertIn("al***@example.com", output)

    async def test_log_mode_can_include_secrets(self) -> None:
        service = EmailService(EmailSettings(log_include_secrets=True))
        with self.assertLogs("txgate.email", level="INFO") as logs:
            await service.send_login_challenge("alice@example.com", TOKEN, CODE)
        self.assertIn(TOKEN, "\n".join(logs.output))

    def test_smtp_mode_requires_host(self) -> None:
        with self.assertRaises(RuntimeError):
            EmailService(EmailSettings(mode="smtp"))

    async def test_smtp_mode_sends_message(self) -> None:
        settings = EmailSettings(
            mode="smtp",
            smtp_host="smtp.example.com",
            smtp_port=2525,
            smtp_username="mailer",
            smtp_password="pw",
        )
        server = MagicMock()
        with patch("txgate.email.service.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value = server
            result = await EmailService(settings, app_name="Shop").send_email_verification(
                "alice@example.com", TOKEN, CODE
            )
        self.assertEqual(result.mode, "smtp")
        smtp.assert_called_once_with("smtp.example.com", 2525, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "pw")
        message = server.send_message.call_args.args[0]
        self.assertEqual(message["To"], "alice@example.com")
        self.assertEqual(message["Subject"], "Shop - Verify your email")

    async def test_smtp_failure_propagates(self) -> None:
        settings = EmailSettings(mode="smtp", smtp_host="smtp.example.com", smtp_use_tls=False)
        with patch("txgate.email.service.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
            with self.assertRaises(EmailDeliveryError):
                await EmailService(settings).send_password_reset("alice@example.com", TOKEN, CODE)


if __name__ == "__main__":
    unittest.main()
