from __future__ import annotations

import html as html_lib
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, parseaddr

import requests

from .settings import Settings

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class Mailer:
    """Outbound mail. Delivery problems are logged and reported, never raised."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to: str, subject: str, html: str | None = None, text: str | None = None) -> tuple[bool, str]:
        cfg = self.settings
        try:
            if not cfg.emails_enabled:
                logger.info("mail disabled subject=%r to=%s", subject, to)
                return True, "disabled"

            provider = (cfg.mail_provider or "console").strip().lower()
            logger.info("mail provider=%s to=%s subject=%r", provider, to, subject)

            if provider == "console":
                # bodies carry verification codes, printed only in dev
                body = (text or "") if cfg.debug_codes else "<body hidden outside dev>"
                logger.info("--- MAIL (console) ---\nFrom: %s\nTo: %s\nSubject: %s\n\n%s", cfg.mail_from, to, subject, body)
                return True, "console"

            if provider == "resend":
                if not cfg.resend_api_key:
                    return False, "missing RESEND_API_KEY"
                payload: dict[str, object] = {"from": cfg.mail_from, "to": to, "subject": subject}
                if text:
                    payload["text"] = text
                if html:
                    payload["html"] = html
                r = requests.post(
                    RESEND_URL,
                    headers={
                        "Authorization": f"Bearer {cfg.resend_api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                    timeout=15,
                )
                ok = 200 <= r.status_code < 300
                if not ok:
                    logger.warning("resend rejected mail to=%s status=%s body=%s", to, r.status_code, r.text)
                return ok, str(r.status_code)

            if provider == "smtp":
                missing = [k for k, v in {"SMTP_HOST": cfg.smtp_host, "SMTP_USER": cfg.smtp_user, "SMTP_PASS": cfg.smtp_pass}.items() if not v]
                if missing:
                    return False, f"missing smtp config: {', '.join(missing)}"

                disp_name, _ = parseaddr(cfg.mail_from or "")
                msg = EmailMessage()
                msg["From"] = formataddr((disp_name or "MediRemind", cfg.smtp_user))
                msg["To"] = to
                msg["Subject"] = subject
                msg.set_content(text or "")
                if html:
                    msg.add_alternative(html, subtype="html")

                if cfg.smtp_use_tls:
                    with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=20) as s:
                        s.starttls()
                        s.login(cfg.smtp_user, cfg.smtp_pass)
                        s.send_message(msg)
                else:
                    with smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=20) as s:
                        s.login(cfg.smtp_user, cfg.smtp_pass)
                        s.send_message(msg)
                return True, "smtp"

            return False, f"unknown provider '{provider}'"

        except Exception as e:  # noqa: BLE001
            logger.exception("send_mail failed to=%s", to)
            return False, repr(e)


# --------------------------------------------------------
# Templates
# --------------------------------------------------------
_STYLE = """
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }
.container { max-width: 600px; margin: 0 auto; padding: 20px; }
.header { text-align: center; padding: 30px 0; }
.brand { font-size: 24px; font-weight: bold; color: #4F46E5; }
.code-box { background: #F3F4F6; border-radius: 12px; padding: 30px; text-align: center; margin: 30px 0; }
.code { font-size: 36px; font-weight: bold; letter-spacing: 8px; color: #4F46E5; }
.warning { background: #FEF3C7; border-left: 4px solid #F59E0B; padding: 12px; margin: 20px 0; }
.footer { text-align: center; color: #6B7280; font-size: 14px; margin-top: 40px; }
"""

_SUBJECTS = {
    "signup": "Verify Your MediRemind Account",
    "login": "MediRemind Login Verification Code",
}


def verification_email(full_name: str, code: str, purpose: str, ttl_minutes: int = 15, resend: bool = False) -> tuple[str, str, str]:
    """Build (subject, html, text) for a signup or login code."""
    name = html_lib.escape(full_name or "there")
    if purpose == "login":
        intro = (
            "Here's your new login verification code:"
            if resend
            else "We received a login request for your account. To continue, please enter the verification code below:"
        )
        label = "Your login verification code is:"
        outro = (
            '<div class="warning"><strong>Security Notice:</strong> If you didn\'t attempt to log in, '
            "please ignore this email and consider changing your password.</div>"
        )
    else:
        intro = (
            "Here's your new verification code to complete your registration:"
            if resend
            else "Thanks for signing up with MediRemind. To complete your registration, please verify your email address."
        )
        label = "Your verification code is:"
        outro = "<p>If you didn't request this code, you can safely ignore this email.</p>"

    html = f"""<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><style>{_STYLE}</style></head>
  <body>
    <div class="container">
      <div class="header"><div class="brand">MediRemind</div></div>
      <h2>Hi {name}!</h2>
      <p>{intro}</p>
      <div class="code-box">
        <p>{label}</p>
        <div class="code">{code}</div>
        <p>This code will expire in {ttl_minutes} minutes</p>
      </div>
      {outro}
      <div class="footer"><p>&copy; MediRemind. All rights reserved.</p></div>
    </div>
  </body>
</html>"""
    text = f"Hi {full_name or 'there'}!\n\n{label} {code}\n\nThis code will expire in {ttl_minutes} minutes."
    return _SUBJECTS.get(purpose, _SUBJECTS["signup"]), html, text
