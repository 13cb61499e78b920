# service/emailer.py
from __future__ import annotations

import os
import smtplib
import ssl
import time
from collections.abc import Iterable
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

# ---- Errors -----------------------------------------------------------------


class EmailSendError(RuntimeError):
    """Raised when an email cannot be delivered."""


# ---- Env / Settings ----------------------------------------------------------

DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587
TRANSIENT_RETRIES = 3


def _getenv_any(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v != "":
            return v
    return default


def resolve_smtp_settings() -> dict:
    """
    Resolve SMTP settings from env.

    Preferred:
      - SMTP_HOST / SMTP_PORT              (default smtp.gmail.com:587)
      - SMTP_USERNAME / SMTP_PASSWORD
      - SMTP_FROM, SMTP_FROM_NAME
      - SMTP_USE_SSL = "true" | "false"
      - SMTP_STARTTLS = "true" | "false" | "auto" (default)

    Aliases:
      - EMAIL_USER / EMAIL_PASS (account-style credentials)
    """
    host = _getenv_any("SMTP_HOST", default=DEFAULT_SMTP_HOST)
    port_raw = _getenv_any("SMTP_PORT", default=str(DEFAULT_SMTP_PORT))
    try:
        port = int(port_raw or DEFAULT_SMTP_PORT)
    except ValueError as e:
        raise EmailSendError(f"SMTP_PORT must be an integer, got {port_raw!r}") from e

    username = _getenv_any("SMTP_USERNAME", "EMAIL_USER")
    password = _getenv_any("SMTP_PASSWORD", "EMAIL_PASS")

    use_ssl = (_getenv_any("SMTP_USE_SSL", default="false") or "false").strip().lower() == "true"
    starttls = (_getenv_any("SMTP_STARTTLS", default="auto") or "auto").strip().lower()
    if use_ssl:
        starttls = "false"

    return {
        "host": host,
        "port": port,
        "username": username,
        "password": password,
        "use_ssl": use_ssl,
        "starttls": starttls,  # "true" | "false" | "auto"
        "default_from_addr": _getenv_any("SMTP_FROM", default=username or ""),
        "default_from_name": _getenv_any("SMTP_FROM_NAME", default="Job Monitor"),
        "insecure_tls": (_getenv_any("SMTP_INSECURE_TLS", default="false") or "false").strip().lower() == "true",
    }


def has_credentials(settings: dict | None = None) -> bool:
    s = settings or resolve_smtp_settings()
    return bool(s["host"] and s["username"] and s["password"])


# ---- Helpers ----------------------------------------------------------------


def _as_list(values: Iterable[str] | str | None) -> list[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [v for v in (s.strip() for s in values) if v]


def _should_starttls(port: int, starttls_setting: str) -> bool:
    if starttls_setting == "true":
        return True
    if starttls_setting == "false":
        return False
    # "auto": plain relay ports stay cleartext
    return port not in (25, 2525)


def build_message(
    *,
    subject: str,
    text: str,
    html: str | None,
    to: list[str],
    from_name: str | None,
    from_addr: str,
) -> EmailMessage:
    if not subject or not subject.strip():
        raise EmailSendError("Missing subject.")
    if not text or not text.strip():
        raise EmailSendError("Missing text body.")
    if not to:
        raise EmailSendError("No recipients.")
    if not from_addr:
        raise EmailSendError("No from address resolved. Set SMTP_FROM or SMTP_USERNAME (or EMAIL_USER).")

    msg = EmailMessage()
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()

    msg.set_content(text)
    if html and html.strip():
        msg.add_alternative(html, subtype="html", charset="utf-8")
    return msg


def _open(settings: dict) -> smtplib.SMTP:
    context = ssl._create_unverified_context() if settings["insecure_tls"] else ssl.create_default_context()
    host, port = settings["host"], settings["port"]
    server = smtplib.SMTP_SSL(host, port, context=context) if settings["use_ssl"] else smtplib.SMTP(host, port)
    server.ehlo()
    if not settings["use_ssl"] and _should_starttls(port, settings["starttls"]):
        server.starttls(context=context)
        server.ehlo()
    server.login(settings["username"], settings["password"])
    return server


def _send_via_smtp(msg: EmailMessage, *, rcpt_to: list[str], settings: dict) -> None:
    if not has_credentials(settings):
        raise EmailSendError(
            "Missing SMTP credentials or host. Expected SMTP_USERNAME/SMTP_PASSWORD (or EMAIL_USER/EMAIL_PASS)."
        )
    try:
        with _open(settings) as server:
            server.send_message(msg, to_addrs=rcpt_to)
    except smtplib.SMTPResponseException as e:
        raise EmailSendError(f"SMTP send failed ({e.smtp_code}): {e}") from e
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


def _is_transient(e: EmailSendError) -> bool:
    cause = e.__cause__
    return isinstance(cause, smtplib.SMTPResponseException) and 400 <= cause.smtp_code < 500


# ---- Public API --------------------------------------------------------------


def send_email(
    *,
    subject: str,
    text: str,
    to: list[str] | str,
    html: str | None = None,
    sleep=time.sleep,
) -> str:
    """
    Send a plain-text email with an optional HTML alternative.

    Transient (4xx) SMTP replies are retried with exponential backoff
    (1s, 2s, 4s); anything else fails immediately.

    Returns:
        message_id (str): RFC-822 Message-ID generated by the sender.

    Raises:
        EmailSendError on any failure (connection/auth/SMTP/validation/etc).
    """
    settings = resolve_smtp_settings()
    to_l = _as_list(to)
    msg = build_message(
        subject=subject,
        text=text,
        html=html,
        to=to_l,
        from_name=(settings["default_from_name"] or "").strip() or None,
        from_addr=(settings["default_from_addr"] or "").strip(),
    )

    for attempt in range(TRANSIENT_RETRIES + 1):
        try:
            _send_via_smtp(msg, rcpt_to=to_l, settings=settings)
            return str(msg["Message-ID"])
        except EmailSendError as e:  # noqa: PERF203
            if attempt == TRANSIENT_RETRIES or not _is_transient(e):
                raise
            sleep(2**attempt)
    raise EmailSendError("Permanent send failure after retries")


def ping() -> bool:
    """
    Lightweight health check against the SMTP server.
    Returns True if login succeeds; raises EmailSendError otherwise.
    """
    settings = resolve_smtp_settings()
    if not has_credentials(settings):
        raise EmailSendError("SMTP health check failed: missing host/credentials.")
    try:
        with _open(settings):
            pass
        return True
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP health check failed: {e}") from e
