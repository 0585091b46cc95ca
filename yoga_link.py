#!/usr/bin/env python3
"""
Daily Yoga Link
---------------
Fetches the session page, pulls today's YouTube watch link out of the
page's inline script data, then emails it to the recipient list with the
day's workout format and colour theme.

Required environment variables:
  BASE_URL          - Page that embeds today's session link
  EMAIL_RECIPIENTS  - Comma-separated list of recipient addresses
  EMAIL_USER        - Sender address
  API_KEY           - Resend API key (EMAIL_TRANSPORT=resend, the default)
  EMAIL_PASSWORD    - SMTP password   (EMAIL_TRANSPORT=smtp)

Optional environment variables:
  EMAIL_SENDER_NAME - Display name for the From: header
  EMAIL_TRANSPORT   - "resend" or "smtp"
  SMTP_HOST, SMTP_PORT, RUN_LOG_FILE

Optional flags:
  --dry-run         - Print the email to terminal instead of sending it
"""

import argparse
import html
import logging
import os
import re
import smtplib
import sys
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from zoneinfo import ZoneInfo

import requests

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

TIMEZONE          = ZoneInfo("Asia/Kolkata")
HTTP_TIMEOUT      = 20   # seconds
SEND_TIMEOUT      = 30   # seconds
RESEND_API_URL    = "https://api.resend.com/emails"
DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587
DEFAULT_RUN_LOG   = "logs.txt"
DEFAULT_SENDER    = "Daily Yoga"
SIGNATURE         = "Akhand"
TRANSPORTS        = ("resend", "smtp")

SUNDAY_URL = "https://me.habuild.in/sunday"

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
}

# Indexed by day of week, 0 = Sunday .. 6 = Saturday
DAY_FORMATS = (
    "Surya Namaskar & Breathing",
    "Light Yoga & Breathing",
    "Lower Body",
    "Upper Body",
    "Core & Laughter",
    "Mobility & Flexibility",
    "Stamina & Meditation",
)
THEME_COLORS      = ("#EF7722", "#3D8D7A", "#09122C", "#000957", "#7F55B1", "#DC143C", "#3E1E68")
BACKGROUND_COLORS = ("#0BA6DF", "#A3D1C6", "#E17564", "#FFEB00", "#FFE1E0", "#FDEBD0", "#FFACAC")

MORNING_SLOTS = "6:30 AM, 7:30 AM, 8:30 AM"
EVENING_SLOTS = "5:00 PM, 6:00 PM, 7:00 PM"


@dataclass(frozen=True)
class Config:
    base_url:      str
    recipients:    tuple[str, ...] = ()
    sender_email:  str = ""
    sender_name:   str = DEFAULT_SENDER
    transport:     str = "resend"
    api_key:       str = field(default="", repr=False)
    smtp_password: str = field(default="", repr=False)
    smtp_host:     str = DEFAULT_SMTP_HOST
    smtp_port:     int = DEFAULT_SMTP_PORT
    run_log_file:  str = DEFAULT_RUN_LOG

    @property
    def sender(self) -> str:
        return f"{self.sender_name} <{self.sender_email}>"

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class YogaLinkError(Exception):
    """Base class for run failures."""


class ConfigurationMissing(YogaLinkError):
    """Required environment variables are unset or invalid."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            "Missing or invalid environment variables: " + ", ".join(missing)
        )


class NetworkFailure(YogaLinkError):
    """The session page could not be fetched."""


class DeliveryFailure(YogaLinkError):
    """The mail transport did not accept the message."""


def _split_recipients(raw: str) -> tuple[str, ...]:
    return tuple(addr.strip() for addr in raw.split(",") if addr.strip())


def load_config(env=None, require_delivery: bool = True) -> Config:
    """
    Build a Config from environment variables.

    Every missing name is collected before raising, so one failed run
    reports everything the operator has to set.
    """
    env = os.environ if env is None else env

    base_url  = env.get("BASE_URL", "").strip()
    transport = (env.get("EMAIL_TRANSPORT") or "resend").strip().lower()

    missing = []
    if not base_url:
        missing.append("BASE_URL")

    recipients    = _split_recipients(env.get("EMAIL_RECIPIENTS", ""))
    sender_email  = env.get("EMAIL_USER", "").strip()
    api_key       = env.get("API_KEY", "")
    smtp_password = env.get("EMAIL_PASSWORD", "")

    if require_delivery:
        if not recipients:
            missing.append("EMAIL_RECIPIENTS")
        if not sender_email:
            missing.append("EMAIL_USER")
        if transport not in TRANSPORTS:
            missing.append(f"EMAIL_TRANSPORT (got {transport!r}, expected one of {', '.join(TRANSPORTS)})")
        elif transport == "resend" and not api_key:
            missing.append("API_KEY")
        elif transport == "smtp" and not smtp_password:
            missing.append("EMAIL_PASSWORD")

    raw_port = env.get("SMTP_PORT") or str(DEFAULT_SMTP_PORT)
    try:
        smtp_port = int(raw_port)
    except ValueError:
        missing.append(f"SMTP_PORT (got {raw_port!r})")
        smtp_port = DEFAULT_SMTP_PORT

    if missing:
        raise ConfigurationMissing(missing)

    return Config(
        base_url      = base_url,
        recipients    = recipients,
        sender_email  = sender_email,
        sender_name   = env.get("EMAIL_SENDER_NAME", "").strip() or DEFAULT_SENDER,
        transport     = transport,
        api_key       = api_key,
        smtp_password = smtp_password,
        smtp_host     = env.get("SMTP_HOST", "").strip() or DEFAULT_SMTP_HOST,
        smtp_port     = smtp_port,
        run_log_file  = env.get("RUN_LOG_FILE", "").strip() or DEFAULT_RUN_LOG,
    )

# ---------------------------------------------------------------------------
# URL extraction
# ---------------------------------------------------------------------------

NO_URL_FOUND      = "No YouTube URL found"
NO_VIDEO_ID_FOUND = "No video ID found"
WATCH_URL         = "https://www.youtube.com/watch?v={}"

_ID = r"([A-Za-z0-9_-]+)"

# "watchEndpoint": { "videoId": "ID" }
_WATCH_ENDPOINT_RE = re.compile(r'"watchEndpoint"\s*:\s*\{\s*"videoId"\s*:\s*"' + _ID + '"')
# window['ytUrl'] = '\/watch?v\x3dID'  (the "=" is served as literal "x3d")
_YT_URL_RE = re.compile(r"window\['ytUrl'\]\s*=\s*'\\?/watch\?v\\?x3d" + _ID + "'")
# "videoId": "ID" anywhere
_VIDEO_ID_RE = re.compile(r'"videoId"\s*:\s*"' + _ID + '"')

_YT_URL_MARKER = "window['ytUrl']"

# Tried in order, first match wins
_STRATEGIES = (_WATCH_ENDPOINT_RE, _YT_URL_RE, _VIDEO_ID_RE)


@dataclass(frozen=True)
class ExtractionDiagnostics:
    html_length:            int
    found_watch_endpoint:   bool
    found_alternate_marker: bool


@dataclass(frozen=True)
class ExtractionResult:
    extracted_url: str
    video_id:      str
    diagnostics:   ExtractionDiagnostics

    @property
    def success(self) -> bool:
        return self.extracted_url != NO_URL_FOUND


def _first_video_id(page_text: str) -> str | None:
    for pattern in _STRATEGIES:
        match = pattern.search(page_text)
        if match:
            return match.group(1)
    return None


def extract_youtube_url(page_text: str) -> ExtractionResult:
    """
    Find the watch link embedded in a page's inline script data.

    Never raises; a miss comes back as the NO_URL_FOUND / NO_VIDEO_ID_FOUND
    sentinels with success == False.
    """
    video_id = _first_video_id(page_text)

    diagnostics = ExtractionDiagnostics(
        html_length            = len(page_text),
        found_watch_endpoint   = _WATCH_ENDPOINT_RE.search(page_text) is not None,
        found_alternate_marker = _YT_URL_MARKER in page_text,
    )

    if video_id is None:
        return ExtractionResult(NO_URL_FOUND, NO_VIDEO_ID_FOUND, diagnostics)
    return ExtractionResult(WATCH_URL.format(video_id), video_id, diagnostics)

# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

def _mask(url: str) -> str:
    return url[:5] + "..." if len(url) > 5 else url


def fetch_page(url: str) -> str:
    """GET the session page. Raises NetworkFailure on any request error."""
    logging.info("Fetching session page %s", _mask(url))

    try:
        resp = requests.get(url, headers=HEADERS, timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise NetworkFailure(f"GET {_mask(url)} failed: {exc}") from exc

    logging.info(
        "Status: %d %s, Content-Type: %s",
        resp.status_code, resp.reason, resp.headers.get("Content-Type", "unknown"),
    )
    return resp.text

# ---------------------------------------------------------------------------
# Day helpers
# ---------------------------------------------------------------------------

def day_index(now: datetime) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (now.weekday() + 1) % 7


def link_for_day(result: ExtractionResult, index: int) -> str | None:
    """Link to send today, or None when there is nothing worth sending."""
    if index == 0:
        return SUNDAY_URL
    if result.success:
        return result.extracted_url
    return None


def _date_str(now: datetime) -> str:
    return now.strftime("%A, %B %-d, %Y")

# ---------------------------------------------------------------------------
# Plain-text email body (built from data, not by stripping HTML)
# ---------------------------------------------------------------------------

def build_subject(now: datetime) -> str:
    return f"{now.strftime('%A')} YOGA Link"


def build_plain_text(link: str, now: datetime) -> str:
    lines = [
        f"Daily Yoga Session - {_date_str(now)}",
        "",
        "Hi there!",
        "",
        "Please find your today's YOGA link.",
        "",
        "Available Time Slots:",
        f"Morning: {MORNING_SLOTS}",
        f"Evening: {EVENING_SLOTS}",
        "",
        f"Today's Format: {DAY_FORMATS[day_index(now)]}",
        "",
        f"Link: {link}",
        "",
        "Best regards,",
        SIGNATURE,
        "",
        "Stay healthy and mindful! \U0001f64f",
        "This is your daily yoga reminder.",
    ]
    return "\n".join(lines)

# ---------------------------------------------------------------------------
# HTML email formatting
# ---------------------------------------------------------------------------

_COLOR_TEXT   = "#333333"
_COLOR_MUTED  = "#666666"
_COLOR_CARD   = "#f9f9f9"
_COLOR_BORDER = "#eeeeee"


def build_html_email(link: str, now: datetime) -> str:
    index    = day_index(now)
    theme    = THEME_COLORS[index]
    bg       = BACKGROUND_COLORS[index]
    fmt      = html.escape(DAY_FORMATS[index])
    href     = html.escape(link, quote=True)
    date_str = html.escape(_date_str(now))

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width,initial-scale=1.0">
  <title>Daily Yoga Session</title>
</head>
<body style="font-family:Arial,Helvetica,sans-serif;line-height:1.6;color:{_COLOR_TEXT};
    max-width:600px;margin:0 auto;padding:20px;">

  <!-- HEADER -->
  <div style="text-align:center;margin-bottom:30px;">
    <h1 style="color:{theme};margin-bottom:10px;">&#129496; Daily Yoga Session</h1>
    <p style="color:{_COLOR_MUTED};font-size:14px;">{date_str}</p>
  </div>

  <!-- GREETING + SLOTS -->
  <div style="background-color:{_COLOR_CARD};padding:20px;border-radius:8px;margin:20px 0;">
    <p style="margin-top:0;">Hi there!</p>
    <p>Please find your today's YOGA link.</p>

    <div style="background-color:{bg};padding:15px;border-radius:6px;margin:15px 0;">
      <p style="margin:0;font-weight:bold;color:{theme};">&#128197; Available Time Slots:</p>
      <p style="margin:5px 0 0 0;">
        <strong>Morning:</strong> {MORNING_SLOTS}<br>
        <strong>Evening:</strong> {EVENING_SLOTS}
      </p>
    </div>
  </div>

  <!-- FORMAT + LINK -->
  <div style="background-color:{theme};color:#ffffff;padding:20px;border-radius:8px;
      text-align:center;margin:20px 0;">
    <h3 style="margin:0 0 10px 0;">Today's Format: {fmt}</h3>
    <a href="{href}" style="display:inline-block;background-color:#ffffff;color:{theme};
        padding:12px 24px;text-decoration:none;border-radius:6px;font-weight:bold;margin-top:10px;">
      &#128279; Join Yoga Session
    </a>
  </div>

  <!-- FOOTER -->
  <div style="text-align:center;margin-top:30px;padding-top:20px;border-top:1px solid {_COLOR_BORDER};">
    <p style="margin-bottom:5px;">Best regards,</p>
    <p style="font-weight:bold;color:{theme};font-size:18px;margin:0;">{SIGNATURE}</p>
    <p style="font-size:12px;color:{_COLOR_MUTED};margin-top:15px;">
      Stay healthy and mindful! &#128591;<br>
      This is your daily yoga reminder.
    </p>
  </div>
</body>
</html>"""

# ---------------------------------------------------------------------------
# Email senders
# ---------------------------------------------------------------------------

def send_via_resend(config: Config, subject: str, html_body: str, plain_body: str) -> None:
    """Send through the Resend HTTP API. Raises DeliveryFailure."""
    payload = {
        "from":    config.sender,
        "to":      list(config.recipients),
        "subject": subject,
        "html":    html_body,
        "text":    plain_body,
    }
    headers = {"Authorization": f"Bearer {config.api_key}"}

    try:
        resp = requests.post(RESEND_API_URL, json=payload, headers=headers, timeout=SEND_TIMEOUT)
    except requests.RequestException as exc:
        raise DeliveryFailure(f"Resend request failed: {exc}") from exc

    try:
        data = resp.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    if resp.ok:
        if data.get("id"):
            logging.info("Email sent via Resend (id %s)", data["id"])
        else:
            logging.info("Email sent via Resend, but the response had no id")
        return

    message = data.get("message")
    if message:
        raise DeliveryFailure(f"Resend error ({resp.status_code}): {message}")
    raise DeliveryFailure(f"Resend returned status {resp.status_code}")


def send_via_smtp(config: Config, subject: str, html_body: str, plain_body: str) -> None:
    """Send HTML + plain-text email via SMTP (STARTTLS). Raises DeliveryFailure."""
    msg            = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"]    = config.sender
    msg["To"]      = ", ".join(config.recipients)

    # Plain-text part first; clients render the last part they support
    msg.attach(MIMEText(plain_body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body,  "html",  "utf-8"))

    try:
        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=SEND_TIMEOUT) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(config.sender_email, config.smtp_password)
            server.sendmail(config.sender_email, list(config.recipients), msg.as_string())
    except smtplib.SMTPAuthenticationError as exc:
        raise DeliveryFailure(
            "SMTP authentication failed. Verify EMAIL_USER and EMAIL_PASSWORD secrets."
        ) from exc
    except (smtplib.SMTPException, OSError) as exc:
        raise DeliveryFailure(f"SMTP error: {exc}") from exc

    logging.info("Email sent via SMTP")


_SENDERS = {
    "resend": send_via_resend,
    "smtp":   send_via_smtp,
}


def send_email(config: Config, subject: str, html_body: str, plain_body: str) -> None:
    _SENDERS[config.transport](config, subject, html_body, plain_body)
    logging.info("Delivered to %d recipient(s): %s", len(config.recipients), ", ".join(config.recipients))

# ---------------------------------------------------------------------------
# Run log
# ---------------------------------------------------------------------------

def append_run_log(path: str, now: datetime) -> str | None:
    """Append one timestamp line to the run log. Returns the line, or None on I/O error."""
    stamp = now.strftime("%Y-%m-%d %H:%M:%S")
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(stamp + "\n")
    except OSError as exc:
        logging.error("Could not append to run log %s: %s", path, exc)
        return None

    logging.info("Appended last processed time (IST): %s", stamp)
    return stamp

# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _log_result(result: ExtractionResult) -> None:
    diag = result.diagnostics
    logging.info("Extracted URL: %s", result.extracted_url)
    logging.info("Video ID: %s", result.video_id)
    logging.info("Success: %s", result.success)
    logging.info(
        "HTML length: %d, found watchEndpoint: %s, found ytUrl: %s",
        diag.html_length, diag.found_watch_endpoint, diag.found_alternate_marker,
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Daily yoga link emailer")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the email to terminal instead of sending it",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    # Validate configuration before any network calls
    try:
        config = load_config(require_delivery=not args.dry_run)
    except ConfigurationMissing as exc:
        logging.error("%s", exc)
        sys.exit(1)

    now    = datetime.now(TIMEZONE)
    failed = False

    try:
        page_text = fetch_page(config.base_url)
    except NetworkFailure as exc:
        logging.error("%s", exc)
        page_text = ""
        failed    = True

    result = extract_youtube_url(page_text)
    _log_result(result)

    link = link_for_day(result, day_index(now))
    if link is None:
        logging.error("No YouTube link found on the session page; skipping email.")
        failed = True
    else:
        subject    = build_subject(now)
        html_body  = build_html_email(link, now)
        plain_body = build_plain_text(link, now)

        if args.dry_run:
            print("\n" + "=" * 60)
            print(f"DRY RUN — Subject: {subject}")
            print("=" * 60)
            print(plain_body)
            print("=" * 60)
            print("(HTML email not sent — dry-run mode)")
        else:
            try:
                send_email(config, subject, html_body, plain_body)
            except DeliveryFailure as exc:
                logging.error("Email delivery failed: %s", exc)
                failed = True

    append_run_log(config.run_log_file, now)

    if failed:
        sys.exit(1)

    logging.info("Run complete.")


if __name__ == "__main__":
    main()
