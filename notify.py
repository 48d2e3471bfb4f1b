import os, smtplib, ssl, logging, requests
from datetime import datetime, timezone
from email.message import EmailMessage

log = logging.getLogger(__name__)

MAX_LISTED_SLOTS = 10


def notify_telegram(text: str):
    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    chat_id = os.getenv("TELEGRAM_CHAT_ID", "").strip()
    if not token or not chat_id:
        return False
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    try:
        resp = requests.post(url, data={"chat_id": chat_id, "text": text}, timeout=10)
        resp.raise_for_status()
        return True
    except requests.RequestException as e:
        log.error("Telegram alert failed: %s", e)
        return False


def notify_email(subject: str, body: str):
    host = os.getenv("SMTP_HOST", "").strip()
    port = int(os.getenv("SMTP_PORT", "587") or "587")
    user = os.getenv("SMTP_USER", "").strip()
    pwd  = os.getenv("SMTP_PASS", "").strip()
    sender = os.getenv("EMAIL_FROM", "").strip()
    recipient = os.getenv("EMAIL_TO", "").strip()

    if not all([host, port, user, pwd, sender, recipient]):
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = recipient
    msg.set_content(body)

    ctx = ssl.create_default_context()
    try:
        with smtplib.SMTP(host, port, timeout=30) as server:
            server.starttls(context=ctx)
            server.login(user, pwd)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        log.error("Email alert failed: %s", e)
        return False
    return True


def notify_webhook(payload: dict):
    url = os.getenv("WEBHOOK_URL", "").strip()
    if not url:
        return False
    try:
        resp = requests.post(url, json=payload, timeout=10)
        resp.raise_for_status()
        log.info("Webhook sent to %s", url)
        return True
    except requests.RequestException as e:
        log.error("Webhook alert failed: %s", e)
        return False


def format_slots(location_name: str, slots) -> str:
    lines = [f"Found {len(slots)} RMV appointment(s) at {location_name}:", ""]
    for s in slots[:MAX_LISTED_SLOTS]:
        lines.append(f"- {s.date} at {s.time} ({s.group_title or s.display_text})")
    if len(slots) > MAX_LISTED_SLOTS:
        lines.append(f"... and {len(slots) - MAX_LISTED_SLOTS} more")
    return "\n".join(lines)


def push_alert(title: str, body: str, extra: dict = None):
    ok_tg = notify_telegram(f"{title}\n\n{body}")
    ok_em = notify_email(title, body)
    ok_wh = notify_webhook({
        "title": title,
        "body": body,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **(extra or {}),
    })
    return ok_tg or ok_em or ok_wh
