import os
import logging
from datetime import datetime
from dotenv import load_dotenv

load_dotenv()

RMV_HOST = "rmvmassdotappt.cxmflow.com"

BOOKING_URL = os.getenv("BOOKING_URL", "").strip()
LOCATION_IDS = [k.strip() for k in os.getenv("LOCATION_IDS", "").split(",") if k.strip()]
PREFERRED_TIMES = [t.strip() for t in os.getenv("PREFERRED_TIMES", "").split(",") if t.strip()]

CHECK_INTERVAL = int(os.getenv("CHECK_INTERVAL_SECONDS", "0") or "0")
JITTER = int(os.getenv("RANDOM_SLEEP_JITTER", "0") or "0")
HEADLESS = os.getenv("HEADLESS", "1").strip().lower() not in ("0", "false", "no")

SERVER_PORT = int(os.getenv("SERVER_PORT", "9877") or "9877")
SEEN_SLOTS_PATH = os.getenv("SEEN_SLOTS_PATH", "seen_slots.json").strip()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
LOG_FILE = os.getenv("LOG_FILE", "").strip()


def parse_target_date(raw: str):
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        return None


TARGET_DATE = parse_target_date(os.getenv("EARLIEST_TARGET_DATE", ""))
START_DATE = parse_target_date(os.getenv("START_DATE", ""))


def configure_logging(level: str = LOG_LEVEL, log_file: str = LOG_FILE):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def is_rmv_url(url: str) -> bool:
    return RMV_HOST in (url or "")
