import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional

from bs4 import BeautifulSoup

SLOT_SELECTOR = ".ServiceAppointmentDateTime"
GROUP_CONTROL_SELECTOR = ".DateTimeGrouping-Control"

# Any of these on the page means the location step is behind us.
SLOT_STEP_MARKERS = (
    ".ServiceAppointmentDateTime",
    ".DateTimeGrouping-Control",
    ".DateTimeGrouping-Container",
    ".AppointmentDateTime",
    "[data-datetime]",
    ".appointment-slot",
    ".time-slot",
    "[data-time]",
)

GENERIC_SLOT_SELECTORS = (
    ".appointment-slot", ".time-slot", ".available-time", ".calendar-day.available",
    "[data-time]", "[data-date]", ".booking-slot", ".time-option",
    ".appointment-time", ".available-slot", ".time-button",
    ".calendar-slot", ".time-picker-option",
)

DATE_RX = re.compile(r"(20\d{2}-\d{2}-\d{2})|(\d{1,2}/\d{1,2}/20\d{2})")  # ISO or M/D/YYYY
DATETIME_RX = re.compile(r"(\d{1,2}/\d{1,2}/\d{4})\s+(\d{1,2}:\d{2})(?::\d{2})?\s?(AM|PM|am|pm)")
TIME_RX = re.compile(r"(\d{1,2}:\d{2}\s?(?:AM|PM|am|pm))")


@dataclass
class Slot:
    date: Optional[str]
    time: Optional[str]
    display_text: str
    full_datetime: str = ""
    aria_label: str = ""
    service_id: str = ""
    appointment_type_id: str = ""
    group_title: str = ""
    group_count: str = ""
    selector: str = ""

    @property
    def key(self) -> str:
        return self.full_datetime or f"{self.date} {self.time}"

    def day(self):
        return parse_date(self.date or "")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SlotGroup:
    title: str
    count: str
    expanded: bool
    controls_id: str = ""
    aria_label: str = ""


def parse_date(text: str):
    m = DATE_RX.search(text or "")
    if not m: return None
    s = m.group(0)
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def split_datetime(raw: str):
    """'10/8/2025 9:30:00 AM' -> ('10/8/2025', '9:30 AM')."""
    m = DATETIME_RX.search(raw or "")
    if not m:
        return None, None
    return m.group(1), f"{m.group(2)} {m.group(3).upper()}"


def _text(el) -> str:
    return el.get_text(" ", strip=True) if el is not None else ""


def _classes(el) -> List[str]:
    return el.get("class") or []


def parse_slots(html: str) -> List[Slot]:
    soup = BeautifulSoup(html, "html.parser")
    slots = []
    for el in soup.select(SLOT_SELECTOR):
        raw = el.get("data-datetime") or ""
        text = _text(el)
        classes = _classes(el)
        if not raw or not text or "disabled" in classes or "valid" not in classes:
            continue
        if el.has_attr("disabled"):
            continue
        date, time = split_datetime(raw)
        group = el.find_parent(class_="DateTimeGrouping-Group")
        control = group.select_one(GROUP_CONTROL_SELECTOR) if group is not None else None
        slots.append(Slot(
            date=date,
            time=time,
            display_text=text,
            full_datetime=raw,
            aria_label=el.get("aria-label") or "",
            service_id=el.get("data-serviceid") or "",
            appointment_type_id=el.get("data-appointmenttypeid") or "",
            group_title=_text(control.select_one(".group-title")) if control is not None else "",
            group_count=_text(control.select_one(".group-number")) if control is not None else "",
            selector=f'{SLOT_SELECTOR}[data-datetime="{raw}"]',
        ))
    if slots or soup.select_one(SLOT_SELECTOR) is not None:
        return slots
    return _parse_generic_slots(soup)


def _parse_generic_slots(soup) -> List[Slot]:
    slots = []
    seen = set()
    for el in soup.select(", ".join(GENERIC_SLOT_SELECTORS)):
        if id(el) in seen:
            continue
        seen.add(id(el))
        text = _text(el)
        if not text or "disabled" in _classes(el) or el.has_attr("disabled"):
            continue
        date_m = DATE_RX.search(text)
        time_m = TIME_RX.search(text)
        slots.append(Slot(
            date=el.get("data-date") or (date_m.group(0) if date_m else None),
            time=el.get("data-time") or (time_m.group(1) if time_m else None),
            display_text=text,
        ))
    return slots


def parse_groups(html: str) -> List[SlotGroup]:
    soup = BeautifulSoup(html, "html.parser")
    groups = []
    for control in soup.select(GROUP_CONTROL_SELECTOR):
        groups.append(SlotGroup(
            title=_text(control.select_one(".group-title")),
            count=_text(control.select_one(".group-number")),
            expanded=control.get("aria-pressed") == "true",
            controls_id=control.get("aria-controls") or "",
            aria_label=control.get("aria-label") or "",
        ))
    return groups


def matches_preferences(slot: Slot, start=None, end=None, times=None) -> bool:
    if start or end:
        day = slot.day()
        if day is None:
            return False
        if start and day < start:
            return False
        if end and day > end:
            return False
    if times and slot.time not in times:
        return False
    return True


def earliest(slots: List[Slot]):
    days = sorted(d for d in (s.day() for s in slots) if d)
    return days[0] if days else None


async def has_slot_elements(page) -> bool:
    for sel in SLOT_STEP_MARKERS:
        if await page.query_selector(sel):
            return True
    return False
