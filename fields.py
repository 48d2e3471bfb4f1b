"""Guess which personal-data field a raw form input holds.

The booking flow's customer-information step renders the user's own details
as pre-filled inputs, mixed in with hidden inputs carrying opaque tokens.
Nothing labels them reliably, so each input is judged on its name/id/class
substrings and on the shape of its value.
"""
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

PHONE_RX = re.compile(r"^\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}$")
TOKEN_RX = re.compile(r"^[A-Za-z0-9_-]{30,}$")
EMAIL_RX = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

MAX_VALUE_LEN = 200
MAX_NAME_LEN = 50
MAX_EMAIL_LEN = 100
MAX_PHONE_LEN = 30

FIELDS = ("first_name", "last_name", "email", "phone")
SKIP_TYPES = {"submit", "button", "reset", "image", "checkbox", "radio"}


@dataclass
class InputRecord:
    name: str = ""
    id: str = ""
    classes: str = ""
    type: str = ""
    value: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "InputRecord":
        return cls(
            name=d.get("name") or "",
            id=d.get("id") or "",
            classes=d.get("classes") or d.get("className") or "",
            type=d.get("type") or "",
            value=d.get("value") or "",
        )

    @property
    def attr_text(self) -> str:
        return f"{self.name} {self.id} {self.classes}".lower()

    @property
    def selector(self) -> str:
        if self.id:
            return f"#{self.id}"
        if self.classes.strip():
            return "." + ".".join(self.classes.split())
        if self.name:
            return f"input[name='{self.name}']"
        return "input"


@dataclass
class FoundField:
    field: str
    value: str
    selector: str
    method: str


@dataclass
class PersonalData:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    found: List[FoundField] = field(default_factory=list)
    source_url: str = ""
    page_title: str = ""
    method: str = "field_classifier"
    extracted_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    total_inputs: int = 0
    inputs_with_values: int = 0

    def has_any_data(self) -> bool:
        return any(getattr(self, f) for f in FIELDS)

    def missing(self) -> List[str]:
        return [f for f in FIELDS if not getattr(self, f)]

    def to_dict(self) -> dict:
        return asdict(self)


def looks_like_token(value: str) -> bool:
    return len(value) >= MAX_PHONE_LEN or bool(TOKEN_RX.match(value))


def is_readable_phone(value: str) -> bool:
    if PHONE_RX.match(value):
        return True
    digits = re.sub(r"\D", "", value)
    return len(digits) == 10 and len(value) < 15


def _has(attrs: str, *keys: str) -> bool:
    return any(k in attrs for k in keys)


def classify(rec: InputRecord, skip=()) -> Optional[str]:
    """Return the field `rec` most likely holds, or None.

    Fields named in `skip` (already filled) are not considered.
    """
    value = (rec.value or "").strip()
    if not value or len(value) > MAX_VALUE_LEN:
        return None
    if rec.type.lower() in SKIP_TYPES:
        return None
    attrs = rec.attr_text

    if "first_name" not in skip and len(value) < MAX_NAME_LEN and _has(attrs, "firstname", "first"):
        return "first_name"
    if "last_name" not in skip and len(value) < MAX_NAME_LEN and _has(attrs, "lastname", "last"):
        return "last_name"
    if "email" not in skip and "@" in value and "." in value and len(value) < MAX_EMAIL_LEN:
        return "email"
    if "phone" not in skip and not looks_like_token(value):
        if is_readable_phone(value) or _has(attrs, "telnumber1", "phone", "tel"):
            return "phone"
    return None


def _method_for(name: str, rec: InputRecord) -> str:
    if name == "phone":
        return "readable_phone_input" if is_readable_phone(rec.value.strip()) else "phone_attribute"
    return "input_field"


def extract_fields(inputs: Iterable, page_text: str = "", source_url: str = "", page_title: str = "") -> PersonalData:
    """Run the classifier over every input; first match per field wins."""
    data = PersonalData(source_url=source_url, page_title=page_title)
    filled = set()
    for raw in inputs:
        rec = raw if isinstance(raw, InputRecord) else InputRecord.from_dict(raw)
        data.total_inputs += 1
        value = (rec.value or "").strip()
        if not value:
            continue
        data.inputs_with_values += 1
        name = classify(rec, skip=filled)
        if name is None:
            continue
        setattr(data, name, value)
        filled.add(name)
        data.found.append(FoundField(name, value, rec.selector, _method_for(name, rec)))

    if not data.email and page_text:
        m = EMAIL_RX.search(page_text)
        if m:
            data.email = m.group(0)
            data.found.append(FoundField("email", m.group(0), "text-content", "text_scan"))
    return data
