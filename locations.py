"""Service locations: discovery, booking URL templating and location selection."""
import asyncio
import base64
import copy
import json
import logging
import random
import zlib
from dataclasses import asdict, dataclass
from typing import List, Optional
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from cascade import first_success
from slots import has_slot_elements

log = logging.getLogger(__name__)

OFFICE_SELECTOR = ".QflowObjectItem[data-id]"
LOCATION_CONTAINERS = (
    "#f61577d6-d75d-41c5-a6ab-f7a261ba5cfb",
    "#539af26b-8d29-4bcc-9d48-a68591c638ce",
    ".ListView",
)
PROCEED_WORDS = ("continue", "next", "submit", "proceed")


class SelectionFailed(Exception):
    pass


@dataclass
class Location:
    id: str
    name: str
    address: str = ""
    display_name: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


# ──────────────────────────────────────────────────────────────
# Discovery
# ──────────────────────────────────────────────────────────────

def parse_offices(html: str) -> List[Location]:
    soup = BeautifulSoup(html, "html.parser")
    offices = []
    for btn in soup.select(OFFICE_SELECTOR):
        name_el = btn.select_one("h3, .office-name, [class*='name']")
        if name_el is None:
            continue
        addr_el = btn.select_one("p, .office-address, [class*='address']")
        name = name_el.get_text(strip=True) or "Unknown Location"
        offices.append(Location(
            id=btn.get("data-id"),
            name=name,
            address=addr_el.get_text(" ", strip=True) if addr_el is not None else "",
            display_name=name,
        ))
    return offices


def parse_display_data(raw) -> List[Location]:
    """Map the page's `window.displayData` list to Location records."""
    if not isinstance(raw, list):
        return []
    out = []
    for item in raw:
        if not isinstance(item, dict) or item.get("Id") is None:
            continue
        out.append(Location(
            id=str(item["Id"]),
            name=item.get("Name") or "",
            address=item.get("Address") or "",
            display_name=item.get("DisplayName") or item.get("Name") or "",
            latitude=item.get("Latitude"),
            longitude=item.get("Longitude"),
        ))
    return out


def parse_appointment_info(html: str) -> Optional[dict]:
    soup = BeautifulSoup(html, "html.parser")
    section = soup.select_one(".DisplayData")
    if section is None:
        return None
    texts = [t.get_text(strip=True) for t in section.select(".displaydata-text")]
    return {
        "service": texts[0] if len(texts) > 0 and texts[0] else None,
        "appointment_type": texts[1] if len(texts) > 1 and texts[1] else None,
    }


async def discover_locations(page, url: str) -> dict:
    await page.goto(url, wait_until="domcontentloaded", timeout=30000)
    html = await page.content()
    raw = await page.evaluate("() => Array.isArray(window.displayData) ? window.displayData : null")
    from_data = parse_display_data(raw)
    offices = parse_offices(html)
    log.info("Discovered %d displayData locations, %d office buttons", len(from_data), len(offices))
    return {
        "locations": from_data or offices,
        "offices": offices,
        "appointment_info": parse_appointment_info(html),
    }


# ──────────────────────────────────────────────────────────────
# Booking URLs
# ──────────────────────────────────────────────────────────────

def split_booking_url(url: str):
    """Return (base_url, access_token) for a booking link."""
    parts = urlsplit(url)
    qs = parse_qs(parts.query)
    token = (qs.get("AccessToken") or [""])[0]
    base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return base, token


def direct_url_patterns(base_url: str, token: str, location: Location) -> List[str]:
    """Query-string variants observed to (sometimes) skip the location step."""
    lid = location.id
    variants = [
        {"locationId": lid},
        {"StepControls_0__Model_Value": lid, "step": "2"},
        {"StepControls_0__Model_Value": lid, "CurrentStep": "1"},
        {"StepControls_0__Model_Value": lid, "NextStep": "true"},
        {"locationId": lid, "StepControls_0__Model_Value": lid, "step": "2"},
        {"locationId": lid, "StepControls_0__Model_Value": lid, "NextStep": "true", "CurrentStep": "1"},
        {"StepControls_0__Model_Value": lid, "office": location.name, "step": "appointment"},
    ]
    return [f"{base_url}?{urlencode({'AccessToken': token, **v}, quote_via=quote)}" for v in variants]


def decode_form_journey(encoded: str) -> dict:
    # a "+" that went through form decoding comes back as a space
    raw = base64.b64decode(unquote(encoded).replace(" ", "+"))
    # wbits=47 accepts both zlib and gzip headers
    return json.loads(zlib.decompress(raw, 47).decode("utf-8"))


def encode_form_journey(journey: dict) -> str:
    packed = zlib.compress(json.dumps(journey, separators=(",", ":")).encode("utf-8"))
    return base64.b64encode(packed).decode("ascii")


def inject_location(journey: dict, location_id) -> dict:
    out = copy.deepcopy(journey)
    value = str(location_id)
    steps = out.get("StepControls")
    if isinstance(steps, list):
        target = next(
            (s for s in steps if isinstance(s.get("Model"), dict)
             and ("Value" in s["Model"] or "value" in s["Model"])),
            None,
        )
        if target is not None:
            target["Model"]["Value"] = value
            target["Model"]["value"] = value
        else:
            steps.append({"Model": {"Value": value, "value": value}, "StepIndex": 0})
    else:
        out["StepControls"] = [{"Model": {"Value": value, "value": value}, "StepIndex": 0}]

    out["CurrentStep"] = max(out.get("CurrentStep") or 0, 1)
    if "SelectionMade" in out:
        out["SelectionMade"] = True
    return out


def journey_url(base_url: str, token: str, encoded_journey: str, location_id) -> str:
    params = {
        "AccessToken": token,
        "formJourney": encoded_journey,
        "locationId": str(location_id),
        "step": "1",
    }
    return f"{base_url}?{urlencode(params)}"


def location_urls(booking_url: str, location: Location) -> List[str]:
    """Every direct URL worth trying for `location`, formJourney variant first."""
    base, token = split_booking_url(booking_url)
    urls = direct_url_patterns(base, token, location)
    journey = (parse_qs(urlsplit(booking_url).query).get("formJourney") or [""])[0]
    if journey:
        try:
            patched = inject_location(decode_form_journey(journey), location.id)
        except (ValueError, zlib.error) as e:
            log.warning("Could not decode formJourney: %s", e)
        else:
            urls.insert(0, journey_url(base, token, encode_form_journey(patched), location.id))
    return urls


# ──────────────────────────────────────────────────────────────
# Selection
# ──────────────────────────────────────────────────────────────

async def human_pause(low: float, high: float):
    await asyncio.sleep(random.uniform(low, high))


async def click_proceed_button(page) -> Optional[str]:
    """Click the first continue/next/submit-looking control; returns its text."""
    for btn in await page.query_selector_all("button, input[type='submit'], a"):
        info = await btn.evaluate(
            "el => ({text: (el.textContent || el.value || '').trim().toLowerCase(),"
            " type: el.type || '', cls: el.className || '', id: el.id || ''})"
        )
        text = info.get("text") or ""
        is_proceed = (
            any(w in text for w in PROCEED_WORDS)
            or info.get("type") == "submit"
            or "submit" in str(info.get("cls", "")).lower()
            or "submit" in str(info.get("id", "")).lower()
        )
        if is_proceed:
            log.info("Clicking proceed control: %r", text)
            await human_pause(0.5, 1.0)
            await btn.click()
            return text
    return None


async def find_location_element(page, location: Location):
    selectors = [f"{c} .QflowObjectItem[data-id='{location.id}']" for c in LOCATION_CONTAINERS]
    selectors += [
        f".QflowObjectItem[data-id='{location.id}']",
        f"button[data-id='{location.id}']",
        f"[data-id='{location.id}']",
    ]
    for sel in selectors:
        el = await page.query_selector(sel)
        if el:
            log.debug("Location element matched %s", sel)
            return el
    want = location.name.lower()
    for el in await page.query_selector_all(".QflowObjectItem, button[data-id], .location-item"):
        text = ((await el.text_content()) or "").lower()
        if want and want in text:
            return el
    return None


async def select_by_url(page, location: Location, booking_url: str):
    for url in location_urls(booking_url, location):
        try:
            resp = await page.goto(url, timeout=15000)
        except Exception as e:
            log.debug("Pattern failed: %s", e)
            continue
        if resp is None or not resp.ok:
            continue
        await asyncio.sleep(2)
        if await has_slot_elements(page):
            return url
        if await click_proceed_button(page) is not None:
            await asyncio.sleep(3)
            if await has_slot_elements(page):
                return url
    raise SelectionFailed("no URL pattern reached the appointment step")


async def select_by_click(page, location: Location, booking_url: str = ""):
    if booking_url:
        await page.goto(booking_url, wait_until="domcontentloaded", timeout=30000)
    await human_pause(1, 3)
    el = await find_location_element(page, location)
    if el is None:
        raise SelectionFailed(f"location element not found for {location.name} ({location.id})")
    box = await el.bounding_box()
    if box:
        x = box["x"] + box["width"] * random.uniform(0.3, 0.7)
        y = box["y"] + box["height"] * random.uniform(0.3, 0.7)
        await page.mouse.move(x - 10, y - 10)
        await human_pause(0.1, 0.3)
        await page.mouse.move(x, y)
        await human_pause(0.05, 0.15)
    await el.click()
    log.info("Clicked location: %s", location.name)
    await human_pause(2, 3)
    if not await has_slot_elements(page):
        raise SelectionFailed("still on the location step after clicking")
    return "clicked"


async def select_by_submit(page, location: Location):
    await asyncio.sleep(1.5)
    text = await click_proceed_button(page)
    if text is None:
        raise SelectionFailed("no proceed button found")
    await asyncio.sleep(3)
    if not await has_slot_elements(page):
        raise SelectionFailed(f"button {text!r} did not reach the appointment step")
    return text


@dataclass(frozen=True)
class _Phase:
    name: str
    run: object


async def select_location(page, location: Location, booking_url: str) -> str:
    """Move the booking flow past the location step; returns the method that worked."""
    phases = [
        _Phase("url_pattern", lambda: select_by_url(page, location, booking_url)),
        _Phase("stealth_click", lambda: select_by_click(page, location, booking_url)),
        _Phase("submit_button", lambda: select_by_submit(page, location)),
    ]

    async def run(phase):
        await phase.run()
        return phase.name

    return await first_success(phases, run)
