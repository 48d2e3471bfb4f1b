"""Pull the user's own pre-filled details out of the booking flow.

Usage:
    python extractor.py "https://rmvmassdotappt.cxmflow.com/Appointment/Index/...?AccessToken=..."
    python extractor.py URL --json
"""
import argparse
import asyncio
import json
import logging
from typing import Optional, Sequence

from playwright.async_api import Error as PwError, async_playwright

import settings
from cascade import (
    LAUNCH_CONFIGS, LaunchConfig, check_connectivity, first_success, load_with_retries, open_page,
)
from fields import PersonalData, extract_fields
from locations import OFFICE_SELECTOR

log = logging.getLogger(__name__)

COLLECT_INPUTS_JS = """
() => Array.from(document.querySelectorAll('input')).map(el => ({
    name: el.name || '',
    id: el.id || '',
    classes: typeof el.className === 'string' ? el.className : '',
    type: (el.type || '').toLowerCase(),
    value: el.value || ''
}))
"""

OPEN_SLOT_SELECTOR = ".ServiceAppointmentDateTime[data-datetime]:not(.disabled)"
EXPANDABLE_SELECTOR = '.DateTimeGrouping-Control, [class*="expand"], [class*="toggle"]'
MAX_SLOT_TRIES = 5
MAX_SLOT_RETRIES = 10
MAX_EXTRA_EXPANDS = 3
MAX_BASIC_CLICKS = 3


class NoSlotSelected(Exception):
    pass


async def collect_inputs(page) -> list:
    return await page.evaluate(COLLECT_INPUTS_JS)


async def read_fields(page, method: str) -> PersonalData:
    inputs = await collect_inputs(page)
    try:
        text = await page.inner_text("body")
    except Exception:
        text = ""
    data = extract_fields(inputs, page_text=text, source_url=page.url, page_title=await page.title())
    data.method = method
    log.info("Read %d inputs (%d with values), found: %s",
             data.total_inputs, data.inputs_with_values,
             ", ".join(f.field for f in data.found) or "nothing")
    return data


async def _is_visible(el) -> bool:
    return await el.evaluate("el => el.offsetParent !== null && !el.disabled")


async def pick_office(page, location_id: Optional[str] = None) -> bool:
    sel = f".QflowObjectItem[data-id='{location_id}']" if location_id else OFFICE_SELECTOR
    office = await page.query_selector(sel)
    if office is None:
        return False
    await office.evaluate("el => el.click()")
    await asyncio.sleep(4)
    log.info("Office selected")
    return True


async def expand_available_groups(page):
    """Open 'N Available' time groups until some slot becomes visible."""
    controls = await page.query_selector_all(".DateTimeGrouping-Control")
    log.info("Found %d time period controls", len(controls))
    for i, control in enumerate(controls):
        try:
            text = ((await control.text_content()) or "").strip()
            if "available" not in text.lower():
                continue
            log.info("Expanding time section %d: %r", i + 1, text)
            await control.evaluate("el => el.click()")
        except PwError as e:
            log.warning("Failed to expand time section %d: %s", i + 1, e)
            continue
        await asyncio.sleep(3)
        visible = await page.eval_on_selector_all(
            OPEN_SLOT_SELECTOR, "els => els.filter(el => el.offsetParent !== null).length"
        )
        if visible:
            return visible
    return 0


async def expand_more_sections(page) -> int:
    """Second pass: any expand/toggle control that mentions availability."""
    expanded = 0
    for control in (await page.query_selector_all(EXPANDABLE_SELECTOR))[:MAX_EXTRA_EXPANDS]:
        try:
            text = ((await control.text_content()) or "").strip()
            if "available" not in text.lower():
                continue
            log.info("Trying to expand: %r", text[:30])
            await control.evaluate("el => el.click()")
        except PwError as e:
            log.debug("Expand failed: %s", e)
            continue
        expanded += 1
        await asyncio.sleep(2)
    return expanded


async def pick_first_slot(page, limit: int = MAX_SLOT_TRIES) -> bool:
    for i, slot in enumerate((await page.query_selector_all(OPEN_SLOT_SELECTOR))[:limit]):
        try:
            if not await _is_visible(slot):
                continue
            log.info("Clicking appointment %d", i + 1)
            await slot.evaluate("el => el.click()")
        except PwError as e:
            # groups re-render while expanding and detach earlier handles
            log.warning("Failed to select appointment %d: %s", i + 1, e)
            continue
        await asyncio.sleep(4)
        return True
    return False


async def click_next(page) -> bool:
    for btn in await page.query_selector_all("button"):
        text = ((await btn.text_content()) or "").strip().lower()
        if "next" in text and await _is_visible(btn):
            log.info("Clicking Next: %r", text)
            await btn.evaluate("el => el.click()")
            await asyncio.sleep(4)
            return True
    return False


async def walk_to_customer_info(page, location_id: Optional[str] = None):
    """location -> time slot -> customer info."""
    await pick_office(page, location_id)
    await expand_available_groups(page)
    if not await pick_first_slot(page):
        log.warning("No appointment selected, expanding more sections")
        await expand_more_sections(page)
        if not await pick_first_slot(page, limit=MAX_SLOT_RETRIES):
            raise NoSlotSelected("No appointment selected; cannot reach the customer information step")
    if not await click_next(page):
        log.warning("No Next button found after picking a slot")


async def try_basic_navigation(page) -> PersonalData:
    for el in (await page.query_selector_all("button, a, .QflowObjectItem"))[:MAX_BASIC_CLICKS]:
        try:
            text = ((await el.text_content()) or "").strip()
            if not text or len(text) >= 100:
                continue
            log.info("Trying to click: %r", text)
            await el.click()
            await asyncio.sleep(3)
            data = await read_fields(page, "basic_navigation")
            if data.has_any_data():
                return data
        except Exception as e:
            log.warning("Click attempt failed: %s", e)
    return await read_fields(page, "basic_navigation")


async def extract_on_page(page, url: str, location_id: Optional[str] = None) -> PersonalData:
    await load_with_retries(page, url)
    log.info("Page title: %s", await page.title())

    data = await read_fields(page, "direct")
    if data.has_any_data():
        return data

    try:
        await walk_to_customer_info(page, location_id)
    except (NoSlotSelected, PwError) as e:
        log.warning("Booking flow stopped: %s", e)
    else:
        data = await read_fields(page, "booking_flow")
        if data.has_any_data():
            return data

    return await try_basic_navigation(page)


async def extract_personal_data(url: str, configs: Sequence[LaunchConfig] = LAUNCH_CONFIGS,
                                location_id: Optional[str] = None,
                                headless: Optional[bool] = None) -> PersonalData:
    """Try each launch configuration until one reaches the customer-info fields.

    Raises cascade.CascadeFailed when every configuration fails.
    """
    log.info("Starting personal data extraction: %s", url)
    async with async_playwright() as p:

        async def attempt(config):
            async with open_page(p.chromium, config, headless=headless) as page:
                return await extract_on_page(page, url, location_id)

        return await first_success(configs, attempt, pause=2)


async def check_network():
    async with async_playwright() as p:
        await check_connectivity(p.chromium)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Extract pre-filled personal data from an RMV booking link")
    parser.add_argument("url", nargs="?", default=settings.BOOKING_URL)
    parser.add_argument("--location", help="location data-id to pick in the booking flow")
    parser.add_argument("--json", action="store_true", help="print the full record as JSON")
    parser.add_argument("--headed", action="store_true")
    parser.add_argument("--check-network", action="store_true",
                        help="make sure the RMV host is reachable before extracting")
    args = parser.parse_args(argv)

    settings.configure_logging()
    if not args.url:
        raise SystemExit("Pass a booking URL or set BOOKING_URL in .env")
    if not settings.is_rmv_url(args.url):
        raise SystemExit(f"Not an RMV booking URL (expected {settings.RMV_HOST})")
    if args.check_network:
        asyncio.run(check_network())

    data = asyncio.run(extract_personal_data(
        args.url, location_id=args.location, headless=False if args.headed else settings.HEADLESS,
    ))
    if args.json:
        print(json.dumps(data.to_dict(), indent=2))
    else:
        print(f"First Name: {data.first_name or 'Not found'}")
        print(f"Last Name:  {data.last_name or 'Not found'}")
        print(f"Email:      {data.email or 'Not found'}")
        print(f"Phone:      {data.phone or 'Not found'}")


if __name__ == "__main__":
    main()
