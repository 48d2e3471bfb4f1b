import asyncio, json, logging, os, random
from datetime import date, datetime

from playwright.async_api import async_playwright, Error as PwError

import settings
from cascade import STANDARD, CascadeFailed, open_page
from locations import Location, SelectionFailed, discover_locations, select_location
from notify import format_slots, push_alert
from slots import earliest, matches_preferences, parse_date, parse_groups, parse_slots

log = logging.getLogger(__name__)

PAUSE_BETWEEN_LOCATIONS = 3


def load_seen(path: str) -> set:
    if not path or not os.path.exists(path):
        return set()
    with open(path, "r", encoding="utf-8") as f:
        return set(json.load(f))


def prune_seen(seen: set, today: date) -> set:
    """Drop keys for slots dated before `today`; keys without a date are kept."""
    kept = set()
    for key in seen:
        day = parse_date(key.partition("|")[2])
        if day is None or day >= today:
            kept.add(key)
    return kept


def save_seen(path: str, seen: set, today: date = None):
    if not path:
        return
    seen = prune_seen(seen, today or date.today())
    with open(path, "w", encoding="utf-8") as f:
        json.dump(sorted(seen), f, indent=2)


def slot_key(location_id: str, slot) -> str:
    return f"{location_id}|{slot.key}"


async def check_location(page, booking_url: str, location: Location, prefs: dict) -> dict:
    await page.goto(booking_url, wait_until="domcontentloaded", timeout=45000)
    method = await select_location(page, location, booking_url)
    html = await page.content()
    found = parse_slots(html)
    wanted = [s for s in found if matches_preferences(s, **prefs)]
    log.info("%s: %d slots, %d match preferences (via %s)", location.name, len(found), len(wanted), method)
    for g in parse_groups(html):
        log.debug("  %s: %s (expanded: %s)", g.title, g.count, g.expanded)
    return {"location": location, "method": method, "slots": wanted, "total": len(found)}


async def check_once(booking_url: str = None, location_ids=None, prefs: dict = None):
    booking_url = booking_url or settings.BOOKING_URL
    location_ids = location_ids if location_ids is not None else settings.LOCATION_IDS
    prefs = prefs if prefs is not None else {
        "start": settings.START_DATE,
        "end": settings.TARGET_DATE,
        "times": settings.PREFERRED_TIMES,
    }
    results = []
    async with async_playwright() as p:
        async with open_page(p.chromium, STANDARD, headless=settings.HEADLESS) as page:
            try:
                discovered = await discover_locations(page, booking_url)
            except PwError as e:
                log.error("Could not open booking page: %s", e)
                return {"ok": False, "error": f"Could not open booking page: {e}", "results": []}

            locations = discovered["locations"]
            if location_ids:
                locations = [loc for loc in locations if loc.id in location_ids]
                known = {loc.id for loc in locations}
                locations += [Location(id=i, name=f"location {i}") for i in location_ids if i not in known]
            if not locations:
                return {"ok": False, "error": "No locations found on booking page", "results": []}

            for loc in locations:
                try:
                    results.append(await check_location(page, booking_url, loc, prefs))
                except (SelectionFailed, CascadeFailed, PwError) as e:
                    log.error("%s: %s", loc.name, e)
                    results.append({"location": loc, "error": str(e), "slots": [], "total": 0})
                await asyncio.sleep(PAUSE_BETWEEN_LOCATIONS)

    return {"ok": True, "results": results}


def alerts_for(res: dict, seen: set, target_date=None):
    """Yield (location, new_slots) for slots not in `seen` that are early enough."""
    for r in res.get("results", []):
        loc = r["location"]
        new = [s for s in r.get("slots", []) if slot_key(loc.id, s) not in seen]
        if not new:
            continue
        first = earliest(new)
        if target_date and (first is None or first > target_date):
            log.info("%s: new slots, but earliest %s is after target %s", loc.name, first, target_date)
            continue
        yield loc, new


async def run_cycle():
    res = await check_once()
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    if not res.get("ok"):
        log.error("[%s] ERROR: %s", now, res.get("error"))
        return res

    seen = load_seen(settings.SEEN_SLOTS_PATH)
    sent = 0
    for loc, new in alerts_for(res, seen, settings.TARGET_DATE):
        body = format_slots(loc.display_name or loc.name, new)
        extra = {"location": loc.to_dict(), "slots": [s.to_dict() for s in new]}
        if push_alert("RMV Appointments Available", body, extra):
            log.info("[%s] ALERT sent for %s. Earliest: %s", now, loc.name, earliest(new))
            seen.update(slot_key(loc.id, s) for s in new)
            sent += 1
        else:
            log.warning("[%s] ALERT FAILED to send for %s", now, loc.name)
    save_seen(settings.SEEN_SLOTS_PATH, seen)
    if not sent:
        log.info("[%s] No new matching appointments", now)
    return res


async def main_loop():
    while True:
        await run_cycle()
        if settings.CHECK_INTERVAL <= 0:
            break
        sleep_s = settings.CHECK_INTERVAL + random.randint(0, settings.JITTER)
        await asyncio.sleep(sleep_s)


if __name__ == "__main__":
    settings.configure_logging()
    if not settings.BOOKING_URL:
        raise SystemExit("Set BOOKING_URL in .env")
    asyncio.run(main_loop())
