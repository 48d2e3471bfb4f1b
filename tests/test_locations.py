import asyncio
import base64
import gzip
import json
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest
from playwright.async_api import Error as PwError

import locations
from cascade import CascadeFailed
from locations import (
    Location, SelectionFailed, decode_form_journey, direct_url_patterns, encode_form_journey,
    inject_location, journey_url, location_urls, parse_appointment_info, parse_display_data, parse_offices,
    LOCATION_CONTAINERS, click_proceed_button, discover_locations, find_location_element, select_by_click,
    select_by_submit, select_by_url, select_location, split_booking_url,
)
from tests.conftest import DomPage, FakeElement, FakeResponse

FIXTURES = Path(__file__).parent / "fixtures"
BASE = "https://rmvmassdotappt.cxmflow.com/Appointment/Index/2c052fc7-571f-4b76-9790-7e91f103c408"
TOKEN = "cd490506-57d2-44f0-a546-7499978c89bb"


def location_html():
    return (FIXTURES / "location_step.html").read_text(encoding="utf-8")


def test_parse_offices_skips_buttons_without_a_name():
    offices = parse_offices(location_html())
    assert [(o.id, o.name) for o in offices] == [("27", "Haverhill"), ("12", "Brockton")]
    assert offices[1].address == "490 Forest Avenue, Brockton, MA 02301"


def test_parse_display_data():
    raw = [
        {"Id": 27, "Name": "Haverhill", "DisplayName": "Haverhill RMV", "Address": "4 Summer St",
         "Latitude": 42.77, "Longitude": -71.08},
        {"Id": 12, "Name": "Brockton"},
        {"Name": "missing id"},
        "junk",
    ]
    locs = parse_display_data(raw)
    assert [(l.id, l.display_name) for l in locs] == [("27", "Haverhill RMV"), ("12", "Brockton")]
    assert locs[0].latitude == 42.77
    assert parse_display_data(None) == []


def test_parse_appointment_info():
    assert parse_appointment_info(location_html()) == {
        "service": "Driver's License",
        "appointment_type": "Road Test",
    }
    assert parse_appointment_info("<html></html>") is None


def test_split_booking_url():
    base, token = split_booking_url(f"{BASE}?AccessToken={TOKEN}&foo=1")
    assert base == BASE
    assert token == TOKEN
    assert split_booking_url(BASE) == (BASE, "")


def test_direct_url_patterns():
    urls = direct_url_patterns(BASE, TOKEN, Location(id="27", name="North Adams"))
    assert len(urls) == 7
    assert urls[0] == f"{BASE}?AccessToken={TOKEN}&locationId=27"
    assert all(u.startswith(f"{BASE}?AccessToken={TOKEN}&") for u in urls)
    last = parse_qs(urlsplit(urls[-1]).query)
    assert last["office"] == ["North Adams"]
    assert last["step"] == ["appointment"]
    assert "%20" in urls[-1]


def test_form_journey_round_trip():
    journey = {"CurrentStep": 0, "StepControls": [{"Model": {"Value": ""}}]}
    assert decode_form_journey(encode_form_journey(journey)) == journey


def test_decode_accepts_gzip_and_url_quoting():
    journey = {"CurrentStep": 2}
    encoded = base64.b64encode(gzip.compress(json.dumps(journey).encode())).decode()
    quoted = encoded.replace("+", "%2B").replace("/", "%2F").replace("=", "%3D")
    assert decode_form_journey(quoted) == journey


def test_inject_location_updates_existing_step_without_mutating():
    journey = {
        "CurrentStep": 0,
        "SelectionMade": False,
        "StepControls": [{"Label": "intro"}, {"Model": {"Value": ""}, "StepIndex": 0}],
    }
    out = inject_location(journey, 27)
    assert out["StepControls"][1]["Model"] == {"Value": "27", "value": "27"}
    assert out["CurrentStep"] == 1
    assert out["SelectionMade"] is True
    assert journey["StepControls"][1]["Model"] == {"Value": ""}
    assert journey["CurrentStep"] == 0


def test_inject_location_adds_missing_structure():
    out = inject_location({}, "12")
    assert out["StepControls"] == [{"Model": {"Value": "12", "value": "12"}, "StepIndex": 0}]
    assert out["CurrentStep"] == 1
    assert "SelectionMade" not in out

    out = inject_location({"StepControls": [{"Label": "x"}], "CurrentStep": 3}, "12")
    assert out["StepControls"][-1]["Model"]["Value"] == "12"
    assert out["CurrentStep"] == 3


def test_journey_url():
    url = journey_url(BASE, TOKEN, "abc+/=", 27)
    qs = parse_qs(urlsplit(url).query)
    assert qs == {"AccessToken": [TOKEN], "formJourney": ["abc+/="], "locationId": ["27"], "step": ["1"]}


def test_select_location_falls_through_phases(monkeypatch):
    calls = []

    async def url_phase(page, location, booking_url):
        calls.append("url")
        raise SelectionFailed("still on location step")

    async def click_phase(page, location, booking_url=""):
        calls.append("click")
        return "clicked"

    async def submit_phase(page, location):
        calls.append("submit")
        return "next"

    monkeypatch.setattr(locations, "select_by_url", url_phase)
    monkeypatch.setattr(locations, "select_by_click", click_phase)
    monkeypatch.setattr(locations, "select_by_submit", submit_phase)

    method = asyncio.run(select_location(object(), Location(id="27", name="Haverhill"), BASE))
    assert method == "stealth_click"
    assert calls == ["url", "click"]


def test_select_location_reports_every_phase_failure(monkeypatch):
    async def fail(*args, **kwargs):
        raise SelectionFailed("nope")

    for name in ("select_by_url", "select_by_click", "select_by_submit"):
        monkeypatch.setattr(locations, name, fail)

    with pytest.raises(CascadeFailed) as exc:
        asyncio.run(select_location(object(), Location(id="27", name="Haverhill"), BASE))
    assert [n for n, _ in exc.value.errors] == ["url_pattern", "stealth_click", "submit_button"]


def test_location_urls_without_form_journey():
    urls = location_urls(f"{BASE}?AccessToken={TOKEN}", Location(id="27", name="Haverhill"))
    assert urls == direct_url_patterns(BASE, TOKEN, Location(id="27", name="Haverhill"))


def test_location_urls_puts_patched_journey_first():
    journey = encode_form_journey({"CurrentStep": 0, "StepControls": [{"Model": {"Value": ""}}]})
    booking = journey_url(BASE, TOKEN, journey, "")
    urls = location_urls(booking, Location(id="27", name="Haverhill"))
    assert len(urls) == 8
    qs = parse_qs(urlsplit(urls[0]).query)
    assert qs["locationId"] == ["27"]
    patched = decode_form_journey(qs["formJourney"][0])
    assert patched["StepControls"][0]["Model"]["Value"] == "27"
    assert patched["CurrentStep"] == 1


def test_location_urls_ignores_garbage_journey():
    urls = location_urls(f"{BASE}?AccessToken={TOKEN}&formJourney=not-base64!!", Location(id="27", name="X"))
    assert len(urls) == 7


HAVERHILL = Location(id="27", name="Haverhill")
SLOT_MARKER = ".ServiceAppointmentDateTime"
PROCEED_CONTROLS = "button, input[type='submit'], a"


def reveal_slots(page):
    return lambda: page.elements.setdefault(SLOT_MARKER, []).append(FakeElement("9:30 AM"))


def test_discover_locations_prefers_display_data():
    page = DomPage(html=location_html(), display_data=[{"Id": 27, "Name": "Haverhill", "DisplayName": "Haverhill RMV"}])
    found = asyncio.run(discover_locations(page, BASE))
    assert page.gotos == [BASE]
    assert [loc.display_name for loc in found["locations"]] == ["Haverhill RMV"]
    assert [o.id for o in found["offices"]] == ["27", "12"]
    assert found["appointment_info"]["appointment_type"] == "Road Test"


def test_discover_locations_falls_back_to_office_buttons():
    page = DomPage(html=location_html())
    found = asyncio.run(discover_locations(page, BASE))
    assert [loc.id for loc in found["locations"]] == ["27", "12"]


def test_find_location_element_by_container_then_by_name():
    el = FakeElement("Haverhill")
    page = DomPage({f"{LOCATION_CONTAINERS[0]} .QflowObjectItem[data-id='27']": [el]})
    assert asyncio.run(find_location_element(page, HAVERHILL)) is el

    named = FakeElement("Haverhill RMV Service Center")
    page = DomPage({".QflowObjectItem, button[data-id], .location-item": [FakeElement("Brockton"), named]})
    assert asyncio.run(find_location_element(page, HAVERHILL)) is named

    assert asyncio.run(find_location_element(DomPage(), HAVERHILL)) is None


def test_click_proceed_button_matches_words_type_and_class():
    back, go = FakeElement("Back"), FakeElement("Go", info={"cls": "btn btn-submit"})
    page = DomPage({PROCEED_CONTROLS: [back, go]})
    assert asyncio.run(click_proceed_button(page)) == "go"
    assert (back.clicks, go.clicks) == (0, 1)

    submit = FakeElement("", info={"type": "submit"})
    assert asyncio.run(click_proceed_button(DomPage({PROCEED_CONTROLS: [submit]}))) == ""
    assert asyncio.run(click_proceed_button(DomPage({PROCEED_CONTROLS: [back]}))) is None


def test_select_by_url_skips_broken_patterns(no_sleep):
    urls = location_urls(f"{BASE}?AccessToken={TOKEN}", HAVERHILL)
    page = DomPage(responses={urls[0]: PwError("net::ERR_ABORTED"), urls[1]: FakeResponse(404)})
    page.elements[PROCEED_CONTROLS] = [FakeElement("Back"), FakeElement("Continue", on_click=reveal_slots(page))]

    assert asyncio.run(select_by_url(page, HAVERHILL, f"{BASE}?AccessToken={TOKEN}")) == urls[2]
    assert page.gotos == urls[:3]


def test_select_by_url_fails_when_no_pattern_reaches_slots(no_sleep):
    page = DomPage()
    with pytest.raises(SelectionFailed):
        asyncio.run(select_by_url(page, HAVERHILL, f"{BASE}?AccessToken={TOKEN}"))
    assert len(page.gotos) == 7


def test_select_by_click_moves_the_mouse_then_clicks(no_sleep):
    page = DomPage()
    el = FakeElement("Haverhill", box={"x": 100, "y": 200, "width": 80, "height": 40}, on_click=reveal_slots(page))
    page.elements[".QflowObjectItem[data-id='27']"] = [el]

    assert asyncio.run(select_by_click(page, HAVERHILL, BASE)) == "clicked"
    assert page.gotos == [BASE]
    assert el.clicks == 1
    assert len(page.mouse.moves) == 2
    x, y = page.mouse.moves[1]
    assert 124 <= x <= 156 and 212 <= y <= 228


def test_select_by_click_failures(no_sleep):
    with pytest.raises(SelectionFailed, match="not found"):
        asyncio.run(select_by_click(DomPage(), HAVERHILL))

    page = DomPage({".QflowObjectItem[data-id='27']": [FakeElement("Haverhill")]})
    with pytest.raises(SelectionFailed, match="still on the location step"):
        asyncio.run(select_by_click(page, HAVERHILL))


def test_select_by_submit(no_sleep):
    page = DomPage()
    page.elements[PROCEED_CONTROLS] = [FakeElement("Next", on_click=reveal_slots(page))]
    assert asyncio.run(select_by_submit(page, HAVERHILL)) == "next"

    with pytest.raises(SelectionFailed, match="no proceed button"):
        asyncio.run(select_by_submit(DomPage(), HAVERHILL))

    stuck = DomPage({PROCEED_CONTROLS: [FakeElement("Submit")]})
    with pytest.raises(SelectionFailed, match="did not reach"):
        asyncio.run(select_by_submit(stuck, HAVERHILL))
