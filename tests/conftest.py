import pytest


class FakeResponse:
    def __init__(self, status=200):
        self.status = status

    @property
    def ok(self):
        return 200 <= self.status < 300


class FakePage:
    """Just enough of a Playwright page for navigation code."""

    def __init__(self, outcomes=None):
        # wait_until strategy -> FakeResponse or exception to raise
        self.outcomes = outcomes or {}
        self.gotos = []
        self.handlers = {}
        self.url = "about:blank"

    def on(self, event, fn):
        self.handlers[event] = fn

    async def goto(self, url, wait_until=None, timeout=None):
        self.gotos.append((url, wait_until, timeout))
        outcome = self.outcomes.get(wait_until, FakeResponse())
        if isinstance(outcome, Exception):
            raise outcome
        self.url = url
        return outcome


class FakeContext:
    def __init__(self, page):
        self.page = page

    async def new_page(self):
        return self.page


class FakeBrowser:
    def __init__(self, page, fail_context=False):
        self.page = page
        self.fail_context = fail_context
        self.closed = False
        self.context_options = None

    async def new_context(self, **opts):
        if self.fail_context:
            raise RuntimeError("context refused")
        self.context_options = opts
        return FakeContext(self.page)

    async def close(self):
        self.closed = True


class FakeBrowserType:
    def __init__(self, fail_context=False):
        self.fail_context = fail_context
        self.browsers = []
        self.launch_calls = []

    async def launch(self, headless=True, args=None):
        self.launch_calls.append({"headless": headless, "args": args})
        browser = FakeBrowser(FakePage(), fail_context=self.fail_context)
        self.browsers.append(browser)
        return browser


@pytest.fixture
def browser_type():
    return FakeBrowserType()


@pytest.fixture
def no_sleep(monkeypatch):
    import asyncio
    slept = []

    async def fake_sleep(seconds, *args, **kwargs):
        slept.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return slept


class FakePlaywright:
    def __init__(self, browser_type):
        self.chromium = browser_type

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeElement:
    """An element handle; `on_click` runs whenever the element is clicked."""

    def __init__(self, text="", visible=True, on_click=None, info=None, box=None, error=None):
        self.text = text
        self.visible = visible
        self.on_click = on_click
        self.info = info or {}
        self.box = box
        self.error = error
        self.clicks = 0

    async def text_content(self):
        if self.error:
            raise self.error
        return self.text

    async def evaluate(self, script):
        if self.error:
            raise self.error
        if "click()" in script:
            return await self.click()
        if "offsetParent" in script:
            return self.visible
        return {"text": self.text.strip().lower(), "type": "", "cls": "", "id": "", **self.info}

    async def click(self):
        self.clicks += 1
        if self.on_click:
            self.on_click()

    async def bounding_box(self):
        return self.box


class FakeMouse:
    def __init__(self):
        self.moves = []

    async def move(self, x, y):
        self.moves.append((x, y))


class DomPage:
    """A page whose DOM is a mapping of exact selector strings to FakeElements."""

    def __init__(self, elements=None, inputs=None, html="", body="", responses=None, display_data=None):
        self.elements = elements or {}
        self.inputs = inputs or []
        self.html = html
        self.body = body
        # url -> FakeResponse or exception to raise
        self.responses = responses or {}
        self.display_data = display_data
        self.gotos = []
        self.mouse = FakeMouse()
        self.url = "https://rmvmassdotappt.cxmflow.com/Appointment/Index/x"

    async def goto(self, url, wait_until=None, timeout=None):
        self.gotos.append(url)
        outcome = self.responses.get(url, FakeResponse())
        if isinstance(outcome, Exception):
            raise outcome
        self.url = url
        return outcome

    async def query_selector(self, selector):
        found = self.elements.get(selector) or []
        return found[0] if found else None

    async def query_selector_all(self, selector):
        return list(self.elements.get(selector, []))

    async def eval_on_selector_all(self, selector, script):
        return sum(1 for el in self.elements.get(selector, []) if el.visible)

    async def evaluate(self, script):
        if "displayData" in script:
            return self.display_data
        return self.inputs

    async def content(self):
        return self.html

    async def inner_text(self, selector):
        return self.body

    async def title(self):
        return "RMV Appointments"
