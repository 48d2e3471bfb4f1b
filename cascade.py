"""Fallback cascade over browser launch configurations and page-load strategies."""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from playwright.async_api import TimeoutError as PwTimeout

log = logging.getLogger(__name__)

DESKTOP_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

WAIT_STRATEGIES = ("networkidle", "domcontentloaded", "load")


class CascadeFailed(Exception):
    """Every option of a cascade failed. `errors` holds (name, exception) pairs."""

    def __init__(self, errors: List[Tuple[str, BaseException]]):
        self.errors = errors
        if errors:
            name, last = errors[-1]
            msg = f"All {len(errors)} options failed. Last error ({name}): {last}"
        else:
            msg = "No options to try"
        super().__init__(msg)

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.errors[-1][1] if self.errors else None


async def first_success(options: Sequence, attempt: Callable[..., Awaitable], pause: float = 0):
    """Await `attempt(option)` for each option in order and return the first result.

    A failed attempt leaves nothing behind for the next one: callers build
    their browser/page inside `attempt`.
    """
    errors = []
    for i, option in enumerate(options):
        name = getattr(option, "name", str(option))
        try:
            log.info("Trying %s (%d/%d)", name, i + 1, len(options))
            return await attempt(option)
        except Exception as e:
            log.warning("%s failed: %s", name, e)
            errors.append((name, e))
            if pause and i < len(options) - 1:
                await asyncio.sleep(pause)
    raise CascadeFailed(errors)


@dataclass(frozen=True)
class LaunchConfig:
    name: str
    args: Tuple[str, ...] = ()
    headless: bool = True
    viewport: Optional[Dict[str, int]] = None
    user_agent: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def context_options(self) -> dict:
        if self.viewport is None:
            opts = {"no_viewport": True}
        else:
            opts = {"viewport": dict(self.viewport)}
        if self.user_agent:
            opts["user_agent"] = self.user_agent
        if self.extra_headers:
            opts["extra_http_headers"] = dict(self.extra_headers)
        return opts


STANDARD = LaunchConfig(
    name="standard",
    args=(
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-web-security",
        "--disable-blink-features=AutomationControlled",
        "--disable-extensions",
        "--no-first-run",
    ),
    viewport={"width": 1366, "height": 768},
    user_agent=DESKTOP_UA,
    extra_headers=BROWSER_HEADERS,
)
MINIMAL = LaunchConfig(
    name="minimal",
    args=("--no-sandbox", "--disable-setuid-sandbox"),
    viewport={"width": 1280, "height": 720},
)
LEGACY = LaunchConfig(
    name="legacy",
    args=("--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"),
)

LAUNCH_CONFIGS = (STANDARD, MINIMAL, LEGACY)


@asynccontextmanager
async def open_page(browser_type, config: LaunchConfig, headless: Optional[bool] = None):
    """Launch a browser from `config` and yield a fresh page; always close the browser."""
    browser = await browser_type.launch(
        headless=config.headless if headless is None else headless,
        args=list(config.args),
    )
    try:
        context = await browser.new_context(**config.context_options())
        page = await context.new_page()
        page.on("pageerror", lambda err: log.debug("Page script error: %s", err))
        yield page
    finally:
        await browser.close()
        log.info("Browser closed (%s)", config.name)


@dataclass(frozen=True)
class _Strategy:
    name: str


async def goto_with_strategies(page, url: str, timeout: int = 30000) -> str:
    """Navigate with each waitUntil strategy in turn; returns the one that loaded."""

    async def load(strategy):
        resp = await page.goto(url, wait_until=strategy.name, timeout=timeout)
        if resp is not None and not resp.ok:
            raise RuntimeError(f"HTTP {resp.status} for {url}")
        return strategy.name

    return await first_success([_Strategy(s) for s in WAIT_STRATEGIES], load)


async def load_with_retries(page, url: str, attempts: int = 3, settle: float = 3.0) -> str:
    """Load `url` with progressively longer timeouts (25s, 35s, 45s) and back-off."""
    last_error = None
    for attempt in range(1, attempts + 1):
        timeout = 15000 + attempt * 10000
        log.info("Navigation attempt %d/%d (timeout %dms)", attempt, attempts, timeout)
        try:
            strategy = await goto_with_strategies(page, url, timeout=timeout)
            log.info("Page loaded with strategy: %s", strategy)
            if settle:
                await asyncio.sleep(settle)
            return strategy
        except (CascadeFailed, PwTimeout) as e:
            last_error = e
            log.error("Navigation attempt %d failed: %s", attempt, e)
            if attempt < attempts:
                wait_s = 3 * attempt
                log.info("Waiting %ds before retry", wait_s)
                await asyncio.sleep(wait_s)
    raise last_error


CONNECTIVITY_PROBES = (
    ("https://www.google.com", 10000),
    ("https://rmvmassdotappt.cxmflow.com", 15000),
)


async def check_connectivity(browser_type) -> None:
    """Load a well-known page then the RMV host; raises on the first failure."""
    async with open_page(browser_type, MINIMAL) as page:
        for url, timeout in CONNECTIVITY_PROBES:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
            log.info("Reached %s", url)
