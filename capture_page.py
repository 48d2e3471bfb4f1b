import argparse
import os
import json
import time
import asyncio
from dotenv import load_dotenv
from playwright.async_api import async_playwright

load_dotenv()

OUT_DIR = os.getenv("CAPTURE_DIR", "captures").strip() or "captures"


def _entry(kind: str, **fields) -> dict:
    return {"kind": kind, "timestamp": time.time(), **fields}


async def capture(url: str, out_dir: str = OUT_DIR, headless: bool = True, interactive: bool = False):
    os.makedirs(out_dir, exist_ok=True)
    network = []

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless)
        try:
            context = await browser.new_context()
            page = await context.new_page()

            def on_request(req):
                network.append(_entry("request", method=req.method, url=req.url, post_data=req.post_data))
                print(f"[REQ] {req.method} {req.url}")

            def on_response(resp):
                network.append(_entry("response", status=resp.status, url=resp.url))
                print(f"[RESP] {resp.status} {resp.url}")

            page.on("request", on_request)
            page.on("response", on_response)

            print(f"[INFO] Opening {url}")
            await page.goto(url, wait_until="load", timeout=60000)

            if interactive:
                print("[ACTION] Walk the booking flow to the step you want to capture.")
                input("[ENTER] Press Enter here to save the current page... ")

            stamp = time.strftime("%Y%m%d-%H%M%S")
            html_path = os.path.join(out_dir, f"page-{stamp}.html")
            with open(html_path, "w", encoding="utf-8") as f:
                f.write(await page.content())
            await page.screenshot(path=os.path.join(out_dir, f"page-{stamp}.png"), full_page=True)
            with open(os.path.join(out_dir, f"network-{stamp}.json"), "w", encoding="utf-8") as f:
                json.dump({"url": page.url, "title": await page.title(), "events": network}, f, indent=2)

            print(f"[OK] Saved {html_path} and {len(network)} network events to {out_dir}")
        finally:
            await browser.close()
    return network


def main(argv=None):
    parser = argparse.ArgumentParser(description="Save the HTML, a screenshot and the network log of a booking page")
    parser.add_argument("url", nargs="?", default=os.getenv("BOOKING_URL", "").strip())
    parser.add_argument("--out-dir", default=OUT_DIR)
    parser.add_argument("--interactive", action="store_true",
                        help="open a visible browser and wait for Enter before saving")
    args = parser.parse_args(argv)
    if not args.url:
        raise SystemExit("Pass a booking URL or set BOOKING_URL in .env")
    asyncio.run(capture(args.url, out_dir=args.out_dir, headless=not args.interactive, interactive=args.interactive))


if __name__ == "__main__":
    main()
