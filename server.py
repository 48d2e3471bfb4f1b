"""Local test server: paste a booking link, see what the extractor pulls out.

    python server.py            # http://localhost:9877
"""
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse
from playwright.async_api import async_playwright
from pydantic import BaseModel

import settings
from cascade import MINIMAL, CascadeFailed, open_page
from extractor import extract_personal_data
from locations import discover_locations

log = logging.getLogger(__name__)

app = FastAPI(title="RMV Data Extractor Test Server")


class UrlRequest(BaseModel):
    url: Optional[str] = None


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>RMV Data Extractor Test</title>
<style>
  body { font-family: -apple-system, "Segoe UI", Roboto, Arial, sans-serif; background: #f4f6fb; }
  .container { background: #fff; max-width: 760px; margin: 40px auto; padding: 32px; border-radius: 12px; }
  h1 { color: #1a73e8; }
  input[type=url] { width: 100%; padding: 12px; font-size: 15px; border: 2px solid #e1e5e9; border-radius: 8px; }
  button { margin-top: 16px; padding: 12px 24px; background: #1a73e8; color: #fff; border: 0; border-radius: 8px; }
  button:disabled { background: #bbb; }
  pre { background: #f8f9fa; padding: 16px; border-radius: 8px; white-space: pre-wrap; }
  .error { color: #c5221f; }
</style>
</head>
<body>
<div class="container">
  <h1>RMV Data Extractor Test</h1>
  <ol>
    <li>Open your RMV appointment link and copy the full URL (with <code>AccessToken</code>).</li>
    <li>Paste it below and press Extract.</li>
    <li>The browser walks the booking flow and reports the pre-filled fields it finds.</li>
  </ol>
  <form id="extract-form">
    <label for="url">RMV appointment URL</label>
    <input type="url" id="url" name="url" required
           placeholder="https://rmvmassdotappt.cxmflow.com/Appointment/Index/...">
    <button type="submit" id="go">Extract</button>
  </form>
  <div id="status"></div>
  <pre id="result" hidden></pre>
</div>
<script>
  const form = document.getElementById('extract-form');
  form.addEventListener('submit', async (ev) => {
    ev.preventDefault();
    const btn = document.getElementById('go');
    const status = document.getElementById('status');
    const out = document.getElementById('result');
    btn.disabled = true;
    out.hidden = true;
    status.className = '';
    status.textContent = 'Extracting... this can take a minute.';
    try {
      const resp = await fetch('/extract', {
        method: 'POST',
        headers: {'Content-Type': 'application/json'},
        body: JSON.stringify({url: document.getElementById('url').value})
      });
      const data = await resp.json();
      if (!resp.ok) {
        status.className = 'error';
        status.textContent = 'Failed: ' + data.error;
      } else {
        const p = data.personal_data;
        status.textContent = 'Done in ' + data.duration + 's';
        out.textContent = 'First Name: ' + (p.first_name || 'Not found') + '\\n'
          + 'Last Name:  ' + (p.last_name || 'Not found') + '\\n'
          + 'Email:      ' + (p.email || 'Not found') + '\\n'
          + 'Phone:      ' + (p.phone || 'Not found') + '\\n\\n'
          + JSON.stringify(p, null, 2);
        out.hidden = false;
      }
    } catch (err) {
      status.className = 'error';
      status.textContent = 'Request failed: ' + err;
    } finally {
      btn.disabled = false;
    }
  });
</script>
</body>
</html>
"""


def _elapsed(start: float) -> str:
    return f"{time.monotonic() - start:.2f}"


def _check_url(url: Optional[str]):
    if not url:
        return JSONResponse(status_code=400, content={"error": "URL is required"})
    if not settings.is_rmv_url(url):
        return JSONResponse(
            status_code=400,
            content={"error": f"Invalid RMV URL format. Please use a URL from {settings.RMV_HOST}"},
        )
    return None


@app.get("/", response_class=HTMLResponse)
async def index():
    return INDEX_HTML


@app.post("/extract")
async def extract(req: UrlRequest):
    bad = _check_url(req.url)
    if bad is not None:
        return bad

    log.info("Extraction requested for %s", req.url)
    start = time.monotonic()
    try:
        data = await extract_personal_data(req.url, headless=settings.HEADLESS)
    except CascadeFailed as e:
        log.error("Extraction failed after %ss: %s", _elapsed(start), e)
        return JSONResponse(status_code=500, content={"error": str(e), "duration": _elapsed(start)})
    except Exception as e:
        log.exception("Extraction failed unexpectedly")
        return JSONResponse(status_code=500, content={"error": str(e), "duration": _elapsed(start)})

    duration = _elapsed(start)
    log.info("Extraction finished in %ss: %s", duration, ", ".join(f.field for f in data.found) or "nothing found")
    return {"success": True, "personal_data": data.to_dict(), "duration": duration}


async def _discover(url: str) -> dict:
    async with async_playwright() as p:
        async with open_page(p.chromium, MINIMAL, headless=settings.HEADLESS) as page:
            return await discover_locations(page, url)


@app.post("/locations")
async def locations(req: UrlRequest):
    bad = _check_url(req.url)
    if bad is not None:
        return bad

    start = time.monotonic()
    try:
        found = await _discover(req.url)
    except Exception as e:
        log.error("Location discovery failed: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e), "duration": _elapsed(start)})

    locs = [loc.to_dict() for loc in found["locations"]]
    return {
        "success": True,
        "locations": locs,
        "offices": [o.to_dict() for o in found["offices"]],
        "appointment_info": found["appointment_info"],
        "total_found": len(locs),
        "duration": _elapsed(start),
    }


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "port": settings.SERVER_PORT,
    }


if __name__ == "__main__":
    import uvicorn
    settings.configure_logging()
    uvicorn.run(app, host="0.0.0.0", port=settings.SERVER_PORT)
