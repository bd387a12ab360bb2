"""
Browser identity: the Playwright page whose cookies and clearance every
request is issued under.

Launches the user's real Chrome/Brave/Edge browser with CDP enabled, then
connects via Playwright's connect_over_cdp. A genuine browser binary with a
persistent profile keeps the service's bot detection satisfied. Falls back
to Playwright's bundled Chromium when no system browser is found.

Cookie-consent handling and challenge solving are left to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import platform
import shutil
import socket
import subprocess
import time
from typing import Any

from arenabridge.core.config import ArenaSettings, get_settings

logger = logging.getLogger(__name__)

# Candidates ordered by preference: Chrome → Brave → Edge → Chromium
_BROWSER_CANDIDATES_MACOS = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
    "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
]

_BROWSER_CANDIDATES_LINUX = [
    "google-chrome",
    "google-chrome-stable",
    "brave-browser",
    "microsoft-edge",
    "chromium",
    "chromium-browser",
]

_BROWSER_CANDIDATES_WINDOWS = [
    os.path.expandvars(r"%ProgramFiles%\Google\Chrome\Application\chrome.exe"),
    os.path.expandvars(r"%ProgramFiles(x86)%\Google\Chrome\Application\chrome.exe"),
    os.path.expandvars(r"%LocalAppData%\Google\Chrome\Application\chrome.exe"),
    os.path.expandvars(r"%ProgramFiles%\BraveSoftware\Brave-Browser\Application\brave.exe"),
    os.path.expandvars(r"%ProgramFiles(x86)%\Microsoft\Edge\Application\msedge.exe"),
]

_DEFAULT_PROFILE_DIR = os.path.join(os.path.expanduser("~"), ".arenabridge", "browser", "profile")

# Extracts the model catalog the app server-renders into window.__next_f
_READ_MODELS_SCRIPT = """
() => {
  const nextData = window.__next_f;
  if (!nextData || !Array.isArray(nextData)) return "[]";
  const marker = '"initialModels":';
  for (const item of nextData) {
    if (typeof item[1] !== "string" || !item[1].includes(marker)) continue;
    const text = item[1];
    const start = text.indexOf(marker) + marker.length;
    let depth = 0;
    let seen = false;
    for (let i = start; i < text.length; i++) {
      if (text[i] === "[") { seen = true; depth++; }
      else if (text[i] === "]") depth--;
      if (seen && depth === 0) return text.substring(start, i + 1);
    }
  }
  return "[]";
}
"""

_LOADED_SCRIPTS_SCRIPT = """
() => window.performance
  .getEntriesByType("resource")
  .filter((entry) => entry.initiatorType === "script")
  .map((entry) => entry.name)
"""


def _detect_chrome_executable() -> str | None:
    """Detect the system's installed Chromium-based browser."""
    system = platform.system()

    if system == "Darwin":
        candidates = _BROWSER_CANDIDATES_MACOS
    elif system == "Linux":
        candidates = _BROWSER_CANDIDATES_LINUX
    elif system == "Windows":
        candidates = _BROWSER_CANDIDATES_WINDOWS
    else:
        return None

    for candidate in candidates:
        if system == "Linux":
            # Linux candidates are command names
            if shutil.which(candidate):
                return candidate
        elif os.path.isfile(candidate):
            return candidate

    return None


def _find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def _wait_for_cdp(port: int, timeout: float = 15.0) -> None:
    """Wait until the CDP endpoint is accepting connections."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            _, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.close()
            await writer.wait_closed()
            return
        except OSError:
            await asyncio.sleep(0.3)
    raise RuntimeError(f"Chrome CDP port {port} not ready within {timeout}s")


def _remove_stale_locks(profile_dir: str) -> None:
    """Chrome refuses to start on a profile with lock files left by a crash."""
    for lock_file in ("SingletonLock", "SingletonCookie", "SingletonSocket"):
        try:
            os.remove(os.path.join(profile_dir, lock_file))
        except OSError:
            pass


class BrowserIdentity:
    """
    Owns the browser, its context and the page requests are issued from.

    Identity-mutating operations (cookie deletion, re-authentication) must
    hold ``identity_lock``.
    """

    def __init__(self, settings: ArenaSettings | None = None):
        self.settings = settings or get_settings()
        self.identity_lock = asyncio.Lock()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._chrome_process: subprocess.Popen | None = None

    @property
    def page(self) -> Any:
        if self._page is None:
            raise RuntimeError("Browser not initialized")
        return self._page

    async def start(self) -> None:
        """Launch the browser and open the service's home page."""
        if self._page is not None:
            return

        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        chrome_path = self.settings.browser_executable or _detect_chrome_executable()

        if chrome_path:
            await self._connect_system_browser(chrome_path)
        else:
            logger.warning("No system Chrome/Brave/Edge found, falling back to Playwright Chromium")
            self._browser = await self._playwright.chromium.launch(headless=self.settings.headless)
            self._context = await self._browser.new_context()
            self._page = await self._context.new_page()

        await self._page.goto(self.settings.url("/"), wait_until="domcontentloaded")
        logger.info(f"Browser identity ready on {self.settings.base_url}")

    async def _connect_system_browser(self, chrome_path: str) -> None:
        profile_dir = os.path.abspath(self.settings.profile_dir or _DEFAULT_PROFILE_DIR)
        os.makedirs(profile_dir, exist_ok=True)
        _remove_stale_locks(profile_dir)

        cdp_port = _find_free_port()
        chrome_args = [
            chrome_path,
            f"--remote-debugging-port={cdp_port}",
            f"--user-data-dir={profile_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-sync",
            "--disable-features=Translate,MediaRouter",
            "--disable-session-crashed-bubble",
            "--hide-crash-restore-bubble",
            "--password-store=basic",
        ]
        if self.settings.headless:
            chrome_args.extend(["--headless=new", "--disable-gpu"])
        if platform.system() == "Linux":
            chrome_args.append("--disable-dev-shm-usage")
        chrome_args.append("about:blank")

        logger.info(f"Launching browser: {chrome_path} (CDP port {cdp_port})")
        self._chrome_process = subprocess.Popen(
            chrome_args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        await _wait_for_cdp(cdp_port)

        self._browser = await self._playwright.chromium.connect_over_cdp(
            f"http://127.0.0.1:{cdp_port}"
        )
        if self._browser.contexts:
            self._context = self._browser.contexts[0]
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
        else:
            self._context = await self._browser.new_context()
            self._page = await self._context.new_page()
        logger.info("Connected to browser via CDP")

    async def close(self) -> None:
        """Close the browser and stop the process we spawned."""
        try:
            if self._browser is not None:
                await self._browser.close()
            if self._playwright is not None:
                await self._playwright.stop()
        except Exception:
            logger.debug("Error while closing browser", exc_info=True)

        if self._chrome_process is not None:
            self._chrome_process.terminate()
            try:
                self._chrome_process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._chrome_process.kill()

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._chrome_process = None

    # ── Cookies ───────────────────────────────────────────────────────

    async def get_cookie(self, name: str) -> dict[str, Any] | None:
        """Fetch a cookie of the browser context by name."""
        cookies = await self.page.context.cookies()
        for cookie in cookies:
            if cookie.get("name") == name:
                return cookie
        return None

    async def delete_cookie(self, name: str) -> bool:
        """Delete a cookie by name. Returns False if it was not set."""
        if await self.get_cookie(name) is None:
            return False
        await self.page.context.clear_cookies(name=name)
        return True

    # ── Page data ─────────────────────────────────────────────────────

    async def read_models(self) -> list[dict[str, Any]]:
        """Read the model catalog embedded in the current page."""
        raw = await self.page.evaluate(_READ_MODELS_SCRIPT)
        try:
            models = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Failed to parse model data embedded in the page")
            return []
        return models if isinstance(models, list) else []

    async def loaded_scripts(self) -> list[str]:
        """URLs of every script the page has loaded."""
        return list(await self.page.evaluate(_LOADED_SCRIPTS_SCRIPT))

    async def reload(self) -> None:
        await self.page.reload(wait_until="domcontentloaded")
