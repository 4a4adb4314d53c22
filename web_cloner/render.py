import logging
from typing import Dict, Optional

from .challenge import requires_browser
from .cookies import CookieJar
from .errors import RenderError
from .settings import ProxyConfig

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1920,1080",
]


class BrowserRenderer:
    """One shared headless Chromium session, started on first use.

    Cookies flow both ways through ``jar``: the jar's cookies are pushed into
    the browser context before every navigation, and whatever the context holds
    afterwards is merged back. Every Playwright failure surfaces as
    ``RenderError``.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        jar: CookieJar,
        headers: Optional[Dict[str, str]] = None,
        proxy: Optional[ProxyConfig] = None,
        timeout_ms: int = 30000,
        challenge_timeout_ms: int = 15000,
        settle_pause_ms: int = 2000,
    ):
        self.user_agent = user_agent
        self.jar = jar
        self.headers = dict(headers or {})
        self.proxy = proxy
        self.timeout_ms = timeout_ms
        self.challenge_timeout_ms = challenge_timeout_ms
        self.settle_pause_ms = settle_pause_ms
        self._pl = None
        self._browser = None
        self._context = None
        self._closed = False
        self._launch_error: Optional[str] = None

    def _ensure_browser(self) -> None:
        if self._context is not None:
            return
        if self._closed:
            raise RenderError("browser session already closed")
        if self._launch_error is not None:
            raise RenderError(f"browser unavailable: {self._launch_error}")
        try:
            from playwright.sync_api import Error as PlaywrightError
            from playwright.sync_api import sync_playwright
        except ImportError as e:
            self._launch_error = "playwright not installed"
            raise RenderError(
                "Playwright not installed. Run: pip install playwright && playwright install chromium"
            ) from e
        logger.info("starting browser session")
        try:
            self._pl = sync_playwright().start()
            launch: Dict = {"headless": True, "args": LAUNCH_ARGS}
            if self.proxy is not None:
                launch["proxy"] = self.proxy.to_playwright()
            self._browser = self._pl.chromium.launch(**launch)
            locale = (self.headers.get("Accept-Language") or "en-US").split(",")[0]
            self._context = self._browser.new_context(
                user_agent=self.user_agent,
                locale=locale,
                viewport={"width": 1920, "height": 1080},
            )
            if self.headers:
                self._context.set_extra_http_headers(self.headers)
        except PlaywrightError as e:
            # later renders fail fast instead of relaunching
            self._launch_error = str(e).splitlines()[0] if str(e) else type(e).__name__
            self._shutdown()
            raise RenderError(f"could not start browser: {e}") from e

    def render(self, url: str, referer: Optional[str] = None) -> str:
        self._ensure_browser()
        from playwright.sync_api import Error as PlaywrightError
        from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

        page = None
        try:
            cookies = self.jar.to_playwright(url)
            if cookies:
                self._context.add_cookies(cookies)
            page = self._context.new_page()
            try:
                page.goto(
                    url,
                    wait_until="networkidle",
                    timeout=self.timeout_ms,
                    referer=referer,
                )
            except PlaywrightTimeoutError:
                logger.warning("navigation timed out, using what rendered: %s", url)
            html = page.content()
            if requires_browser(html):
                logger.info("waiting for protection challenge to complete: %s", url)
                page.wait_for_timeout(self.settle_pause_ms)
                try:
                    page.wait_for_load_state(
                        "networkidle", timeout=self.challenge_timeout_ms
                    )
                except PlaywrightTimeoutError:
                    logger.info("challenge wait timed out, continuing: %s", url)
                html = page.content()
            return html
        except PlaywrightError as e:
            raise RenderError(f"browser render failed for {url}: {e}") from e
        finally:
            self._release_page(page)

    def _release_page(self, page) -> None:
        from playwright.sync_api import Error as PlaywrightError

        try:
            self.export_cookies()
        except PlaywrightError as e:
            logger.warning("could not export browser cookies: %s", e)
        if page is not None:
            try:
                page.close()
            except PlaywrightError as e:
                logger.debug("page close failed: %s", e)

    def export_cookies(self) -> int:
        if self._context is None:
            return 0
        return self.jar.merge_browser_cookies(self._context.cookies())

    def _shutdown(self) -> None:
        from playwright.sync_api import Error as PlaywrightError

        context, browser, pl = self._context, self._browser, self._pl
        self._context = self._browser = self._pl = None
        for name, obj in (("context", context), ("browser", browser)):
            if obj is None:
                continue
            try:
                obj.close()
            except PlaywrightError as e:
                logger.debug("browser %s close failed: %s", name, e)
        if pl is not None:
            try:
                pl.stop()
            except PlaywrightError as e:
                logger.debug("playwright stop failed: %s", e)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._context is None and self._browser is None and self._pl is None:
            return
        from playwright.sync_api import Error as PlaywrightError

        try:
            n = self.export_cookies()
            logger.debug("exported %d browser cookie(s)", n)
        except PlaywrightError as e:
            logger.warning("could not export browser cookies: %s", e)
        finally:
            self._shutdown()
