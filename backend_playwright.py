from playwright.async_api import async_playwright, TimeoutError as PlaywrightTimeoutError

from backend_base import BrowserBackend
from errors import NavigationError

# Launch the engine matching the UA family so the TLS handshake agrees with it.
ENGINE_BY_FAMILY = {
    "chrome": "chromium",
    "edge": "chromium",
    "opera": "chromium",
    "firefox": "firefox",
    "safari": "webkit",
}


class PlaywrightBackend(BrowserBackend):
    SUPPORTED_FAMILIES = frozenset(ENGINE_BY_FAMILY)

    def __init__(self, logger, headless: bool = False):
        self.logger = logger
        self.headless = headless
        self._pw = None
        self._browser = None
        self._context = None
        self._page = None

    async def create(self, options) -> None:
        self._pw = await async_playwright().start()
        engine = ENGINE_BY_FAMILY.get(options.browser_family, "chromium")
        launcher = getattr(self._pw, engine)
        context_kwargs = dict(
            user_agent=options.user_agent,
            locale=options.locale,
            timezone_id=options.timezone_id,
            viewport={"width": options.viewport[0], "height": options.viewport[1]},
            extra_http_headers=dict(options.client_hints),
        )
        if options.proxy:
            context_kwargs["proxy"] = options.proxy
        self.logger.info(f"[PW] launching {engine} ({options.tls_profile_id})")
        if options.profile_path and engine == "chromium":
            self._context = await launcher.launch_persistent_context(
                options.profile_path, headless=self.headless, **context_kwargs
            )
        else:
            self._browser = await launcher.launch(headless=self.headless, proxy=options.proxy)
            context_kwargs.pop("proxy", None)
            self._context = await self._browser.new_context(**context_kwargs)
        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()

    async def navigate(self, url: str, timeout_ms: int) -> None:
        try:
            await self._page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out loading {url} after {timeout_ms}ms") from e

    async def wait_for_stable(self, timeout_ms: int) -> None:
        await self._page.wait_for_load_state("networkidle", timeout=timeout_ms)

    async def snapshot_html(self) -> str:
        return await self._page.content()

    async def document_title(self) -> str:
        return await self._page.title()

    async def evaluate_xpath(self, expr: str):
        return await self._page.query_selector(f"xpath={expr}")

    async def query_css(self, selector: str):
        return await self._page.query_selector(selector)

    async def query_all_css(self, selector: str) -> list:
        return await self._page.query_selector_all(selector)

    async def bounding_box(self, element) -> dict | None:
        return await element.bounding_box()

    async def pointer_move(self, x: float, y: float) -> None:
        await self._page.mouse.move(x, y)

    async def pointer_click(self, x: float, y: float) -> None:
        await self._page.mouse.click(x, y)

    async def type_text(self, text: str) -> None:
        await self._page.keyboard.type(text)

    async def scroll(self, delta_y: float) -> None:
        await self._page.mouse.wheel(0, delta_y)

    async def close(self) -> None:
        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                self.logger.debug(f"[PW] context close failed: {e}")
        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                self.logger.debug(f"[PW] browser close failed: {e}")
        if self._pw:
            try:
                await self._pw.stop()
            except Exception as e:
                self.logger.debug(f"[PW] stop failed: {e}")
        self._pw = self._browser = self._context = self._page = None
