import asyncio

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options as ChOptions
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.actions.action_builder import ActionBuilder
from selenium.webdriver.common.by import By
from selenium.webdriver.firefox.options import Options as FxOptions

from backend_base import BrowserBackend
from errors import ConfigError, NavigationError

_RECT_JS = (
    "const r = arguments[0].getBoundingClientRect();"
    "return {x: r.left, y: r.top, width: r.width, height: r.height};"
)


class SeleniumBackend(BrowserBackend):
    # a Safari UA would run on Chrome here
    SUPPORTED_FAMILIES = frozenset({"chrome", "edge", "opera", "firefox"})

    def __init__(self, logger, headless: bool = False):
        self.logger = logger
        self.headless = headless
        self.driver = None

    async def create(self, options) -> None:
        w, h = options.viewport
        if options.browser_family not in self.SUPPORTED_FAMILIES:
            raise ConfigError(f"Selenium cannot present a {options.browser_family} fingerprint")
        if options.browser_family == "firefox":
            opts = FxOptions()
            if self.headless:
                opts.add_argument("-headless")
            opts.set_preference("intl.accept_languages", options.locale)
            opts.set_preference("general.useragent.override", options.user_agent)
            if options.proxy:
                host_port = options.proxy["server"].split("://", 1)[-1]
                host, port = host_port.split(":")
                opts.set_preference("network.proxy.type", 1)
                opts.set_preference("network.proxy.socks", host)
                opts.set_preference("network.proxy.socks_port", int(port))
                opts.set_preference("network.proxy.socks_remote_dns", True)
            if options.profile_path:
                opts.add_argument("-profile")
                opts.add_argument(options.profile_path)
            self.driver = webdriver.Firefox(options=opts)
        else:
            opts = ChOptions()
            if self.headless:
                opts.add_argument("--headless=new")
            opts.add_argument(f"--user-agent={options.user_agent}")
            opts.add_argument(f"--lang={options.locale}")
            opts.add_argument("--disable-blink-features=AutomationControlled")
            if options.proxy:
                opts.add_argument(f"--proxy-server={options.proxy['server']}")
            if options.profile_path:
                opts.add_argument(f"--user-data-dir={options.profile_path}")
            self.driver = webdriver.Chrome(options=opts)
            try:
                self.driver.execute_cdp_cmd("Emulation.setTimezoneOverride", {"timezoneId": options.timezone_id})
                if options.client_hints:
                    self.driver.execute_cdp_cmd("Network.enable", {})
                    self.driver.execute_cdp_cmd(
                        "Network.setExtraHTTPHeaders", {"headers": dict(options.client_hints)}
                    )
            except WebDriverException as e:
                self.logger.warning(f"[SE] CDP overrides unavailable: {e}")
        self.driver.set_window_size(w, h)
        self.logger.info(f"[SE] started {options.browser_family} ({options.tls_profile_id})")

    async def navigate(self, url: str, timeout_ms: int) -> None:
        self.driver.set_page_load_timeout(timeout_ms / 1000)
        try:
            self.driver.get(url)
        except TimeoutException as e:
            raise NavigationError(f"Timed out loading {url} after {timeout_ms}ms") from e

    async def wait_for_stable(self, timeout_ms: int) -> None:
        end = asyncio.get_running_loop().time() + (timeout_ms / 1000)
        while asyncio.get_running_loop().time() < end:
            if self.driver.execute_script("return document.readyState") == "complete":
                return
            await asyncio.sleep(0.1)
        raise TimeoutException(f"document not complete after {timeout_ms}ms")

    async def snapshot_html(self) -> str:
        return self.driver.page_source

    async def document_title(self) -> str:
        return self.driver.title

    async def evaluate_xpath(self, expr: str):
        found = self.driver.find_elements(By.XPATH, expr)
        return found[0] if found else None

    async def query_css(self, selector: str):
        found = self.driver.find_elements(By.CSS_SELECTOR, selector)
        return found[0] if found else None

    async def query_all_css(self, selector: str) -> list:
        return self.driver.find_elements(By.CSS_SELECTOR, selector)

    async def bounding_box(self, element) -> dict | None:
        try:
            return self.driver.execute_script(_RECT_JS, element)
        except WebDriverException:
            return None

    async def pointer_move(self, x: float, y: float) -> None:
        actions = ActionBuilder(self.driver)
        actions.pointer_action.move_to_location(int(x), int(y))
        actions.perform()

    async def pointer_click(self, x: float, y: float) -> None:
        actions = ActionBuilder(self.driver)
        actions.pointer_action.move_to_location(int(x), int(y)).click()
        actions.perform()

    async def type_text(self, text: str) -> None:
        ActionChains(self.driver).send_keys(text).perform()

    async def scroll(self, delta_y: float) -> None:
        self.driver.execute_script("window.scrollBy(0, arguments[0]);", delta_y)

    async def close(self) -> None:
        if self.driver:
            try:
                self.driver.quit()
            except WebDriverException as e:
                self.logger.debug(f"[SE] quit failed: {e}")
            self.driver = None
