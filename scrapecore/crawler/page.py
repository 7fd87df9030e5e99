"""
Page automation capability used by the engines and the CAPTCHA handler.

Engines never touch Playwright objects directly; they talk to a
PageAutomation. PlaywrightPage is the production adapter, tests provide
their own implementations.
"""

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from scrapecore.utils.errors import NavigationError
from scrapecore.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page

logger = get_logger(__name__)


@runtime_checkable
class PageAutomation(Protocol):
    """Minimal browser page capability: navigate, read, script, mouse."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, timeout: float) -> None: ...

    async def content(self) -> str: ...

    async def evaluate_script(self, script: str, arg: Any = None) -> Any: ...

    async def set_form_field(self, selector: str, value: str) -> bool: ...

    async def mouse_move(self, x: float, y: float) -> None: ...

    async def close(self) -> None: ...


# Sets a field's value, creating a hidden input when the selector names a
# field that does not exist yet (name="...").
_SET_FIELD_JS = """
([selector, value]) => {
    let element = document.querySelector(selector);
    if (!element) {
        const match = selector.match(/name=["']?([^"'\\]]+)/);
        if (!match) {
            return false;
        }
        element = document.createElement('input');
        element.type = 'hidden';
        element.name = match[1];
        (document.querySelector('form') || document.body).appendChild(element);
    }
    element.value = value;
    element.innerHTML = value;
    return true;
}
"""


class PlaywrightPage:
    """PageAutomation backed by a Playwright page in its own context.

    Closing the page also closes its browser context so cookies and storage
    never leak between jobs sharing one browser.
    """

    def __init__(self, page: "Page", context: "BrowserContext"):
        self._page = page
        self._context = context
        self._closed = False

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, timeout: float) -> None:
        """Navigate and wait for the load event.

        Raises:
            NavigationError: On timeout or any navigation failure.
        """
        try:
            await self._page.goto(url, timeout=int(timeout * 1000), wait_until="load")
        except Exception as e:
            raise NavigationError(url, str(e)) from e

    async def content(self) -> str:
        return await self._page.content()

    async def evaluate_script(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def set_form_field(self, selector: str, value: str) -> bool:
        return bool(await self._page.evaluate(_SET_FIELD_JS, [selector, value]))

    async def mouse_move(self, x: float, y: float) -> None:
        await self._page.mouse.move(x, y)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._page.close()
        except Exception as e:
            logger.debug("Page close failed", error=str(e))
        try:
            await self._context.close()
        except Exception as e:
            logger.debug("Context close failed", error=str(e))
