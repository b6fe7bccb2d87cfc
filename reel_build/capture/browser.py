"""Headless-browser render capability.

The animated page exposes ``window.__renderAt(t)`` (deterministic state at time
``t`` seconds) and ``window.__renderStill()`` (settled end state). With
``?render=1`` the page draws frame 0 and never starts its live loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlencode

from tqdm import tqdm

from reel_build.common.logging import get_logger
from reel_build.common.paths import frame_name
from reel_build.config.defaults import DEFAULT_CAPTURE
from reel_build.formats.registry import FormatDescriptor


class RenderError(RuntimeError):
    pass


class Renderer(Protocol):
    def acquire(self) -> Any: ...

    def release(self, handle: Any) -> None: ...

    def capture_frames(self, fmt: FormatDescriptor, out_dir: Path, handle: Any) -> int: ...

    def capture_still(self, fmt: FormatDescriptor, out_path: Path, handle: Any) -> None: ...


@dataclass
class BrowserHandle:
    playwright: Any
    browser: Any


def build_page_url(page_path: str | Path, fmt: FormatDescriptor, still: bool = False) -> str:
    params = {"render": "1", "format": fmt.key}
    if still:
        params["mode"] = "still"
    return f"{Path(page_path).resolve().as_uri()}?{urlencode(params)}"


class PlaywrightRenderer:
    def __init__(
        self,
        page_path: str | Path,
        browser: str = str(DEFAULT_CAPTURE["browser"]),
        device_scale_factor: int = int(DEFAULT_CAPTURE["device_scale_factor"]),
        navigation_timeout_ms: int = int(DEFAULT_CAPTURE["navigation_timeout_ms"]),
        show_progress: bool = bool(DEFAULT_CAPTURE["show_progress"]),
    ) -> None:
        self.page_path = Path(page_path)
        self.browser_name = browser
        self.device_scale_factor = device_scale_factor
        self.navigation_timeout_ms = navigation_timeout_ms
        self.show_progress = show_progress
        self._logger = get_logger()

    def acquire(self) -> BrowserHandle:
        if not self.page_path.is_file():
            raise RenderError(f"Animation page not found: {self.page_path}")
        try:
            from playwright.sync_api import Error as PlaywrightError
            from playwright.sync_api import sync_playwright
        except ImportError as exc:
            raise RenderError(f"playwright is not installed: {exc}") from exc

        try:
            playwright = sync_playwright().start()
        except (PlaywrightError, OSError) as exc:
            raise RenderError(f"Failed to start the playwright driver: {exc}") from exc
        try:
            launcher = getattr(playwright, self.browser_name)
            browser = launcher.launch()
        except (PlaywrightError, AttributeError) as exc:
            playwright.stop()
            raise RenderError(f"Failed to launch {self.browser_name}: {exc}") from exc
        self._logger.info("renderer acquired browser=%s", self.browser_name)
        return BrowserHandle(playwright=playwright, browser=browser)

    def release(self, handle: BrowserHandle) -> None:
        try:
            handle.browser.close()
        finally:
            handle.playwright.stop()
            self._logger.info("renderer released browser=%s", self.browser_name)

    def capture_frames(self, fmt: FormatDescriptor, out_dir: Path, handle: BrowserHandle) -> int:
        from playwright.sync_api import Error as PlaywrightError

        total = fmt.frame_count
        out_dir.mkdir(parents=True, exist_ok=True)
        page = self._open_page(handle, fmt, still=False)
        try:
            frames = range(total)
            if self.show_progress:
                frames = tqdm(frames, desc=f"Capturing {fmt.key}", unit="frame")
            for index in frames:
                page.evaluate("(t) => window.__renderAt(t)", index / fmt.fps)
                page.screenshot(path=str(out_dir / frame_name(index)), type="png")
        except PlaywrightError as exc:
            raise RenderError(f"Frame capture failed for {fmt.key}: {exc}") from exc
        finally:
            page.close()
        return total

    def capture_still(self, fmt: FormatDescriptor, out_path: Path, handle: BrowserHandle) -> None:
        from playwright.sync_api import Error as PlaywrightError

        out_path.parent.mkdir(parents=True, exist_ok=True)
        page = self._open_page(handle, fmt, still=True)
        try:
            page.evaluate(
                "(d) => window.__renderStill ? window.__renderStill() : window.__renderAt(d)",
                fmt.duration,
            )
            page.screenshot(path=str(out_path), type="png")
        except PlaywrightError as exc:
            raise RenderError(f"Still capture failed for {fmt.key}: {exc}") from exc
        finally:
            page.close()

    def _open_page(self, handle: BrowserHandle, fmt: FormatDescriptor, still: bool) -> Any:
        from playwright.sync_api import Error as PlaywrightError

        try:
            page = handle.browser.new_page(
                viewport={"width": fmt.width, "height": fmt.height},
                device_scale_factor=self.device_scale_factor,
            )
        except PlaywrightError as exc:
            raise RenderError(f"Failed to open page for {fmt.key}: {exc}") from exc
        try:
            page.goto(
                build_page_url(self.page_path, fmt, still=still),
                wait_until="load",
                timeout=self.navigation_timeout_ms,
            )
            page.wait_for_function("() => typeof window.__renderAt === 'function'", timeout=self.navigation_timeout_ms)
        except PlaywrightError as exc:
            page.close()
            raise RenderError(f"Animation page did not load for {fmt.key}: {exc}") from exc
        return page
