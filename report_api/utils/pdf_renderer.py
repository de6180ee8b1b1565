"""HTML to PDF rendering with headless Chromium (Playwright).

Each render launches its own browser process and always closes it, success
or failure. Renders are CPU and memory heavy, so a semaphore bounds how many
run at once and each render is given a timeout.
"""

import asyncio
from typing import Optional, Sequence

import structlog
from playwright.async_api import async_playwright

logger = structlog.get_logger()

ZERO_MARGIN = {"top": "0", "right": "0", "bottom": "0", "left": "0"}


class PdfRenderer:
    """Renders assembled report HTML to A4 PDF bytes."""

    def __init__(
        self,
        max_concurrent: int = 2,
        timeout_seconds: float = 60.0,
        browser_args: Optional[Sequence[str]] = None,
    ):
        """Initialize the renderer.

        Args:
            max_concurrent: Maximum number of browser processes alive at once
            timeout_seconds: Upper bound for one render, launch included
            browser_args: Extra Chromium command-line flags
        """
        self.timeout_seconds = timeout_seconds
        self.browser_args = list(browser_args or [])
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def render(self, html: str, landscape: bool = False) -> bytes:
        """Render HTML to a PDF buffer.

        Raises:
            asyncio.TimeoutError: If the render exceeds timeout_seconds
            playwright.async_api.Error: On browser launch or page failures
        """
        async with self._semaphore:
            return await asyncio.wait_for(
                self._render(html, landscape),
                timeout=self.timeout_seconds,
            )

    async def _render(self, html: str, landscape: bool) -> bytes:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True, args=self.browser_args)
            try:
                page = await browser.new_page()
                await page.set_content(html, wait_until="networkidle")
                pdf = await page.pdf(
                    format="A4",
                    landscape=landscape,
                    print_background=True,
                    margin=ZERO_MARGIN,
                )
                logger.info("Rendered PDF", size=len(pdf), landscape=landscape)
                return pdf
            finally:
                await browser.close()
