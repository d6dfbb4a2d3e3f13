"""Playwright browser session for the page-object scenarios.

Usage:
    async with open_context() as ctx:
        async with browser_session(ctx) as page:
            await JobConfigurator(page, ctx.job("demo")).open()
"""
from __future__ import annotations

import base64
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from playwright.async_api import async_playwright

from .bootstrap import AcceptanceContext, Settings
from .core.errors import log_acceptance_failure


def auth_headers(settings: Settings) -> dict[str, str]:
    """Preemptive Basic authorization; the server answers 403 instead of challenging."""
    if not settings.has_credentials:
        return {}
    raw = f"{settings.jenkins_user}:{settings.jenkins_api_token}".encode("utf-8")
    return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}


async def _capture(page: Any, settings: Settings, logger) -> str | None:
    shot_path = Path(settings.screenshot_dir) / f"failure_{int(time.time() * 1000)}.png"
    try:
        shot_path.parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(shot_path), full_page=True)
    except Exception as exc:  # best-effort
        logger.warning("screenshot_failed", error=str(exc))
        return None
    logger.info("failure_screenshot_captured", path=str(shot_path))
    return str(shot_path)


@asynccontextmanager
async def browser_session(ctx: AcceptanceContext) -> AsyncIterator[Any]:
    """Yield a fresh Playwright page bound to the configured server.

    The browser is always closed. When the body raises, a full-page
    screenshot is saved to SCREENSHOT_DIR before the error propagates.
    """
    settings = ctx.settings
    logger = ctx.logger.bind(component="browser")
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=settings.playwright_headless)
        try:
            context = await browser.new_context(
                base_url=settings.jenkins_url,
                extra_http_headers=auth_headers(settings),
                ignore_https_errors=settings.disable_ssl_verify,
            )
            context.set_default_navigation_timeout(settings.navigation_timeout_ms)
            context.set_default_timeout(settings.element_timeout_ms)
            page = await context.new_page()
            logger.info("browser_opened", headless=settings.playwright_headless)
            try:
                yield page
            except Exception as exc:
                await _capture(page, settings, logger)
                log_acceptance_failure("scenario", exc)
                raise
        finally:
            await browser.close()
            logger.info("browser_closed")
