"""XPath locators with fallback chains and success tracking.

The server's markup changed across releases (icons → svg, table build
history → card list), so each element the harness reads is described by a
primary locator plus fallbacks. Locators that keep matching are tried first.

Usage:
    from acceptance.locators import get_locator_manager, PENDING_BUILD_LOCATORS

    manager = get_locator_manager()
    text = await manager.text(page, PENDING_BUILD_LOCATORS, "pending_build")
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from .core.errors import ElementNotFound, log_acceptance_failure

logger = structlog.get_logger(__name__)


# =============================================================================
# LOCATOR DEFINITIONS
# =============================================================================

@dataclass(frozen=True)
class LocatorConfig:
    """One XPath locator with metadata."""
    xpath: str
    name: str
    priority: int = 0  # Lower = tried earlier on ties
    is_fallback: bool = False


# Build history row of a pending build (text carries "pending" and the reason)
PENDING_BUILD_LOCATORS: list[LocatorConfig] = [
    LocatorConfig("//img[@alt='pending']/../..", "legacy_pending_icon", priority=0),
    LocatorConfig("//*[@id='buildHistory']//tr[.//*[@tooltip='pending' or @title='pending']]",
                  "history_row_tooltip", priority=1),
    LocatorConfig("//*[@id='jenkins-build-history']//*[contains(@class,'app-builds-container__item')]"
                  "[contains(., 'pending')]", "builds_card_pending", priority=2),
    LocatorConfig("//*[@id='buildHistory']//tr[contains(., 'pending')]", "history_row_text",
                  priority=3, is_fallback=True),
]

# Node selection list on the "build with parameters" form
BUILD_FORM_NODE_OPTIONS: list[LocatorConfig] = [
    LocatorConfig("//select[@name='labels']/option", "labels_select_options", priority=0),
    LocatorConfig("//select[@name='value']/option", "value_select_options", priority=1, is_fallback=True),
]

SAVE_BUTTON_LOCATORS: list[LocatorConfig] = [
    LocatorConfig("//button[@name='Submit' and normalize-space(.)='Save']", "submit_save_button", priority=0),
    LocatorConfig("//button[normalize-space(.)='Save']", "save_button", priority=1),
    LocatorConfig("//input[@type='submit' and @value='Save']", "save_input", priority=2, is_fallback=True),
]

BUILD_BUTTON_LOCATORS: list[LocatorConfig] = [
    LocatorConfig("//button[@name='Submit' and normalize-space(.)='Build']", "submit_build_button", priority=0),
    LocatorConfig("//button[normalize-space(.)='Build']", "build_button", priority=1),
    LocatorConfig("//input[@type='submit' and @value='Build']", "build_input", priority=2, is_fallback=True),
]

# Entries of the hetero-list "Add" menus (parameter types, build steps, publishers)
def menu_item_locators(label: str) -> list[LocatorConfig]:
    return [
        LocatorConfig(f"//button[contains(@class,'jenkins-dropdown__item')][normalize-space(.)='{label}']",
                      "dropdown_item", priority=0),
        LocatorConfig(f"//a[contains(@class,'yuimenuitemlabel')][normalize-space(.)='{label}']",
                      "yui_menu_item", priority=1),
        LocatorConfig(f"//*[@role='menuitem' or self::li or self::a][normalize-space(.)='{label}']",
                      "generic_menu_item", priority=2, is_fallback=True),
    ]


_ALL_CHAINS = {
    "pending_build": PENDING_BUILD_LOCATORS,
    "build_form_nodes": BUILD_FORM_NODE_OPTIONS,
    "save_button": SAVE_BUTTON_LOCATORS,
    "build_button": BUILD_BUTTON_LOCATORS,
}


# =============================================================================
# LOCATOR STATS TRACKING
# =============================================================================

@dataclass
class LocatorStats:
    """Statistics for a single locator."""
    name: str
    xpath: str
    successes: int = 0
    failures: int = 0
    last_success: Optional[str] = None
    last_failure: Optional[str] = None

    @property
    def total_attempts(self) -> int:
        return self.successes + self.failures

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 0.5  # Neutral for untested locators
        return self.successes / self.total_attempts

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "xpath": self.xpath,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": round(self.success_rate, 3),
            "last_success": self.last_success,
            "last_failure": self.last_failure,
        }


# =============================================================================
# LOCATOR MANAGER
# =============================================================================

class LocatorManager:
    """Tries locator chains in order of observed reliability."""

    def __init__(self) -> None:
        self._stats: dict[str, LocatorStats] = {}
        for configs in _ALL_CHAINS.values():
            for config in configs:
                self._stats[config.name] = LocatorStats(name=config.name, xpath=config.xpath)

    def _stat(self, config: LocatorConfig) -> LocatorStats:
        stat = self._stats.get(config.name)
        if stat is None:
            stat = self._stats[config.name] = LocatorStats(name=config.name, xpath=config.xpath)
        return stat

    def ordered(self, configs: list[LocatorConfig]) -> list[LocatorConfig]:
        """Return locators ordered by success rate (highest first)."""
        def sort_key(config: LocatorConfig) -> tuple:
            return (-self._stat(config).success_rate, config.priority, config.is_fallback)

        return sorted(configs, key=sort_key)

    def _record(self, config: LocatorConfig, ok: bool) -> None:
        stat = self._stat(config)
        now = datetime.now(timezone.utc).isoformat()
        if ok:
            stat.successes += 1
            stat.last_success = now
        else:
            stat.failures += 1
            stat.last_failure = now

    async def find(self, scope: Any, configs: list[LocatorConfig], what: str) -> Any:
        """Return the first Playwright locator of the chain matching at least one element.

        Raises:
            ElementNotFound: no locator in the chain matched.
        """
        tried: list[str] = []
        for config in self.ordered(configs):
            tried.append(config.name)
            locator = scope.locator(f"xpath={config.xpath}")
            if await locator.count() > 0:
                self._record(config, True)
                logger.debug("locator_success", what=what, locator=config.name)
                return locator
            self._record(config, False)
        err = ElementNotFound(what, tried)
        log_acceptance_failure("locator", err)
        logger.warning("all_locators_failed", what=what, tried=tried)
        raise err

    async def text(self, scope: Any, configs: list[LocatorConfig], what: str) -> str:
        locator = await self.find(scope, configs, what)
        return (await locator.first.inner_text()).strip()

    async def texts(self, scope: Any, configs: list[LocatorConfig], what: str) -> list[str]:
        locator = await self.find(scope, configs, what)
        return [t.strip() for t in await locator.all_inner_texts()]

    async def click(self, scope: Any, configs: list[LocatorConfig], what: str) -> None:
        locator = await self.find(scope, configs, what)
        await locator.first.click()

    def get_all_stats(self) -> dict[str, LocatorStats]:
        return self._stats.copy()

    def health_report(self) -> dict:
        report: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "overall_healthy": True,
            "categories": {},
        }
        for category, configs in _ALL_CHAINS.items():
            stats = [self._stat(c) for c in configs]
            tested = [s for s in stats if s.total_attempts]
            healthy = not tested or any(s.success_rate > 0.3 for s in tested)
            report["categories"][category] = {
                "healthy": healthy,
                "locators": [s.to_dict() for s in stats],
            }
            if not healthy:
                report["overall_healthy"] = False
        return report


_manager_instance: Optional[LocatorManager] = None


def get_locator_manager() -> LocatorManager:
    global _manager_instance
    if _manager_instance is None:
        _manager_instance = LocatorManager()
    return _manager_instance


__all__ = [
    "LocatorConfig",
    "LocatorManager",
    "LocatorStats",
    "get_locator_manager",
    "menu_item_locators",
    "PENDING_BUILD_LOCATORS",
    "BUILD_FORM_NODE_OPTIONS",
    "SAVE_BUTTON_LOCATORS",
    "BUILD_BUTTON_LOCATORS",
]
