"""Path-scoped page areas built by composition.

An area knows its form path and a mapping of logical control names to
relative paths. Parameter and publisher page objects hold an area instead of
inheriting from a form base class.
"""
from __future__ import annotations

from typing import Any, Mapping

from ..core.errors import ElementNotFound
from .control import Control


class PageArea:
    def __init__(self, page: Any, path: str, controls: Mapping[str, str | tuple[str, ...]] | None = None):
        self.page = page
        self.path = path.rstrip("/")
        self.controls = dict(controls or {})

    def __repr__(self) -> str:
        return f"<PageArea {self.path}>"

    def _absolute(self, relative: str) -> str:
        if relative.startswith("/"):
            return relative
        return f"{self.path}/{relative}"

    def control(self, name: str) -> Control:
        """Control for a logical name (falls back to treating the name as a relative path)."""
        relative = self.controls.get(name, name)
        candidates = (relative,) if isinstance(relative, str) else tuple(relative)
        return Control(self.page, *(self._absolute(r) for r in candidates))

    def area(self, sub_path: str, controls: Mapping[str, str | tuple[str, ...]] | None = None) -> "PageArea":
        return PageArea(self.page, self._absolute(sub_path), controls)

    async def last_area_path(self, xpath: str) -> str:
        """``path`` attribute of the last element matching ``xpath`` (newest repeatable block)."""
        locator = self.page.locator(f"xpath={xpath}")
        count = await locator.count()
        if count == 0:
            raise ElementNotFound(f"area under {self.path}", [xpath])
        path = await locator.nth(count - 1).get_attribute("path")
        if not path:
            raise ElementNotFound(f"path attribute under {self.path}", [xpath])
        return path
