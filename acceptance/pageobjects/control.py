"""Form controls addressed by the server's ``path`` attribute."""
from __future__ import annotations

from typing import Any, Iterable

from ..core.errors import ElementNotFound


def path_xpath(paths: Iterable[str]) -> str:
    return " | ".join(f"//*[@path='{p}']" for p in paths)


class Control:
    """A form element that can be read or set.

    Several candidate paths may be given; the first one present on the page
    wins (form layouts differ slightly between server versions).
    """

    def __init__(self, page: Any, *paths: str):
        if not paths:
            raise ValueError("a control needs at least one path")
        self.page = page
        self.paths = paths

    def __repr__(self) -> str:
        return f"<Control {self.paths[0]}>"

    @property
    def xpath(self) -> str:
        return path_xpath(self.paths)

    async def resolve(self) -> Any:
        locator = self.page.locator(f"xpath={self.xpath}")
        if await locator.count() == 0:
            raise ElementNotFound(f"control {self.paths[0]}", list(self.paths))
        return locator.first

    async def exists(self) -> bool:
        return await self.page.locator(f"xpath={self.xpath}").count() > 0

    async def click(self) -> None:
        await (await self.resolve()).click()

    async def check(self, state: bool = True) -> None:
        await (await self.resolve()).set_checked(state)

    async def is_checked(self) -> bool:
        return await (await self.resolve()).is_checked()

    async def fill(self, value: str) -> None:
        await (await self.resolve()).fill(value)

    async def set_value(self, value: str) -> None:
        """Set a value on elements hidden behind an editor widget (e.g. CodeMirror textareas)."""
        el = await self.resolve()
        await el.evaluate(
            "(e, v) => { e.value = v; if (e.codemirrorObject) { e.codemirrorObject.setValue(v); }"
            " e.dispatchEvent(new Event('change', {bubbles: true})); }",
            value,
        )

    async def value(self) -> str:
        return await (await self.resolve()).input_value()

    async def options(self) -> list[str]:
        el = await self.resolve()
        return [t.strip() for t in await el.locator("option").all_inner_texts()]

    async def selected_options(self) -> list[str]:
        el = await self.resolve()
        return await el.evaluate(
            "e => Array.from(e.selectedOptions).map(o => o.textContent.trim())"
        )

    async def select(self, *labels: str) -> None:
        """Replace the selection with ``labels``."""
        await (await self.resolve()).select_option(label=list(labels))

    async def add_selection(self, label: str) -> None:
        """Add ``label`` to a multi-select, keeping what is already selected."""
        current = await self.selected_options()
        if label not in current:
            await self.select(*current, label)
