"""Job configuration form and job page."""
from __future__ import annotations

from typing import Any, Optional, TypeVar

import structlog

from ..core.errors import ElementNotFound
from ..jobs import Job
from ..locators import (
    BUILD_BUTTON_LOCATORS,
    BUILD_FORM_NODE_OPTIONS,
    PENDING_BUILD_LOCATORS,
    SAVE_BUTTON_LOCATORS,
    get_locator_manager,
    menu_item_locators,
)
from ..runtime.models import JobDefinition, ParameterDeclaration, ParameterKind
from .area import PageArea
from .control import Control
from .parameters import PARAMETER_TYPES, LabelParameter, NodeParameter

logger = structlog.get_logger(__name__)

PARAMETERS_PROPERTY = "/properties/hudson-model-ParametersDefinitionProperty"


P = TypeVar("P")


class JobConfigurator:
    """Drives ``/job/<name>/configure`` and mirrors what it set in a JobDefinition."""

    def __init__(self, page: Any, job: Job):
        self.page = page
        self.job = job
        self.root = PageArea(page, "")
        self.definition = JobDefinition(job.name)
        self.locators = get_locator_manager()

    @property
    def _settings(self):
        return self.job.client.settings

    async def open(self) -> "JobConfigurator":
        await self.page.goto(self.job.configure_url, timeout=self._settings.navigation_timeout_ms)
        return self

    async def _hetero_add(self, paths: tuple[str, ...], label: str, block_xpath: str) -> str:
        await Control(self.page, *paths).click()
        await self.locators.click(self.page, menu_item_locators(label), f"menu:{label}")
        return await self.root.last_area_path(block_xpath)

    async def add_parameter(self, kind: ParameterKind) -> NodeParameter | LabelParameter:
        await Control(self.page, f"{PARAMETERS_PROPERTY}/specified").check()
        cls = PARAMETER_TYPES[kind]
        path = await self._hetero_add(
            (
                f"{PARAMETERS_PROPERTY}/specified/hetero-list-add[parameterDefinitions]",
                f"{PARAMETERS_PROPERTY}/hetero-list-add[parameterDefinitions]",
            ),
            cls.DISPLAY_NAME,
            f"//div[@name='parameterDefinitions'][starts-with(@path,'{PARAMETERS_PROPERTY}/parameterDefinitions')]"
            " | //div[@name='parameter'][@path]",
        )
        placeholder = f"<parameter-{len(self.definition.parameters) + 1}>"
        declaration = self.definition.add_parameter(ParameterDeclaration(name=placeholder, kind=kind))
        logger.debug("parameter_added", job=self.job.name, kind=kind.value, path=path)
        return cls(self.page, path, self.definition, declaration)

    async def concurrent_build(self, enabled: bool = True) -> None:
        await Control(self.page, "/concurrentBuild").check(enabled)
        self.definition.concurrent_build = enabled

    async def add_shell_step(self, command: str) -> None:
        path = await self._hetero_add(
            ("/hetero-list-add[builder]",),
            "Execute shell",
            "//div[@name='builder'][starts-with(@path,'/builder')]",
        )
        await PageArea(self.page, path).control("command").set_value(command)
        self.definition.shell_steps.append(command)

    async def add_publisher(self, factory: type[P]) -> P:
        """Add a post-build action; ``factory`` provides DISPLAY_NAME and an async ``attach``."""
        path = await self._hetero_add(
            ("/hetero-list-add[publisher]",),
            factory.DISPLAY_NAME,
            "//div[@name='publisher'][starts-with(@path,'/publisher')]",
        )
        return await factory.attach(self.page, path)

    async def save(self) -> JobDefinition:
        await self.locators.click(self.page, SAVE_BUTTON_LOCATORS, "save_button")
        await self.page.wait_for_load_state()
        logger.info("job_saved", job=self.job.name,
                    parameters=[p.name for p in self.definition.parameters],
                    concurrent_build=self.definition.concurrent_build)
        return self.definition


class JobPage:
    """The job's landing page and its build form."""

    def __init__(self, page: Any, job: Job):
        self.page = page
        self.job = job
        self.locators = get_locator_manager()

    @property
    def _timeout(self) -> int:
        return self.job.client.settings.navigation_timeout_ms

    async def open(self) -> "JobPage":
        await self.page.goto(self.job.url, timeout=self._timeout)
        return self

    async def build_form(self) -> "JobPage":
        await self.page.goto(self.job.build_url, timeout=self._timeout)
        return self

    async def submit_build_form(self) -> None:
        await self.locators.click(self.page, BUILD_BUTTON_LOCATORS, "build_button")
        await self.page.wait_for_load_state()

    async def pending_text(self) -> str:
        """Text of the pending entry in the build history, '' while none is rendered.

        Reloads the job page first so every call reflects current queue state.
        """
        await self.open()
        try:
            return await self.locators.text(self.page, PENDING_BUILD_LOCATORS, "pending_build")
        except ElementNotFound:
            return ""

    async def has_content(self, text: str) -> bool:
        await self.open()
        return text in await self.page.inner_text("body")

    async def build_form_nodes(self) -> list[str]:
        return await self.locators.texts(self.page, BUILD_FORM_NODE_OPTIONS, "build_form_nodes")

    async def selected_default_nodes(self) -> list[str]:
        locator = await self.locators.find(self.page, BUILD_FORM_NODE_OPTIONS, "build_form_nodes")
        return await locator.evaluate_all(
            "opts => opts.filter(o => o.selected).map(o => o.textContent.trim())"
        )

    async def selected_default_node(self) -> Optional[str]:
        selected = await self.selected_default_nodes()
        return selected[0] if selected else None
