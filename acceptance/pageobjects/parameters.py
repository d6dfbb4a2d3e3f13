"""Node and label parameter areas of the job configuration form."""
from __future__ import annotations

from typing import Any

from ..locators import BUILD_FORM_NODE_OPTIONS, get_locator_manager
from ..runtime.models import JobDefinition, NodeEligibility, ParameterDeclaration, ParameterKind
from .area import PageArea

NO_RESTRICTION = "ALL (no restriction)"

NODE_PARAMETER_CONTROLS = {
    "name": "name",
    "description": "description",
    "default_nodes": "defaultSlaves",
    "allowed_nodes": "allowedSlaves",
    "run_if_success": "triggerIfResult[success]",
    "allow_multiple": "triggerIfResult[allowMultiSelectionForConcurrentBuilds]",
    "disallow_multiple": "triggerIfResult[multiSelectionDisallowed]",
    "eligibility": ("nodeEligibility", "nodeEligibility/stapler-class"),
}

LABEL_PARAMETER_CONTROLS = {
    "name": "name",
    "description": "description",
    "default_value": "defaultValue",
    "all_nodes_matching_label": "allNodesMatchingLabel",
    "run_if_success": "triggerIfResult[success]",
    "allow_multiple": "triggerIfResult[allowMultiSelectionForConcurrentBuilds]",
    "eligibility": ("nodeEligibility", "nodeEligibility/stapler-class"),
}


class _ParameterArea:
    KIND: ParameterKind
    DISPLAY_NAME: str
    CONTROLS: dict

    def __init__(self, page: Any, path: str, definition: JobDefinition, declaration: ParameterDeclaration):
        self.area = PageArea(page, path, self.CONTROLS)
        self.definition = definition
        self.declaration = declaration

    @property
    def page(self) -> Any:
        return self.area.page

    def control(self, name: str):
        return self.area.control(name)

    async def set_name(self, name: str) -> None:
        self.definition.rename_parameter(self.declaration.name, name)
        await self.control("name").fill(name)

    async def run_if_success(self) -> None:
        await self.control("run_if_success").check()
        self.declaration.run_if_success = True

    async def set_eligibility(self, eligibility: NodeEligibility) -> None:
        await self.control("eligibility").select(eligibility.value)
        self.declaration.eligibility = eligibility


class NodeParameter(_ParameterArea):
    KIND = ParameterKind.NODE
    DISPLAY_NAME = "Node"
    CONTROLS = NODE_PARAMETER_CONTROLS

    async def select_default_node(self, node: str) -> None:
        await self.control("default_nodes").add_selection(node)
        self.declaration.default_nodes.append(node)

    async def allow_node(self, node: str) -> None:
        """Add ``node`` to the allowed set; ``NO_RESTRICTION`` lifts the restriction."""
        await self.control("allowed_nodes").add_selection(node)
        if node == NO_RESTRICTION:
            self.declaration.allowed_nodes = None
        else:
            self.declaration.allowed_nodes = (self.declaration.allowed_nodes or []) + [node]

    async def allow_multiple(self) -> None:
        await self.control("allow_multiple").check()
        self.declaration.multiple = True
        self.declaration.run_if_success = False

    async def disallow_multiple(self) -> None:
        await self.control("disallow_multiple").check()
        self.declaration.multiple = False
        self.declaration.run_if_success = False

    async def possible_nodes_options(self) -> list[str]:
        """Options of the "allowed nodes" list (built-in node, no-restriction entry and agents)."""
        return await self.control("allowed_nodes").options()

    async def applicable_nodes(self) -> list[str]:
        """Nodes offered on the build form; the page must show the build form."""
        return await get_locator_manager().texts(self.page, BUILD_FORM_NODE_OPTIONS, "build_form_nodes")


class LabelParameter(_ParameterArea):
    KIND = ParameterKind.LABEL
    DISPLAY_NAME = "Label"
    CONTROLS = LABEL_PARAMETER_CONTROLS

    async def set_default_value(self, label_expression: str) -> None:
        await self.control("default_value").fill(label_expression)
        self.declaration.default_value = label_expression

    async def all_nodes_matching_label(self, enabled: bool = True) -> None:
        await self.control("all_nodes_matching_label").check(enabled)
        self.declaration.multiple = enabled


PARAMETER_TYPES: dict[ParameterKind, type[_ParameterArea]] = {
    ParameterKind.NODE: NodeParameter,
    ParameterKind.LABEL: LabelParameter,
}
