import uuid

import pytest

from acceptance.bootstrap import Settings, open_context
from acceptance.browser import browser_session
from acceptance.jobs import freestyle_config_xml
from acceptance.nodes import NodeProvisioner


@pytest.fixture
async def ctx():
    async with open_context(Settings()) as context:
        yield context


@pytest.fixture
async def page(ctx):
    async with browser_session(ctx) as p:
        yield p


@pytest.fixture
async def agents(ctx):
    async with NodeProvisioner(ctx.client, ctx.poller, prefix="slave") as provisioner:
        yield provisioner


@pytest.fixture
async def job(ctx):
    j = await ctx.job(f"nodelabel-{uuid.uuid4().hex[:8]}").create(freestyle_config_xml())
    yield j
    await j.delete()
