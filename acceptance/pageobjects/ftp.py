"""'Send build artifacts over FTP' post-build action.

The publisher holds one or more servers ("sites"); every site holds one or
more transfer sets. New blocks are located as the last repeatable block
under the parent's path.
"""
from __future__ import annotations

from typing import Any

from .area import PageArea

TRANSFER_SET_CONTROLS = {
    "source_files": "sourceFiles",
    "remove_prefix": "removePrefix",
    "remote_directory": "remoteDirectory",
    "excludes": "excludes",
    "pattern_separator": "patternSeparator",
    "no_default_excludes": "noDefaultExcludes",
    "make_empty_dirs": "makeEmptyDirs",
    "flatten": "flatten",
    "remote_directory_sdf": "remoteDirectorySDF",
    "clean_remote": "cleanRemote",
    "ascii_mode": "asciiMode",
}

SITE_CONTROLS = {
    "add": "repeatable-add",
    "config_name": "configName",
}


def _block_xpath(name: str, parent: str) -> str:
    return f"//div[@name='{name}'][starts-with(@path,'{parent}/{name}')]"


class FtpTransferSet:
    def __init__(self, area: PageArea):
        self.area = area

    @classmethod
    async def attach(cls, page: Any, path: str) -> "FtpTransferSet":
        area = PageArea(page, path, TRANSFER_SET_CONTROLS)
        # most transfer fields sit behind the "Advanced" button
        await area.control("advanced-button").click()
        return cls(area)

    def control(self, name: str):
        return self.area.control(name)

    async def configure(self, *, source_files: str, remote_directory: str = "", remove_prefix: str = "",
                        excludes: str = "", flatten: bool = False, clean_remote: bool = False) -> None:
        await self.control("source_files").fill(source_files)
        if remote_directory:
            await self.control("remote_directory").fill(remote_directory)
        if remove_prefix:
            await self.control("remove_prefix").fill(remove_prefix)
        if excludes:
            await self.control("excludes").fill(excludes)
        await self.control("flatten").check(flatten)
        await self.control("clean_remote").check(clean_remote)


class FtpSite:
    def __init__(self, area: PageArea, default_transfer: FtpTransferSet):
        self.area = area
        self.default_transfer = default_transfer

    @classmethod
    async def attach(cls, page: Any, path: str) -> "FtpSite":
        area = PageArea(page, path, SITE_CONTROLS)
        transfer_path = await area.last_area_path(_block_xpath("transfers", path))
        return cls(area, await FtpTransferSet.attach(page, transfer_path))

    async def set_config_name(self, name: str) -> None:
        await self.area.control("config_name").select(name)

    async def add_transfer_set(self) -> FtpTransferSet:
        await self.area.control("add").click()
        path = await self.area.last_area_path(_block_xpath("transfers", self.area.path))
        return await FtpTransferSet.attach(self.area.page, path)


class FtpPublisher:
    DISPLAY_NAME = "Send build artifacts over FTP"

    def __init__(self, area: PageArea, default_site: FtpSite):
        self.area = area
        self.default_site = default_site

    @classmethod
    async def attach(cls, page: Any, path: str) -> "FtpPublisher":
        area = PageArea(page, path, {"add": "repeatable-add"})
        site_path = await area.last_area_path(_block_xpath("publishers", path))
        return cls(area, await FtpSite.attach(page, site_path))

    async def add_server(self) -> FtpSite:
        await self.area.control("add").click()
        path = await self.area.last_area_path(_block_xpath("publishers", self.area.path))
        return await FtpSite.attach(self.area.page, path)
