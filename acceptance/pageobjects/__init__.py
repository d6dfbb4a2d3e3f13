"""Page objects for the job configuration UI."""

from .area import PageArea
from .control import Control
from .ftp import FtpPublisher, FtpSite, FtpTransferSet
from .job import JobConfigurator, JobPage
from .parameters import NO_RESTRICTION, LabelParameter, NodeParameter

__all__ = [
    "Control",
    "PageArea",
    "JobConfigurator",
    "JobPage",
    "NodeParameter",
    "LabelParameter",
    "NO_RESTRICTION",
    "FtpPublisher",
    "FtpSite",
    "FtpTransferSet",
]
