"""Bugflow: role-gated defect report lifecycle tracker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bugflow")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from bugflow.core import Tracker
from bugflow.identity import MemberDirectory
from bugflow.report import Report
from bugflow.workflow import WorkflowEngine

__all__ = ["MemberDirectory", "Report", "Tracker", "WorkflowEngine", "__version__"]
