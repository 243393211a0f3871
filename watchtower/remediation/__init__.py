"""Issue and fix-PR creation for threat matches."""

from .manifests import bump_package_json, bump_requirements_txt
from .planner import RemediationPlanner

__all__ = ["RemediationPlanner", "bump_package_json", "bump_requirements_txt"]
