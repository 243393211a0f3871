"""
Watchtower - Repository Threat-Correlation Core

This package indexes a repository's third-party dependencies, correlates
them against several independent vulnerability-intelligence feeds, and
opens tracking issues and version-bump pull requests for every match.
"""

__version__ = "1.0.0"
__author__ = "Security Automation"
