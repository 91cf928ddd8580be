"""
Upstream platform access for ADO Insights.

This package holds the Azure DevOps REST client and the normalization of its
JSON payloads into the engine's data structures.
"""

from ado_insights.vcs.azure_devops import AzureDevOpsClient, build_basic_auth_header

__all__ = [
    "AzureDevOpsClient",
    "build_basic_auth_header",
]
