"""
ADO Insights: commit, ranking, collaboration and delivery metrics for Azure DevOps.
"""

__version__ = "0.1.0"
