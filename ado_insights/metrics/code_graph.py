"""
Bipartite author/file collaboration graph.

Nodes are files (by path) and authors; an author→file link is weighted by
the number of distinct commits in which that author touched that file.
"""

import posixpath
from collections import Counter, defaultdict

from ado_insights.metrics.base import author_key, most_common_key
from ado_insights.models import CodeGraphData, GraphLink, GraphNode, RawCommit

UNKNOWN_PROJECT = "Unknown"


def _commit_paths(commit: RawCommit) -> list[str]:
    """Distinct non-empty paths of a commit, in change order."""
    paths: list[str] = []
    for change in commit.changes or ():
        if change.path and change.path not in paths:
            paths.append(change.path)
    return paths


def build_code_graph(commits: list[RawCommit], identity: str = "name") -> CodeGraphData:
    """Build file nodes, then author nodes, then links from commits and their change lists."""
    file_projects: dict[str, Counter[str]] = defaultdict(Counter)
    author_projects: dict[str, Counter[str]] = defaultdict(Counter)
    link_weights: dict[tuple[str, str], int] = {}
    link_projects: dict[tuple[str, str], str] = {}

    for commit in commits:
        project = commit.project_name or UNKNOWN_PROJECT
        author = author_key(commit.author.name, commit.author.email, identity)
        author_projects[author][project] += 1

        for path in _commit_paths(commit):
            file_projects[path][project] += 1
            pair = (author, path)
            if pair not in link_weights:
                link_weights[pair] = 0
                link_projects[pair] = project
            link_weights[pair] += 1

    nodes = [
        GraphNode(
            id=path,
            name=posixpath.basename(path) or path,
            type="file",
            commit_count=sum(projects.values()),
            project_name=most_common_key(projects),
        )
        for path, projects in file_projects.items()
    ]
    nodes.extend(
        GraphNode(
            id=author,
            name=author,
            type="author",
            commit_count=sum(projects.values()),
            project_name=most_common_key(projects),
        )
        for author, projects in author_projects.items()
    )
    links = [
        GraphLink(
            source=author,
            target=path,
            weight=weight,
            project_name=link_projects[(author, path)],
        )
        for (author, path), weight in link_weights.items()
    ]
    return CodeGraphData(nodes=nodes, links=links)
