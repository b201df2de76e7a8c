"""Page to page transition graphs."""

from __future__ import annotations

from typing import Iterable, List, Sequence

import pandas as pd

from .aggregation import Tables
from .query_helpers import base_where
from .types import CompiledFilter, FlowEdge, FlowGraph, UserFlow


def user_flow_query(tables: Tables, filter_: CompiledFilter) -> str:
    """Return transition counts between consecutive, distinct pages of a session."""

    return "\n".join(
        [
            "WITH page_sequences AS (",
            "  SELECT psid, pg, LAG(pg) OVER (PARTITION BY psid ORDER BY created) AS prev_page",
            f"  FROM {tables.analytics}",
            f"  WHERE {base_where(filter_.sql_suffix)} AND pg IS NOT NULL",
            ")",
            "SELECT prev_page AS source, pg AS target, COUNT(*) AS value",
            "FROM page_sequences",
            "WHERE prev_page IS NOT NULL AND prev_page != pg",
            "GROUP BY source, target",
            "ORDER BY value DESC",
        ]
    )


def remove_cyclic_dependencies(edges: Iterable[FlowEdge]) -> List[FlowEdge]:
    """Keep the first edge seen for every ``(source, target)`` pair."""

    seen = set()
    unique: List[FlowEdge] = []
    for edge in edges:
        key = (edge.source, edge.target)
        if key in seen:
            continue
        seen.add(key)
        unique.append(edge)
    return unique


def build_graph(edges: Sequence[FlowEdge]) -> FlowGraph:
    nodes: List[str] = []
    seen = set()
    for edge in edges:
        for node in (edge.source, edge.target):
            if node not in seen:
                seen.add(node)
                nodes.append(node)
    return FlowGraph(nodes=nodes, edges=list(edges))


def edges_from_frame(df: pd.DataFrame) -> List[FlowEdge]:
    return [
        FlowEdge(source=str(row["source"]), target=str(row["target"]), value=int(row["value"]))
        for row in df.to_dict(orient="records")
    ]


def build_user_flow(edges: Iterable[FlowEdge]) -> UserFlow:
    """Split de-duplicated edges into forward (``source < target``) and backward graphs."""

    ascending: List[FlowEdge] = []
    descending: List[FlowEdge] = []
    for edge in remove_cyclic_dependencies(edges):
        if edge.source < edge.target:
            ascending.append(edge)
        else:
            descending.append(edge)
    return UserFlow(ascending=build_graph(ascending), descending=build_graph(descending))


__all__ = ["build_graph", "build_user_flow", "edges_from_frame", "remove_cyclic_dependencies", "user_flow_query"]
