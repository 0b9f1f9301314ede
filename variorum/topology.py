"""
Apparatus Graph
===============

The resolved apparatus of one or more chunks as a directed graph.

NODES:
- app:<id>        one per apparatus entry
- grp:<id>        one per reading group
- <url>#<xml:id>  one per witness anchor

EDGES:
- app -> grp      kind="reading_group"
- grp -> anchor   kind="pointer", edition=<code>
- anchor -> app   kind="back_reference", read from the anchor's app-ref

The back_reference edge follows the attribute actually written on the
element, so an anchor claimed by several apparatus points only at the last.
"""

from __future__ import annotations
from typing import Iterable, List, Optional, Set
from dataclasses import dataclass
import networkx as nx

from .contracts import Apparatus, Pointer
from .spine import BACK_REFERENCE_ATTRIBUTE, SpineResolver


@dataclass(frozen=True)
class GraphMetrics:
    """Structural counts of an apparatus graph."""
    node_count: int
    edge_count: int
    apparatus_count: int
    group_count: int
    anchor_count: int
    components_count: int


def app_node(app_id: str) -> str:
    return f'app:{app_id}'


def group_node(group_id: str) -> str:
    return f'grp:{group_id}'


def anchor_node(ptr: Pointer) -> str:
    return ptr.target


class ApparatusGraph:
    """Wraps a networkx DiGraph built from resolved spines."""

    def __init__(self, back_reference_attribute: str = BACK_REFERENCE_ATTRIBUTE):
        self._graph = nx.DiGraph()
        self._attribute = back_reference_attribute

    def build(self, spines: Iterable[SpineResolver]) -> None:
        """Replace the graph with the apparatus of the given ready spines."""
        self._graph = nx.DiGraph()
        for spine in spines:
            self.add_apparatus(spine.apps, chunk=spine.chunk_number)

    def add_apparatus(self, apps: Iterable[Apparatus], chunk: Optional[int] = None) -> None:
        for app in apps:
            self._graph.add_node(app_node(app.id), kind='apparatus', n=app.n, chunk=chunk)
            for ptr in app.pointers:
                group = group_node(ptr.group_id)
                anchor = anchor_node(ptr)
                self._graph.add_node(group, kind='group')
                self._graph.add_node(anchor, kind='anchor', url=ptr.referenced_url)
                self._graph.add_edge(app_node(app.id), group, kind='reading_group')
                self._graph.add_edge(group, anchor, kind='pointer', edition=ptr.edition.code)

                if ptr.dereferenced is not None:
                    claimed_by = ptr.dereferenced.get(self._attribute)
                    if claimed_by is not None:
                        self._set_back_reference(anchor, claimed_by)

    def _set_back_reference(self, anchor: str, app_id: str) -> None:
        for _, target, data in list(self._graph.out_edges(anchor, data=True)):
            if data.get('kind') == 'back_reference':
                self._graph.remove_edge(anchor, target)
        self._graph.add_edge(anchor, app_node(app_id), kind='back_reference')

    def anchors_for_apparatus(self, app_id: str) -> Set[str]:
        node = app_node(app_id)
        if node not in self._graph:
            return set()
        return {
            anchor for group in self._graph.successors(node)
            for anchor in self._graph.successors(group)
            if self._graph.nodes[anchor].get('kind') == 'anchor'
        }

    def apparatus_for_anchor(self, anchor: str) -> Optional[str]:
        """Apparatus id named by the anchor's back-reference, if any."""
        if anchor not in self._graph:
            return None
        for _, target, data in self._graph.out_edges(anchor, data=True):
            if data.get('kind') == 'back_reference':
                return target[len('app:'):]
        return None

    def anchors_for_edition(self, edition_code: str) -> Set[str]:
        return {
            target for _, target, data in self._graph.edges(data=True)
            if data.get('kind') == 'pointer' and data.get('edition') == edition_code
        }

    def shared_anchors(self) -> List[str]:
        """Anchors pointed at from more than one apparatus (last writer holds the back-reference)."""
        shared = []
        for node, data in self._graph.nodes(data=True):
            if data.get('kind') != 'anchor':
                continue
            owners = {
                app for group in self._graph.predecessors(node)
                for app in self._graph.predecessors(group)
            }
            if len(owners) > 1:
                shared.append(node)
        return sorted(shared)

    def compute_metrics(self) -> GraphMetrics:
        kinds = [data.get('kind') for _, data in self._graph.nodes(data=True)]
        components = nx.number_weakly_connected_components(self._graph) if self._graph else 0
        return GraphMetrics(
            node_count=self._graph.number_of_nodes(),
            edge_count=self._graph.number_of_edges(),
            apparatus_count=kinds.count('apparatus'),
            group_count=kinds.count('group'),
            anchor_count=kinds.count('anchor'),
            components_count=components
        )

    @property
    def graph(self) -> nx.DiGraph:
        return self._graph
