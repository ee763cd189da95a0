"""Category hierarchy used by subcategory-aware filtering.

Categories form a forest stored as a networkx DiGraph with edges pointing
from parent to child. Equipment membership is NOT kept here: an equipment
belongs to a category through its own ``category_id`` and the entity
store's category index is the single source for that relation.
"""

import logging
from typing import Dict, List, Optional

import networkx as nx

logger = logging.getLogger(__name__)


class CategoryTree:
    """Parent/child relations between category ids."""

    def __init__(self):
        self._graph = nx.DiGraph()

    def add_category(self, category_id: str, name: str, parent_id: Optional[str] = None) -> bool:
        """Add a category under ``parent_id`` (None for a root).

        Returns:
            False if the id already exists or the parent is unknown
        """
        if category_id in self._graph:
            logger.warning(f"Category {category_id} already exists")
            return False
        if parent_id is not None and parent_id not in self._graph:
            logger.warning(f"Parent category {parent_id} not found for {category_id}")
            return False

        self._graph.add_node(category_id, name=name)
        if parent_id is not None:
            self._graph.add_edge(parent_id, category_id)
        logger.debug(f"Added category {category_id} ({name}) under {parent_id or 'root'}")
        return True

    def remove_category(self, category_id: str) -> bool:
        """Remove a category together with all of its descendants."""
        if category_id not in self._graph:
            return False
        doomed = nx.descendants(self._graph, category_id) | {category_id}
        self._graph.remove_nodes_from(doomed)
        logger.debug(f"Removed {len(doomed)} categories rooted at {category_id}")
        return True

    def exists(self, category_id: str) -> bool:
        return category_id in self._graph

    def get_name(self, category_id: str) -> Optional[str]:
        if category_id not in self._graph:
            return None
        return self._graph.nodes[category_id].get("name")

    def get_parent(self, category_id: str) -> Optional[str]:
        if category_id not in self._graph:
            return None
        parents = list(self._graph.predecessors(category_id))
        return parents[0] if parents else None

    def get_children(self, category_id: str) -> List[str]:
        if category_id not in self._graph:
            return []
        return list(self._graph.successors(category_id))

    def get_descendants(self, category_id: str) -> List[str]:
        """All transitive subcategories, breadth-first. Unknown id gives []."""
        if category_id not in self._graph:
            return []
        return [child for _, child in nx.bfs_edges(self._graph, category_id)]

    def get_subtree(self, category_id: str) -> List[str]:
        """The category itself followed by its descendants.

        An id unknown to the tree still yields ``[category_id]`` so equipment
        tagged with an unregistered category remains filterable.
        """
        return [category_id] + self.get_descendants(category_id)

    def to_dict(self) -> Dict[str, Dict[str, object]]:
        return {
            node: {"name": data.get("name"), "parent_id": self.get_parent(node)}
            for node, data in self._graph.nodes(data=True)
        }

    def __contains__(self, category_id: str) -> bool:
        return category_id in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()
