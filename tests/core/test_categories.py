"""
Tests for CategoryTree.
"""

import pytest

from terminal_core.core.categories import CategoryTree


@pytest.fixture
def tree():
    """storage -> {fuel -> {diesel}, water}"""
    tree = CategoryTree()
    tree.add_category("storage", "Storage")
    tree.add_category("fuel", "Fuel", parent_id="storage")
    tree.add_category("water", "Water", parent_id="storage")
    tree.add_category("diesel", "Diesel", parent_id="fuel")
    return tree


class TestCategoryTree:

    def test_relations(self, tree):
        assert tree.get_parent("diesel") == "fuel"
        assert tree.get_parent("storage") is None
        assert sorted(tree.get_children("storage")) == ["fuel", "water"]
        assert tree.get_name("fuel") == "Fuel"
        assert len(tree) == 4

    def test_descendants_are_transitive(self, tree):
        assert sorted(tree.get_descendants("storage")) == ["diesel", "fuel", "water"]
        assert tree.get_descendants("diesel") == []

    def test_subtree_of_unknown_category(self, tree):
        assert tree.get_subtree("unregistered") == ["unregistered"]
        assert tree.get_subtree("fuel") == ["fuel", "diesel"]

    def test_duplicate_and_orphan_rejected(self, tree):
        assert tree.add_category("fuel", "Again") is False
        assert tree.add_category("gas", "Gas", parent_id="missing") is False
        assert "gas" not in tree

    def test_remove_takes_descendants(self, tree):
        assert tree.remove_category("fuel") is True
        assert not tree.exists("diesel")
        assert tree.get_children("storage") == ["water"]
        assert tree.remove_category("fuel") is False

    def test_to_dict(self, tree):
        assert tree.to_dict()["diesel"] == {"name": "Diesel", "parent_id": "fuel"}
