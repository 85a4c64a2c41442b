"""
Unit tests for Newick tree parsing.
"""

import pytest

from bdmmflow.io.trees import Tree, TreeNode


class TestNewickParsing:
    """Test parsing of time-calibrated Newick trees."""

    def test_counts_and_names(self, four_taxon_tree):
        assert four_taxon_tree.n_nodes == 7
        assert four_taxon_tree.n_leaves == 4
        assert four_taxon_tree.leaf_names == ["A", "B", "C", "D"]

    def test_heights(self, four_taxon_tree):
        """Heights are measured back from the youngest sample."""
        tree = four_taxon_tree
        assert tree.get_node("C").height == pytest.approx(0.0)
        assert tree.get_node("A").height == pytest.approx(0.3)
        assert tree.get_node("B").height == pytest.approx(0.7)
        assert tree.get_node("D").height == pytest.approx(0.8)
        assert tree.root_height == pytest.approx(2.1)
        for node in tree.preorder():
            if node.parent is not None:
                assert node.parent.height - node.height == pytest.approx(node.branch_length)

    def test_metadata(self):
        tree = Tree.from_newick(
            "((A[&type=0,loc=\"north, east\"]:1.0,B[&type=1]:1.0)[&type=1]:0.5,C:1.5[&type=0]);"
        )
        assert tree.get_node("A").metadata == {"type": "0", "loc": "north, east"}
        assert tree.get_node("B").metadata["type"] == "1"
        assert tree.get_node("C").metadata["type"] == "0"
        assert tree.root.children[0].metadata["type"] == "1"

    def test_plain_comments_ignored(self):
        tree = Tree.from_newick("(A[some comment]:1.0,B:1.0);")
        assert tree.get_node("A").metadata == {}

    def test_quoted_names_and_whitespace(self):
        tree = Tree.from_newick("( 'sample one' : 1.0 ,\n B : 2.0 ) ;")
        assert tree.leaf_names == ["sample one", "B"]
        assert tree.get_node("sample one").height == pytest.approx(1.0)

    def test_missing_semicolon(self):
        with pytest.raises(ValueError, match="semicolon"):
            Tree.from_newick("(A:1,B:1)")

    def test_invalid_branch_length(self):
        with pytest.raises(ValueError, match="branch length"):
            Tree.from_newick("(A:x,B:1);")

    def test_negative_branch_length(self):
        with pytest.raises(ValueError, match="Negative"):
            Tree.from_newick("(A:-1,B:1);")

    def test_unbalanced_parentheses(self):
        with pytest.raises(ValueError):
            Tree.from_newick("((A:1,B:1):1;")

    def test_from_file(self, tree_file):
        tree = Tree.from_file(tree_file)
        assert tree.n_leaves == 4
        assert tree.get_node("B").metadata["type"] == "1"


class TestTraversal:
    """Test node orderings."""

    def test_postorder_children_first(self, four_taxon_tree):
        order = four_taxon_tree.postorder()
        position = {node.id: i for i, node in enumerate(order)}
        assert order[-1] is four_taxon_tree.root
        for node in order:
            for child in node.children:
                assert position[child.id] < position[node.id]
        assert [n.name for n in order if n.is_leaf] == ["A", "B", "C", "D"]

    def test_preorder_root_first(self, four_taxon_tree):
        order = four_taxon_tree.preorder()
        assert order[0] is four_taxon_tree.root
        assert [n.id for n in order] == list(range(7))

    def test_deep_tree_postorder(self):
        """A caterpillar deeper than the recursion limit of a naive traversal."""
        node = TreeNode(id=0, name="L0")
        for i in range(1, 3000):
            parent = TreeNode(id=i)
            leaf = TreeNode(id=10000 + i, name=f"L{i}", parent=parent, branch_length=1.0)
            node.parent = parent
            node.branch_length = 1.0
            parent.children = [node, leaf]
            node = parent
        tree = Tree(root=node, n_nodes=0, n_leaves=0, leaf_names=[])
        assert len(tree.postorder()) == 2 * 3000 - 1


class TestSampledAncestors:
    """Test detection of zero-length sampled-ancestor leaves."""

    def test_direct_ancestor(self, sampled_ancestor_newick):
        tree = Tree.from_newick(sampled_ancestor_newick)
        ancestor = tree.get_node("A")
        assert ancestor.is_direct_ancestor
        assert ancestor.parent.direct_ancestor_child is ancestor
        assert ancestor.height == pytest.approx(ancestor.parent.height)
        assert tree.direct_ancestor_count == 1
        assert tree.n_leaves == 4

    def test_ordinary_leaves_are_not_ancestors(self, four_taxon_tree):
        assert four_taxon_tree.direct_ancestor_count == 0
        assert all(n.direct_ancestor_child is None for n in four_taxon_tree.preorder())

    def test_zero_length_leaf_in_polytomy(self):
        tree = Tree.from_newick("(A:0.0,B:1.0,C:1.0);")
        assert not tree.get_node("A").is_direct_ancestor
