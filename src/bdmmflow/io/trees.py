"""
Time-calibrated phylogenetic tree parsing.

Trees are read from Newick strings carrying branch lengths in units of time
and optional BEAST-style metadata comments such as ``A[&type=1]:0.5``.
Sampled ancestors are encoded the usual way, as zero-length leaves hanging
off a two-child node.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union


@dataclass
class TreeNode:
    """
    Phylogenetic tree node.

    Attributes
    ----------
    id : int
        Node identifier (preorder position)
    name : Optional[str]
        Node name (for leaves)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes
    branch_length : float
        Branch length to parent, in units of time
    metadata : dict[str, str]
        Key/value pairs read from ``[&key=value]`` comments
    height : float
        Time before the youngest leaf (set by :meth:`Tree.from_newick`)
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)
    branch_length: float = 0.0
    metadata: dict[str, str] = field(default_factory=dict)
    height: float = 0.0

    def __repr__(self) -> str:
        return f"TreeNode(id={self.id}, name={self.name!r}, height={self.height:g})"

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def is_direct_ancestor(self) -> bool:
        """Zero-length leaf attached to a two-child node (a sampled ancestor)."""
        return (
            self.is_leaf
            and self.parent is not None
            and self.branch_length == 0.0
            and len(self.parent.children) == 2
        )

    @property
    def direct_ancestor_child(self) -> Optional["TreeNode"]:
        """The sampled-ancestor child of this node, if it has one."""
        for child in self.children:
            if child.is_direct_ancestor:
                return child
        return None


@dataclass
class Tree:
    """
    Rooted, time-calibrated phylogenetic tree.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes, sampled ancestors included
    leaf_names : list[str]
        Names of leaf nodes
    """

    root: TreeNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]

    @classmethod
    def from_newick(cls, newick_string: str) -> "Tree":
        """
        Parse a Newick tree with branch lengths and optional metadata.

        Parameters
        ----------
        newick_string : str
            Newick format tree, terminated by a semicolon

        Returns
        -------
        Tree
            Parsed tree with node heights filled in

        Raises
        ------
        ValueError
            If the string is not valid Newick
        """
        newick = newick_string.strip()
        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")
        tree_line = newick[:newick.index(';')]
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
        if not tree_line.strip():
            raise ValueError("Invalid Newick format: no tree found")

        node_id_counter = [0]

        def skip_whitespace(s: str, pos: int) -> int:
            while pos < len(s) and s[pos] in ' \t\n\r':
                pos += 1
            return pos

        def parse_comment(s: str, pos: int, node: TreeNode) -> int:
            """Parse a ``[...]`` comment, keeping ``[&...]`` metadata."""
            close = s.find(']', pos)
            if close == -1:
                raise ValueError(f"Unterminated comment at position {pos}")
            body = s[pos + 1:close]
            if body.startswith('&'):
                node.metadata.update(_parse_metadata(body[1:]))
            return skip_whitespace(s, close + 1)

        def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
            node = TreeNode(id=node_id_counter[0])
            node_id_counter[0] += 1
            node.parent = parent
            pos = skip_whitespace(s, start)

            if pos < len(s) and s[pos] == '(':
                pos = skip_whitespace(s, pos + 1)
                while True:
                    child, pos = parse_node(s, pos, node)
                    node.children.append(child)
                    pos = skip_whitespace(s, pos)

                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        continue
                    elif pos < len(s) and s[pos] == ')':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

            name_start = pos
            if pos < len(s) and s[pos] in '\'"':
                quote = s[pos]
                close = s.find(quote, pos + 1)
                if close == -1:
                    raise ValueError(f"Unterminated quoted name at position {pos}")
                node.name = s[pos + 1:close]
                pos = close + 1
            else:
                while pos < len(s) and s[pos] not in ',:();[ \t\n\r':
                    pos += 1
                if pos > name_start:
                    node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)
            if pos < len(s) and s[pos] == '[':
                pos = parse_comment(s, pos, node)

            if pos < len(s) and s[pos] == ':':
                pos = skip_whitespace(s, pos + 1)
                length_start = pos
                while pos < len(s) and s[pos] not in ',();[ \t\n\r':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")
                if node.branch_length < 0:
                    raise ValueError(f"Negative branch length: {node.branch_length}")
                pos = skip_whitespace(s, pos)
                if pos < len(s) and s[pos] == '[':
                    pos = parse_comment(s, pos, node)

            return node, pos

        root, pos = parse_node(tree_line, 0, None)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise ValueError(f"Unexpected characters after tree at position {pos}")

        tree = cls(root=root, n_nodes=0, n_leaves=0, leaf_names=[])
        nodes = tree.preorder()
        tree.n_nodes = len(nodes)
        leaves = [node for node in nodes if node.is_leaf]
        tree.n_leaves = len(leaves)
        tree.leaf_names = [leaf.name if leaf.name else str(leaf.id) for leaf in leaves]
        tree._assign_heights()
        return tree

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Tree":
        """Read the first Newick tree from a file."""
        with open(path, 'r') as f:
            return cls.from_newick(f.read())

    def _assign_heights(self) -> None:
        """Set every node's height relative to the youngest leaf."""
        depth = {}
        for node in self.preorder():
            depth[node.id] = 0.0 if node.parent is None else depth[node.parent.id] + node.branch_length
        max_depth = max(depth.values())
        for node in self.preorder():
            node.height = max_depth - depth[node.id]

    def preorder(self) -> list[TreeNode]:
        """Return nodes in pre-order (root first)."""
        result = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(reversed(node.children))
        return result

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Iterative, so deep trees do not hit the recursion limit.

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        result = []
        stack = [(self.root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                result.append(node)
                continue
            stack.append((node, True))
            for child in reversed(node.children):
                stack.append((child, False))
        return result

    def leaves(self) -> list[TreeNode]:
        return [node for node in self.preorder() if node.is_leaf]

    def get_node(self, name: str) -> TreeNode:
        """Look up a node by name."""
        for node in self.preorder():
            if node.name == name:
                return node
        raise KeyError(f"No node named '{name}'")

    @property
    def direct_ancestor_count(self) -> int:
        return sum(1 for node in self.preorder() if node.is_direct_ancestor)

    @property
    def root_height(self) -> float:
        return self.root.height


_METADATA_PATTERN = re.compile(r'\s*([^=,\s]+)\s*=\s*("[^"]*"|\'[^\']*\'|\{[^}]*\}|[^,]*)')


def _parse_metadata(body: str) -> dict[str, str]:
    """Split ``key=value,key2="value 2"`` into a dict of strings."""
    metadata = {}
    for match in _METADATA_PATTERN.finditer(body):
        key, value = match.group(1), match.group(2).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in '\'"':
            value = value[1:-1]
        metadata[key] = value
    return metadata
