"""
Document Nodes for Persistence
==============================

A small key-value document model used to serialize layers and networks:
- Doc: builder that creates nodes and writes/reads JSON
- DomNode: object, list or scalar node with typed accessors
- vector_node / node_vector, matrix_node / node_matrix: NumPy helpers

Every layer writes itself as an object node carrying a "type" tag, so a
whole network is one tree that round-trips through JSON.
"""

import json

import numpy as np

from .errors import InvalidFormat


class DomNode:
    """
    One node in a document tree.

    Args:
        value: dict (object node), list (list node) or a scalar
    """

    def __init__(self, value):
        self.value = value

    # ------------------------------------------------------------------
    # Object nodes
    # ------------------------------------------------------------------

    def is_object(self):
        return isinstance(self.value, dict)

    def is_list(self):
        return isinstance(self.value, list)

    def field(self, name):
        """Get a required field, raising InvalidFormat when absent."""
        node = self.field_if_exists(name)
        if node is None:
            raise InvalidFormat(f"Missing field '{name}'")
        return node

    def field_if_exists(self, name):
        if not self.is_object():
            raise InvalidFormat(f"Expected an object node while reading '{name}'")
        if name not in self.value:
            return None
        return self.value[name]

    def add_field(self, doc, name, value):
        """Add a field to an object node and return the stored child node."""
        if not self.is_object():
            raise InvalidFormat(f"Cannot add field '{name}' to a non-object node")
        node = doc.wrap(value)
        self.value[name] = node
        return node

    def fields(self):
        if not self.is_object():
            raise InvalidFormat("Expected an object node")
        return list(self.value.keys())

    # ------------------------------------------------------------------
    # List nodes
    # ------------------------------------------------------------------

    def items(self):
        if not self.is_list():
            raise InvalidFormat("Expected a list node")
        return list(self.value)

    def add_item(self, doc, value):
        if not self.is_list():
            raise InvalidFormat("Cannot add an item to a non-list node")
        node = doc.wrap(value)
        self.value.append(node)
        return node

    def __len__(self):
        if isinstance(self.value, (dict, list)):
            return len(self.value)
        raise InvalidFormat("Scalar nodes have no length")

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------

    def as_int(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise InvalidFormat(f"Expected an integer, got {self.value!r}")
        if isinstance(self.value, float) and not self.value.is_integer():
            raise InvalidFormat(f"Expected an integer, got {self.value!r}")
        return int(self.value)

    def as_float(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise InvalidFormat(f"Expected a number, got {self.value!r}")
        return float(self.value)

    def as_bool(self):
        if not isinstance(self.value, bool):
            raise InvalidFormat(f"Expected a bool, got {self.value!r}")
        return self.value

    def as_string(self):
        if not isinstance(self.value, str):
            raise InvalidFormat(f"Expected a string, got {self.value!r}")
        return self.value

    def to_python(self):
        """Convert the tree below this node to plain dicts, lists and scalars."""
        if self.is_object():
            return {k: v.to_python() for k, v in self.value.items()}
        if self.is_list():
            return [v.to_python() for v in self.value]
        return self.value

    def __repr__(self):
        if self.is_object():
            return f"DomNode(object, fields={list(self.value.keys())})"
        if self.is_list():
            return f"DomNode(list, len={len(self.value)})"
        return f"DomNode({self.value!r})"


class Doc:
    """Builder for DomNode trees, with JSON persistence."""

    def new_obj(self):
        return DomNode({})

    def new_list(self):
        return DomNode([])

    def new_int(self, value):
        return DomNode(int(value))

    def new_double(self, value):
        return DomNode(float(value))

    def new_bool(self, value):
        return DomNode(bool(value))

    def new_string(self, value):
        return DomNode(str(value))

    def wrap(self, value):
        """Turn a Python value into a node; nodes pass through unchanged."""
        if isinstance(value, DomNode):
            return value
        if isinstance(value, (bool, np.bool_)):
            return self.new_bool(value)
        if isinstance(value, (int, np.integer)):
            return self.new_int(value)
        if isinstance(value, (float, np.floating)):
            return self.new_double(value)
        if isinstance(value, str):
            return self.new_string(value)
        if isinstance(value, np.ndarray):
            return vector_node(self, value.ravel())
        if isinstance(value, dict):
            node = self.new_obj()
            for k, v in value.items():
                node.add_field(self, k, v)
            return node
        if isinstance(value, (list, tuple)):
            node = self.new_list()
            for v in value:
                node.add_item(self, v)
            return node
        raise InvalidFormat(f"Cannot store value of type {type(value).__name__}")

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def to_json(self, node, indent=None):
        return json.dumps(node.to_python(), indent=indent)

    def from_json(self, text):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidFormat(f"Malformed JSON document: {e}") from e
        return self.wrap(data)

    def save(self, node, filepath):
        with open(filepath, 'w') as f:
            f.write(self.to_json(node, indent=1))

    def load(self, filepath):
        with open(filepath, 'r') as f:
            return self.from_json(f.read())


def vector_node(doc, vector):
    """Store a vector as a list node of doubles."""
    node = doc.new_list()
    for v in np.asarray(vector, dtype=np.float64).ravel():
        node.add_item(doc, float(v))
    return node


def node_vector(node):
    return np.array([item.as_float() for item in node.items()], dtype=np.float64)


def matrix_node(doc, matrix):
    """Store a 2-D matrix as {rows, cols, vals} with vals in row-major order."""
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2:
        raise InvalidFormat(f"Expected a 2-D matrix, got shape {matrix.shape}")
    node = doc.new_obj()
    node.add_field(doc, 'rows', matrix.shape[0])
    node.add_field(doc, 'cols', matrix.shape[1])
    node.add_field(doc, 'vals', vector_node(doc, matrix))
    return node


def node_matrix(node):
    rows = node.field('rows').as_int()
    cols = node.field('cols').as_int()
    vals = node_vector(node.field('vals'))
    if vals.size != rows * cols:
        raise InvalidFormat(f"Matrix node holds {vals.size} values, expected {rows}x{cols}")
    return vals.reshape(rows, cols)
