"""
Label graph types and the property transaction protocol.

Vertex and edge weights are updated by accumulation, so many
writers may add to the same counters concurrently.

Properties are binary blobs guarded by optimistic concurrency.
Reading a property also returns a transaction token for every
vertex involved. A write must echo those tokens back; the store
applies it only to vertices whose token is still current and
reports the rest as failed. Writers never block one another,
the loser of a race simply re-reads and retries its leftovers.

Binary property payloads are little endian uint64 words:

  get request     n, id*n                (vertices)
                  n, (id1, id2)*n        (edges)
  get response    t, (id, token)*t, then per element:
                  id, size, bytes        (vertices)
                  id1, id2, size, bytes  (edges)
  set request     t, (id, token)*t, n, then per element as above
  set response    f, failed_vertex_id*f
"""
from collections.abc import Mapping
import struct

import numpy as np
import orjson

from .exceptions import ShapeMismatchError
from .lib import jsonify

UINT64 = struct.Struct('<Q')

class Vertex(object):
  """A graph vertex. Identity is its id."""
  __slots__ = [ 'id', 'weight' ]

  def __init__(self, id, weight=0.0):
    self.id = int(id)
    self.weight = float(weight)

  @property
  def key(self):
    return self.id

  def vertex_ids(self):
    return ( self.id, )

  def __eq__(self, other):
    return isinstance(other, Vertex) and self.id == other.id

  def __hash__(self):
    return hash(self.id)

  def __repr__(self):
    return "Vertex({}, weight={})".format(self.id, self.weight)

class Edge(object):
  """An undirected graph edge. Identity is its pair of vertex ids."""
  __slots__ = [ 'id1', 'id2', 'weight' ]

  def __init__(self, id1, id2, weight=0.0):
    self.id1 = int(id1)
    self.id2 = int(id2)
    self.weight = float(weight)

  @property
  def key(self):
    return (min(self.id1, self.id2), max(self.id1, self.id2))

  def vertex_ids(self):
    return ( self.id1, self.id2 )

  def __eq__(self, other):
    return isinstance(other, Edge) and self.key == other.key

  def __hash__(self):
    return hash(self.key)

  def __repr__(self):
    return "Edge({}, {}, weight={})".format(self.id1, self.id2, self.weight)

class Graph(object):
  def __init__(self, vertices=None, edges=None):
    self.vertices = list(vertices or [])
    self.edges = list(edges or [])

  def to_json(self):
    return jsonify({
      "Vertices": [ { "Id": v.id, "Weight": v.weight } for v in self.vertices ],
      "Edges": [ { "Id1": e.id1, "Id2": e.id2, "Weight": e.weight } for e in self.edges ],
    })

  @classmethod
  def from_json(cls, content):
    data = orjson.loads(content) if content else {}
    vertices = [ Vertex(v['Id'], v.get('Weight', 0.0)) for v in (data.get('Vertices') or []) ]
    edges = [ Edge(e['Id1'], e['Id2'], e.get('Weight', 0.0)) for e in (data.get('Edges') or []) ]
    return Graph(vertices, edges)

  def __len__(self):
    return len(self.vertices)

  def __repr__(self):
    return "Graph(vertices={}, edges={})".format(len(self.vertices), len(self.edges))

class TransactionToken(object):
  """
  Opaque version stamp issued by the store for one vertex.
  Only compare tokens and hand them back to set_properties.
  """
  __slots__ = [ '_value' ]

  def __init__(self, value):
    self._value = int(value)

  def __eq__(self, other):
    return isinstance(other, TransactionToken) and self._value == other._value

  def __hash__(self):
    return hash(self._value)

  def __repr__(self):
    return "TransactionToken(...)"

class VertexTransactions(Mapping):
  """Read only mapping of vertex id -> TransactionToken."""
  def __init__(self, tokens=None):
    self._tokens = dict(tokens or {})

  def __getitem__(self, vertex_id):
    return self._tokens[int(vertex_id)]

  def __iter__(self):
    return iter(self._tokens)

  def __len__(self):
    return len(self._tokens)

  def merge(self, other):
    tokens = dict(self._tokens)
    tokens.update(other._tokens)
    return VertexTransactions(tokens)

  def __repr__(self):
    return "VertexTransactions({} vertices)".format(len(self))

def as_element(elem):
  """Coerce ints to Vertex and pairs to Edge."""
  if isinstance(elem, (Vertex, Edge)):
    return elem
  if isinstance(elem, (tuple, list)) and len(elem) in (2, 3):
    return Edge(*elem)
  return Vertex(elem)

def as_elements(elements):
  elements = [ as_element(elem) for elem in elements ]
  kinds = { type(elem) for elem in elements }
  if len(kinds) > 1:
    raise TypeError("Vertices and edges cannot be mixed in one property request.")
  return elements

def is_edge_list(elements):
  return len(elements) > 0 and isinstance(elements[0], Edge)

class _Reader(object):
  def __init__(self, content):
    self.content = content
    self.pos = 0

  def uint64(self):
    if self.pos + UINT64.size > len(self.content):
      raise ShapeMismatchError(
        "Property payload truncated at byte {} of {}.".format(self.pos, len(self.content))
      )
    val, = UINT64.unpack_from(self.content, self.pos)
    self.pos += UINT64.size
    return val

  def blob(self, size):
    if self.pos + size > len(self.content):
      raise ShapeMismatchError(
        "Property of {} bytes overruns payload of {} bytes.".format(size, len(self.content))
      )
    data = bytes(self.content[self.pos:self.pos + size])
    self.pos += size
    return data

  def done(self):
    return self.pos >= len(self.content)

def encode_property_query(elements):
  words = [ len(elements) ]
  for elem in elements:
    words.extend(elem.vertex_ids())
  return np.array(words, dtype='<u8').tobytes()

def decode_property_response(content, elements):
  """
  Returns: (values in element order, VertexTransactions)

  Elements the store sent no value for, or an empty value, get None.
  """
  reader = _Reader(content)

  tokens = {}
  for _ in range(reader.uint64()):
    vertex_id = reader.uint64()
    tokens[vertex_id] = TransactionToken(reader.uint64())

  edges = is_edge_list(elements)
  found = {}
  while not reader.done():
    if edges:
      key = Edge(reader.uint64(), reader.uint64()).key
    else:
      key = reader.uint64()
    size = reader.uint64()
    found[key] = reader.blob(size) if size else None

  values = [ found.get(elem.key) for elem in elements ]
  return values, VertexTransactions(tokens)

def encode_property_update(elements, properties, transactions):
  """
  Build a guarded property write.

  Raises: ValueError before any I/O if lengths disagree or a
    vertex has no transaction token.
  """
  if len(elements) != len(properties):
    raise ValueError(
      "{} elements but {} properties.".format(len(elements), len(properties))
    )

  vertex_ids = []
  seen = set()
  for elem in elements:
    for vertex_id in elem.vertex_ids():
      if vertex_id not in transactions:
        raise ValueError(
          "No transaction token for vertex {}. Call get_properties first.".format(vertex_id)
        )
      if vertex_id not in seen:
        seen.add(vertex_id)
        vertex_ids.append(vertex_id)

  parts = [ UINT64.pack(len(vertex_ids)) ]
  for vertex_id in vertex_ids:
    parts.append(UINT64.pack(vertex_id))
    parts.append(UINT64.pack(transactions[vertex_id]._value))

  parts.append(UINT64.pack(len(elements)))
  for elem, prop in zip(elements, properties):
    if prop is None:
      prop = b''
    elif isinstance(prop, str):
      prop = prop.encode('utf8')
    prop = bytes(prop)

    for vertex_id in elem.vertex_ids():
      parts.append(UINT64.pack(vertex_id))
    parts.append(UINT64.pack(len(prop)))
    parts.append(prop)

  return b''.join(parts)

def decode_failed_vertices(content):
  reader = _Reader(content)
  return [ reader.uint64() for _ in range(reader.uint64()) ]

def leftover_elements(elements, failed_vertex_ids):
  """Elements touching any vertex whose token was stale."""
  failed = set(failed_vertex_ids)
  return [
    elem for elem in elements
    if any(vertex_id in failed for vertex_id in elem.vertex_ids())
  ]
