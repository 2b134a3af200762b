"""
A Python client for the version node REST interface of DVID,
a versioned, block structured store for large image volumes,
labels, key-value data, label graphs, and regions of interest.

Each repository holds a history of immutable version nodes.
A NodeService binds one version node and exposes its datatype
instances as numpy arrays and Python objects.

Example:

  from dvidnode import NodeService

  ns = NodeService('emdata.example.org:8000', '3f8c')
  gray = ns.get_gray3D('grayscale', (64, 64, 64), (0, 0, 0)) # z,y,x
  ns.put_labels3D('segmentation', labels, (0, 0, 0))

  values, transactions = ns.get_properties('graph', [ 1, 2 ], 'size')
  leftover = ns.set_properties('graph', [ 1, 2 ], 'size', [ b'10', b'12' ], transactions)

Volume transfers with throttle=True (the default) run one at a
time per process so a pool of workers cannot swamp the store.
"""

from .connection import ConnectionMethod, DVIDConnection
from .graph import Edge, Graph, TransactionToken, Vertex, VertexTransactions
from .lib import BlockXYZ, PointXYZ, SubstackXYZ, DEFAULT_BLOCK_SIZE
from .node_service import NodeService, Slice2D
from .throttle import ThrottleGate, default_throttle_gate
from .volume import Volume
from .exceptions import (
  SizeLimitExceeded, ShapeMismatchError, AlignmentError,
  CompressionError, DecompressionError, TransportError,
  NotFoundError, StructuralPreconditionError,
  UnsupportedCapabilityError
)

from . import exceptions

__version__ = '0.3.0'
