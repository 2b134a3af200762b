from enum import Enum
from io import BytesIO
import logging

import numpy as np
import orjson
from PIL import Image

from . import blocks as blockslib
from . import graph as graphlib
from . import roi as roilib
from . import volume as volumelib
from .connection import ConnectionMethod, DVIDConnection, as_method
from .exceptions import (
  NotFoundError, StructuralPreconditionError,
  TransportError, UnsupportedCapabilityError
)
from .graph import Graph
from .lib import DEFAULT_BLOCK_SIZE, check_channels, jsonify, sip
from .throttle import default_throttle_gate
from .types import ChannelsType, CompressType, OffsetType, ShapeType
from .volume import GRAYSCALE, LABELS, Volume

logger = logging.getLogger(__name__)

# Property requests are split into batches of this many elements.
PROPERTY_BATCH_SIZE = 1000

class Slice2D(Enum):
  """Orthogonal cut plane of a tile."""
  XY = 'xy'
  XZ = 'xz'
  YZ = 'yz'

def is_success(status):
  return 200 <= status < 300

class NodeService(object):
  """
  Access to the datatype instances of one version node.

  Every call is a stateless request against the store. The only
  state shared between instances is the throttle gate that
  serializes throttled volume transfers; pass throttle_gate to use
  a gate other than the process wide one.

  requests sessions are not threadsafe, so create one NodeService
  per thread.

  Example:

    ns = NodeService('emdata.example.org:8000', '3f8c')
    vol = ns.get_gray3D('grayscale', (64, 128, 128), (0, 0, 0))
    ns.put_labels3D('segmentation', labels, (0, 0, 0))

  Shapes and offsets are in array axis order, i.e. (z, y, x) for
  the default channel order. See dvidnode.volume for details.
  """
  def __init__(
    self, server, uuid,
    user=None, appname=None,
    throttle_gate=None,
    enable_labelblock_writes=False,
    connection=None,
    block_size=DEFAULT_BLOCK_SIZE,
  ):
    if connection is None:
      connection = DVIDConnection(server, user=user, appname=appname)

    self.connection = connection
    self.uuid = str(uuid)
    self.throttle_gate = throttle_gate or default_throttle_gate()
    self.enable_labelblock_writes = bool(enable_labelblock_writes)
    self.block_size = int(block_size)

    # fails if the server or node does not exist
    self._request("/repo/{}/info".format(self.uuid))

  def __repr__(self):
    return "NodeService({}, {})".format(self.connection.server, self.uuid)

  def _node_endpoint(self, endpoint):
    if not endpoint.startswith('/'):
      endpoint = '/' + endpoint
    return "/node/{}{}".format(self.uuid, endpoint)

  def _raw_request(self, endpoint, method=ConnectionMethod.GET, payload=None, throttle=False):
    method = as_method(method)
    with self.throttle_gate.hold(throttle):
      return self.connection.make_request(endpoint, method, payload)

  def _request(self, endpoint, method=ConnectionMethod.GET, payload=None, throttle=False):
    method = as_method(method)
    status, content = self._raw_request(endpoint, method, payload, throttle)
    if not is_success(status):
      raise TransportError(
        "{} {} returned status {}: {}".format(
          method.value, endpoint, status, content[:200].decode('utf8', 'replace')
        ),
        status_code=status, method=method.value,
        endpoint=endpoint, content=content,
      )
    return content

  ######## Administrative ########

  def custom_request(self, endpoint, payload=None, method=ConnectionMethod.GET):
    """
    Issue an arbitrary request below this node. A request
    to /node/<uuid>/blah should provide the endpoint as '/blah'.

    Returns: response body as bytes
    """
    return self._request(self._node_endpoint(endpoint), method, payload)

  def get_typeinfo(self, datatype_name):
    """Returns: dict of meta data for a datatype instance."""
    content = self._request(self._node_endpoint("/{}/info".format(datatype_name)))
    return orjson.loads(content)

  def exists(self, datatype_endpoint):
    """Checks whether the given endpoint under this node answers."""
    endpoint = self._node_endpoint(datatype_endpoint)
    status, content = self._raw_request(endpoint)
    if is_success(status):
      return True
    elif 400 <= status < 500:
      return False

    raise TransportError(
      "GET {} returned status {}".format(endpoint, status),
      status_code=status, method='GET', endpoint=endpoint, content=content,
    )

  def create_datatype(self, datatype, datatype_name, sync_name=None):
    """
    Create a datatype instance at this node's repository.

    Returns: True if created, False if it already exists
    """
    if self.exists("/{}/info".format(datatype_name)):
      logger.info("%s already exists at %s.", datatype_name, self.uuid)
      return False

    spec = { "typename": datatype, "dataname": datatype_name }
    if sync_name:
      spec["sync"] = sync_name

    self._request("/repo/{}/instance".format(self.uuid), ConnectionMethod.POST, jsonify(spec))
    return True

  def create_grayscale8(self, datatype_name):
    return self.create_datatype("uint8blk", datatype_name)

  def create_labelblk(self, datatype_name, labelvol_name=None):
    """
    Create a uint64 labelblk instance and optionally a label volume
    synced to it. Syncing is configured at creation, so if one of
    the two already exists they may not be synced.

    Returns: True if everything requested was created
    """
    created = self.create_datatype("labelblk", datatype_name, labelvol_name)
    if labelvol_name:
      created = self.create_datatype("labelvol", labelvol_name, datatype_name) and created
    return created

  def create_keyvalue(self, keyvalue):
    return self.create_datatype("keyvalue", keyvalue)

  def create_graph(self, name):
    return self.create_datatype("labelgraph", name)

  def create_roi(self, name):
    return self.create_datatype("roi", name)

  ######## Tiles ########

  def get_tile_slice_binary(self, datatype_instance, slice, scaling, tile_loc):
    """
    Fetch an encoded (e.g. PNG or JPEG) precomputed tile.

    slice: Slice2D
    scaling: zoom level (0 = max res)
    tile_loc: (x, y, z) with the in-plane coordinates in tile units
    """
    slice = Slice2D(slice)
    if len(tile_loc) != 3:
      raise ValueError("tile_loc must be (x, y, z). Got: {}".format(tile_loc))

    endpoint = self._node_endpoint("/{}/tile/{}/{}/{}".format(
      datatype_instance, slice.value, int(scaling),
      '_'.join(str(int(c)) for c in tile_loc)
    ))
    return self._request(endpoint)

  def get_tile_slice(self, datatype_instance, slice, scaling, tile_loc):
    """Returns: 2D uint8 Volume of the decoded tile."""
    content = self.get_tile_slice_binary(datatype_instance, slice, scaling, tile_loc)
    with Image.open(BytesIO(content)) as img:
      tile = np.array(img.convert('L'), dtype=np.uint8)
    return Volume(tile)

  ######## Volumes ########

  def get_gray3D(
    self, datatype_instance:str,
    shape:ShapeType, offset:OffsetType,
    channels:ChannelsType = None,
    throttle:bool = True, compress:CompressType = False,
    roi:str = None, isotropic:bool = False
  ) -> Volume:
    """
    Fetch a uint8 grayscale volume.

    shape: size of the volume in array axis order, (z, y, x) by default
    offset: voxel offset in array axis order
    channels: store channel order, fastest axis first (default (0,1,2))
    throttle: pass through the throttle gate so only one volume
      transfer runs at a time
    compress: transfer lz4 compressed
    roi: mask the volume by this ROI (0 outside)
    isotropic: read from the instance's isotropic endpoint

    A 2D slice should be requested as (1, y, x).
    The volume may not hold more than INT_MAX / 8 voxels.
    """
    return self._get_volume3D(
      datatype_instance, shape, offset, channels,
      throttle, compress, roi, GRAYSCALE, isotropic
    )

  def get_labels3D(
    self, datatype_instance:str,
    shape:ShapeType, offset:OffsetType,
    channels:ChannelsType = None,
    throttle:bool = True, compress:CompressType = True,
    roi:str = None, isotropic:bool = False
  ) -> Volume:
    """Fetch a uint64 label volume. Arguments as in get_gray3D."""
    return self._get_volume3D(
      datatype_instance, shape, offset, channels,
      throttle, compress, roi, LABELS, isotropic
    )

  def _get_volume3D(
    self, datatype_instance, shape, offset, channels,
    throttle, compress, roi, dtype, isotropic=False
  ):
    if len(shape) != 3:
      raise ValueError("shape must have 3 dimensions. Got: {}".format(shape))

    channels = tuple(channels) if channels is not None else None
    endpoint = volumelib.volume_endpoint(
      self.uuid, datatype_instance, shape, offset,
      channels=channels, throttle=throttle, compress=compress,
      roi=roi, isotropic=isotropic,
    )
    content = self._request(endpoint, throttle=throttle)

    return volumelib.decode_volume(
      content, shape, dtype, compress=compress,
      offset=offset, channels=check_channels(channels, 3),
      endpoint=endpoint,
    )

  def get_label_by_location(self, datatype_instance, x, y, z):
    """Returns: label at the voxel (0 if none)."""
    endpoint = self._node_endpoint("/{}/label/{}_{}_{}".format(
      datatype_instance, int(x), int(y), int(z)
    ))
    content = self._request(endpoint)
    return int(orjson.loads(content).get("Label", 0))

  def put_gray3D(
    self, datatype_instance:str, volume, offset:OffsetType,
    throttle:bool = True, compress:CompressType = False,
    channels:ChannelsType = None
  ):
    """
    Write a uint8 grayscale volume.

    The shape and offset are in voxels, array axis order, and must
    be block aligned. The volume may not hold more than INT_MAX / 8
    voxels.

    channels: store channel order of the array. Defaults to the
      Volume's own channels, so a volume read with a channel order
      is written back in that order.
    """
    self._put_volume(datatype_instance, volume, offset, throttle, compress, None, GRAYSCALE, channels)

  def put_labels3D(
    self, datatype_instance:str, volume, offset:OffsetType,
    throttle:bool = True, compress:CompressType = True,
    roi:str = None, channels:ChannelsType = None
  ):
    """
    Write a uint64 label volume. roi restricts the write to that ROI.
    Other arguments as in put_gray3D.
    """
    self._put_volume(datatype_instance, volume, offset, throttle, compress, roi, LABELS, channels)

  def _put_volume(self, datatype_instance, volume, offset, throttle, compress, roi, dtype, channels=None):
    if channels is None:
      channels = getattr(volume, 'channels', None)
    channels = check_channels(channels, 3)

    volume = np.asarray(volume)
    if volume.ndim != 3:
      raise ValueError("volume must have 3 dimensions. Got: {}".format(volume.shape))

    volumelib.check_alignment(volume.shape, offset, self.block_size)
    endpoint = volumelib.volume_endpoint(
      self.uuid, datatype_instance, volume.shape, offset,
      channels=channels, throttle=throttle, compress=compress, roi=roi,
    )
    payload = volumelib.encode_volume(volume, dtype, compress=compress)
    self._request(endpoint, ConnectionMethod.POST, payload, throttle=throttle)

  ######## Blocks ########

  def get_grayblocks(self, datatype_instance, block_coords, span):
    """
    Fetch up to span uint8 blocks contiguous along X starting at
    block_coords (x, y, z in block units).

    Returns: array shaped (n, B, B, B), n <= span
    """
    return self._get_blocks(datatype_instance, block_coords, span, GRAYSCALE)

  def get_labelblocks(self, datatype_instance, block_coords, span):
    """As get_grayblocks but for uint64 labels."""
    return self._get_blocks(datatype_instance, block_coords, span, LABELS)

  def put_grayblocks(self, datatype_instance, blocks, block_coords, span=None):
    """
    Write uint8 blocks contiguous along X starting at block_coords.

    blocks: array shaped (span, B, B, B) or raw bytes of span blocks
    span: number of blocks (inferred from blocks when omitted)
    """
    self._put_blocks(datatype_instance, blocks, block_coords, span, GRAYSCALE)

  def put_labelblocks(self, datatype_instance, blocks, block_coords, span=None):
    """
    Write uint64 label blocks. Not every store version accepts
    these writes, so this is only available when the service was
    created with enable_labelblock_writes=True.
    """
    if not self.enable_labelblock_writes:
      raise UnsupportedCapabilityError(
        "put_labelblocks is unverified against the store. "
        "Create the NodeService with enable_labelblock_writes=True to use it."
      )
    self._put_blocks(datatype_instance, blocks, block_coords, span, LABELS)

  def _get_blocks(self, datatype_instance, block_coords, span, dtype):
    endpoint = blockslib.blocks_endpoint(self.uuid, datatype_instance, block_coords, span)
    content = self._request(endpoint)
    return blockslib.decode_blocks(content, dtype, self.block_size, span=span)

  def _put_blocks(self, datatype_instance, blocks, block_coords, span, dtype):
    if span is None:
      if isinstance(blocks, (bytes, bytearray, memoryview)):
        span = max(1, len(blocks) // blockslib.block_nbytes(dtype, self.block_size))
      else:
        blocks = np.asarray(blocks)
        span = blocks.shape[0] if blocks.ndim == 4 else 1

    payload = blockslib.encode_blocks(blocks, span, dtype, self.block_size)
    endpoint = blockslib.blocks_endpoint(self.uuid, datatype_instance, block_coords, span)
    self._request(endpoint, ConnectionMethod.POST, payload)

  ######## Key-Value ########

  def put(self, keyvalue, key, value):
    """
    Store a value at key, overwriting what this node holds there.

    value: bytes, str, a readable file object, or anything
      JSON serializable
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
      payload = bytes(value)
    elif isinstance(value, str):
      payload = value.encode('utf8')
    elif hasattr(value, 'read'):
      payload = value.read()
    else:
      payload = jsonify(value)

    self._request(self._node_endpoint("/{}/key/{}".format(keyvalue, key)), ConnectionMethod.POST, payload)

  def get(self, keyvalue, key):
    """
    Returns: bytes stored at key
    Raises: NotFoundError if there is nothing at key
    """
    endpoint = self._node_endpoint("/{}/key/{}".format(keyvalue, key))
    status, content = self._raw_request(endpoint)
    if status == 404:
      raise NotFoundError("{} has no key {} at {}.".format(keyvalue, key, self.uuid))
    elif not is_success(status):
      raise TransportError(
        "GET {} returned status {}".format(endpoint, status),
        status_code=status, method='GET', endpoint=endpoint, content=content,
      )
    return content

  def get_json(self, keyvalue, key):
    return orjson.loads(self.get(keyvalue, key))

  ######## Label Graph ########

  def get_subgraph(self, graph_name, vertices=None):
    """
    Download the vertices, edges, and weights among the given
    vertices. With no vertices the whole graph is fetched, which
    can be slow for large graphs.

    Returns: Graph
    """
    vertices = [ graphlib.as_element(v) for v in (vertices or []) ]
    payload = Graph(vertices).to_json() if vertices else None
    content = self._request(self._node_endpoint("/{}/subgraph".format(graph_name)), payload=payload)
    return Graph.from_json(content)

  def get_vertex_neighbors(self, graph_name, vertex):
    """Returns: Graph of the vertex and its immediate partners."""
    vertex = graphlib.as_element(vertex)
    endpoint = self._node_endpoint("/{}/neighbors/{}".format(graph_name, vertex.id))
    return Graph.from_json(self._request(endpoint))

  def update_vertices(self, graph_name, vertices):
    """
    Create vertices, or add to the weight of vertices that already
    exist. Safe for many concurrent writers.
    """
    vertices = [ graphlib.as_element(v) for v in vertices ]
    if not vertices:
      return

    endpoint = self._node_endpoint("/{}/weight".format(graph_name))
    self._request(endpoint, ConnectionMethod.POST, Graph(vertices).to_json())

  def update_edges(self, graph_name, edges):
    """
    Create edges, or add to the weight of edges that already exist.

    Raises: StructuralPreconditionError if an edge references a
      vertex that has not been created. No edge is written.
    """
    edges = [ graphlib.as_element(e) for e in edges ]
    if not edges:
      return

    endpoint = self._node_endpoint("/{}/weight".format(graph_name))
    status, content = self._raw_request(endpoint, ConnectionMethod.POST, Graph(edges=edges).to_json())

    if 400 <= status < 500:
      raise StructuralPreconditionError(
        "{} rejected {} edges: {}".format(graph_name, len(edges), content[:200].decode('utf8', 'replace'))
      )
    elif not is_success(status):
      raise TransportError(
        "POST {} returned status {}".format(endpoint, status),
        status_code=status, method='POST', endpoint=endpoint, content=content,
      )

  def _property_endpoint(self, graph_name, elements, key):
    kind = 'edges' if graphlib.is_edge_list(elements) else 'vertices'
    return self._node_endpoint("/{}/propertytransaction/{}/{}".format(graph_name, kind, key))

  def get_properties(self, graph_name, elements, key):
    """
    Fetch a property for a list of vertices or edges along with the
    transaction tokens needed to write it back.

    elements: Vertex or Edge objects (or ids / (id1, id2) pairs)
    key: property name

    Returns: (values, transactions)
      values: bytes per element in input order, None where unset
      transactions: VertexTransactions for every vertex involved
    """
    elements = graphlib.as_elements(elements)
    if not elements:
      return [], graphlib.VertexTransactions()

    endpoint = self._property_endpoint(graph_name, elements, key)

    values = []
    transactions = graphlib.VertexTransactions()
    for batch in sip(elements, PROPERTY_BATCH_SIZE):
      payload = graphlib.encode_property_query(batch)
      content = self._request(endpoint, payload=payload)
      batch_values, batch_transactions = graphlib.decode_property_response(content, batch)
      values.extend(batch_values)
      transactions = transactions.merge(batch_transactions)

    return values, transactions

  def set_properties(self, graph_name, elements, key, properties, transactions):
    """
    Write a property for a list of vertices or edges, guarded by
    the tokens from the latest get_properties.

    Elements whose vertices were written by someone else since the
    tokens were issued are left untouched and returned. Re-fetch
    their tokens and retry them.

    Returns: list of leftover elements (empty when all were written)
    """
    elements = graphlib.as_elements(elements)
    if not elements:
      return []

    payload = graphlib.encode_property_update(elements, properties, transactions)
    endpoint = self._property_endpoint(graph_name, elements, key)
    content = self._request(endpoint, ConnectionMethod.POST, payload)

    leftovers = graphlib.leftover_elements(elements, graphlib.decode_failed_vertices(content))
    if leftovers:
      logger.debug("%d of %d %s writes were stale.", len(leftovers), len(elements), key)
    return leftovers

  ######## ROI ########

  def post_roi(self, roi_name, blockcoords):
    """
    Add blocks (x, y, z in block units, any order) to an ROI.
    Blocks already in the ROI are unaffected.
    """
    blockcoords = list(blockcoords)
    if not blockcoords:
      return

    endpoint = self._node_endpoint("/{}/roi".format(roi_name))
    self._request(endpoint, ConnectionMethod.POST, roilib.encode_roi(blockcoords))

  def get_roi(self, roi_name):
    """Returns: list of BlockXYZ ordered by Z, then Y, then X."""
    content = self._request(self._node_endpoint("/{}/roi".format(roi_name)))
    return roilib.decode_roi(content)

  def get_roi_partition(self, roi_name, partition_size, partition_method='ask-dvid'):
    """
    Cover an ROI with substacks partition_size blocks on a side.

    partition_method:
      'ask-dvid': the store computes the partition
      'grid-aligned': fetch the ROI and partition it locally

    Returns: (substacks ordered by Z, Y, X, packing_factor)
    """
    partition_size = int(partition_size)
    if partition_size < 1:
      raise ValueError("partition_size must be >= 1. Got: {}".format(partition_size))

    if partition_method == 'ask-dvid':
      endpoint = self._node_endpoint("/{}/partition?batchsize={}".format(roi_name, partition_size))
      return roilib.decode_partition(self._request(endpoint), partition_size, self.block_size)
    elif partition_method == 'grid-aligned':
      return roilib.partition_blocks(self.get_roi(roi_name), partition_size, self.block_size)

    raise ValueError("Unknown partition_method: {}".format(partition_method))

  def roi_ptquery(self, roi_name, points):
    """
    Returns: list of bools, one per point (x, y, z voxels) in input
      order, True where the point is inside the ROI
    """
    points = list(points)
    if not points:
      return []

    endpoint = self._node_endpoint("/{}/ptquery".format(roi_name))
    content = self._request(endpoint, ConnectionMethod.POST, roilib.encode_points(points))
    return roilib.decode_ptquery(content, len(points))

  ######## Sparse Bodies ########

  def get_coarse_body(self, labelvol_name, bodyid):
    """
    Fetch the blocks a body touches.

    Returns: list of BlockXYZ ordered by Z, Y, X, or None if the
      body does not exist
    """
    endpoint = self._node_endpoint("/{}/sparsevol-coarse/{}".format(labelvol_name, int(bodyid)))
    status, content = self._raw_request(endpoint)

    if status in (204, 404) or (is_success(status) and not content):
      return None
    elif not is_success(status):
      raise TransportError(
        "GET {} returned status {}".format(endpoint, status),
        status_code=status, method='GET', endpoint=endpoint, content=content,
      )

    blocks = roilib.decode_coarse_body(content)
    return blocks or None

  def body_exists(self, labelvol_name, bodyid):
    return self.get_coarse_body(labelvol_name, bodyid) is not None

  def get_body_location(self, labelvol_name, bodyid, zplane=None):
    """
    Find an approximate central voxel of a body from its coarse
    volume. If zplane is given and the body touches that plane the
    point lies in it, otherwise zplane is ignored.

    Returns: PointXYZ or None if the body does not exist
    """
    blocks = self.get_coarse_body(labelvol_name, bodyid)
    if blocks is None:
      return None
    return roilib.body_location(blocks, zplane, self.block_size)
