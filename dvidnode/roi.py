"""
Block level sparse representations: regions of interest and the
coarse (block granularity) volume of a label.

ROIs travel as JSON lists of runs along X in block coordinates:

  [ [z, y, x0, x1], ... ]    (x1 inclusive)

Coarse label volumes travel as a binary sparse volume:

  byte     payload descriptor (0)
  uint8    number of dimensions (3)
  uint8    dimension of run (0 = X)
  byte     reserved
  uint32   number of voxels (unused, 0)
  uint32   number of spans
  repeated per span:
    int32  x, y, z of the run start (block coordinates)
    int32  run length

All integers are little endian. Blocks are returned in ascending
(Z, Y, X) order regardless of how they arrived.
"""
import struct

import numpy as np
import orjson

from .exceptions import ShapeMismatchError
from .lib import (
  DEFAULT_BLOCK_SIZE, BlockXYZ, PointXYZ, SubstackXYZ,
  block_center, jsonify, zyx_sort_key
)

COARSE_HEADER = struct.Struct('<BBBBII')
COARSE_SPAN_DTYPE = np.dtype('<i4')

def canonical_blocks(blocks):
  """Unique blocks in ascending (Z, Y, X) order."""
  unique = { BlockXYZ(*[ int(c) for c in block[:3] ]) for block in blocks }
  return sorted(unique, key=zyx_sort_key)

def encode_roi_runs(blocks):
  """
  Run length encode blocks along X.

  Duplicates are dropped and input order does not matter.

  Returns: list of [z, y, x0, x1]
  """
  runs = []
  for block in canonical_blocks(blocks):
    if runs:
      run = runs[-1]
      if run[0] == block.z and run[1] == block.y and run[3] + 1 == block.x:
        run[3] = block.x
        continue
    runs.append([ block.z, block.y, block.x, block.x ])
  return runs

def decode_roi_runs(runs):
  """Expand [z, y, x0, x1] runs into canonically ordered blocks."""
  blocks = []
  for run in runs:
    if len(run) != 4:
      raise ValueError("ROI runs must be [z, y, x0, x1]. Got: {}".format(run))
    z, y, x0, x1 = (int(v) for v in run)
    blocks.extend(( BlockXYZ(x, y, z) for x in range(x0, x1 + 1) ))
  return canonical_blocks(blocks)

def encode_roi(blocks):
  return jsonify(encode_roi_runs(blocks))

def decode_roi(content):
  if not content:
    return []
  return decode_roi_runs(orjson.loads(content))

def partition_blocks(blocks, partition_size, block_size=DEFAULT_BLOCK_SIZE):
  """
  Cover a set of blocks with cubic substacks partition_size blocks
  on a side. The grid is aligned to block 0, the same absolute grid
  the store partitions on, so substack corners are multiples of
  partition_size blocks. A substack is kept if it holds at least
  one block.

  The packing factor is the number of blocks divided by the number
  of blocks the kept substacks cover. It lies in (0, 1] and is 1.0
  only when the blocks exactly fill their substacks. An empty block
  set has no substacks and a packing factor of 0.0.

  Returns: (substacks ordered by (Z, Y, X), packing_factor)
  """
  partition_size = int(partition_size)
  if partition_size < 1:
    raise ValueError("partition_size must be >= 1. Got: {}".format(partition_size))

  blocks = canonical_blocks(blocks)
  if not blocks:
    return [], 0.0

  coords = np.array(blocks, dtype=np.int64)
  cells = np.unique(coords // partition_size, axis=0)

  size = partition_size * block_size
  substacks = [
    SubstackXYZ(*[ int(v) for v in cell * partition_size * block_size ], size)
    for cell in cells
  ]
  substacks.sort(key=zyx_sort_key)

  covered = len(substacks) * (partition_size ** 3)
  return substacks, len(blocks) / covered

def decode_partition(content, partition_size, block_size=DEFAULT_BLOCK_SIZE):
  """
  Parse the store's /partition response.

  Returns: (substacks ordered by (Z, Y, X), packing_factor)
  """
  data = orjson.loads(content)
  size = int(partition_size) * block_size

  substacks = [
    SubstackXYZ(*[ int(v) for v in subvol['MinPoint'][:3] ], size)
    for subvol in (data.get('Subvolumes') or [])
  ]
  substacks.sort(key=zyx_sort_key)

  total = int(data.get('NumTotalBlocks', 0))
  if total == 0:
    return substacks, 0.0
  return substacks, int(data.get('NumActiveBlocks', 0)) / total

def encode_points(points):
  return jsonify([ [ int(c) for c in pt[:3] ] for pt in points ])

def decode_ptquery(content, num_points):
  """One boolean per queried point, in query order."""
  inroi = orjson.loads(content)
  if len(inroi) != num_points:
    raise ShapeMismatchError(
      "Queried {} points but received {} answers.".format(num_points, len(inroi))
    )
  return [ bool(v) for v in inroi ]

def decode_coarse_body(content):
  """
  Parse a coarse sparse volume into blocks.

  Returns: list of BlockXYZ in (Z, Y, X) order
  """
  if len(content) < COARSE_HEADER.size:
    raise ShapeMismatchError(
      "Coarse volume of {} bytes is shorter than its {} byte header.".format(
        len(content), COARSE_HEADER.size
    ))

  descriptor, ndim, rundim, reserved, voxels, nspans = COARSE_HEADER.unpack_from(content, 0)
  if ndim != 3 or rundim != 0:
    raise ValueError(
      "Only 3D coarse volumes with runs along X are supported. Got ndim={} rundim={}".format(ndim, rundim)
    )

  expected = COARSE_HEADER.size + nspans * 4 * COARSE_SPAN_DTYPE.itemsize
  if len(content) != expected:
    raise ShapeMismatchError(
      "Coarse volume with {} spans should be {} bytes. Got {}.".format(nspans, expected, len(content))
    )

  spans = np.frombuffer(
    content, dtype=COARSE_SPAN_DTYPE,
    count=nspans * 4, offset=COARSE_HEADER.size
  ).reshape((nspans, 4))

  blocks = []
  for x, y, z, length in spans.tolist():
    blocks.extend(( BlockXYZ(x + i, y, z) for i in range(length) ))

  return canonical_blocks(blocks)

def body_location(blocks, zplane=None, block_size=DEFAULT_BLOCK_SIZE):
  """
  Pick a representative voxel for a body from its coarse blocks.

  The block whose center is closest to the centroid of all block
  centers is chosen, so the point always lies in a block the body
  touches. Ties go to the first block in (Z, Y, X) order.

  If zplane is given and some blocks intersect that plane, only
  those blocks are considered and the point's z is zplane.
  Otherwise zplane is ignored.

  Returns: PointXYZ or None if there are no blocks
  """
  blocks = canonical_blocks(blocks)
  if not blocks:
    return None

  candidates = blocks
  constrained = False
  if zplane is not None:
    bz = int(zplane) // block_size
    inplane = [ block for block in blocks if block.z == bz ]
    if inplane:
      candidates = inplane
      constrained = True

  centers = np.array([ block_center(block, block_size) for block in candidates ], dtype=np.float64)
  centroid = centers.mean(axis=0)
  nearest = int(np.argmin(((centers - centroid) ** 2).sum(axis=1)))

  pt = block_center(candidates[nearest], block_size)
  if constrained:
    return PointXYZ(pt.x, pt.y, int(zplane))
  return pt
