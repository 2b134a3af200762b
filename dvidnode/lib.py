from collections import namedtuple
from functools import reduce
import operator

import orjson

# Edge length of a block. The store fixes this at
# repository creation; every repository seen so far uses 32.
DEFAULT_BLOCK_SIZE = 32

BlockXYZ = namedtuple('BlockXYZ', [ 'x', 'y', 'z' ])
PointXYZ = namedtuple('PointXYZ', [ 'x', 'y', 'z' ])
SubstackXYZ = namedtuple('SubstackXYZ', [ 'x', 'y', 'z', 'size' ])

def nvl(*args):
  for arg in args:
    if arg is not None:
      return arg
  return None

def sip(iterable, block_size):
  """Sips a fixed size from the iterable."""
  ct = 0
  block = []
  for x in iterable:
    ct += 1
    block.append(x)
    if ct == block_size:
      yield block
      ct = 0
      block = []

  if len(block) > 0:
    yield block

def jsonify(obj):
  """Serialize to JSON bytes. numpy arrays and scalars are accepted."""
  return orjson.dumps(obj, option=orjson.OPT_SERIALIZE_NUMPY)

def prod(lst):
  return reduce(operator.mul, (int(x) for x in lst), 1)

def check_channels(channels, ndim):
  """
  Validate a channel order against the rank of a volume.
  None is replaced by the identity order.

  Returns: tuple of ints
  """
  if channels is None:
    return tuple(range(ndim))

  channels = tuple(int(c) for c in channels)
  if len(channels) != ndim or sorted(channels) != list(range(ndim)):
    raise ValueError(
      "channels must be a permutation of {}. Got: {}".format(
        tuple(range(ndim)), channels
    ))
  return channels

def zyx_sort_key(coord):
  return (coord[2], coord[1], coord[0])

def block_center(block, block_size=DEFAULT_BLOCK_SIZE):
  """Voxel at the center of a block."""
  half = block_size // 2
  return PointXYZ(*[ int(c) * block_size + half for c in block[:3] ])
