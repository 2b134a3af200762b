"""
Conversion between numpy arrays and the store's binary
volume representation.

Shapes and offsets on the Python side are listed in array
axis order (slowest to fastest varying), e.g. (z, y, x) for
the default channel order. Channels are listed the way the
store lists them: fastest varying axis first, so (0,1,2) means
X is the array column, Y the row, and Z the plane. The store's
endpoints list dimensions in channel order, which is the
reverse of the array order:

  array shape (64, 128, 256) + channels (0,1,2)
    -> .../raw/0_1_2/256_128_64/...

The payload is the raw voxel buffer (optionally lz4 compressed)
without any header. Shape and voxel width travel out of band.
"""
from typing import Optional

import numpy as np

from . import compression
from .exceptions import (
  AlignmentError, ShapeMismatchError, SizeLimitExceeded
)
from .lib import DEFAULT_BLOCK_SIZE, check_channels, prod
from .types import ChannelsType, CompressType, OffsetType, ShapeType

INT_MAX = 2**31 - 1

# The store will not accept a transfer with more voxels than this.
MAX_VOXELS = INT_MAX // 8

GRAYSCALE = np.dtype(np.uint8)
LABELS = np.dtype(np.uint64)

class Volume(np.ndarray):
  """
  A C-ordered numpy array of voxels fetched from or bound for the store.

  offset: offset of the first voxel in array axis order
  channels: store channel order the array was laid out in
  """
  def __new__(cls, buf, offset=None, channels=None):
    buf = np.ascontiguousarray(buf)
    obj = super(Volume, cls).__new__(cls, shape=buf.shape, buffer=buf, dtype=buf.dtype, order='C')
    obj.offset = tuple(offset) if offset is not None else None
    obj.channels = tuple(channels) if channels is not None else None
    return obj

  def __array_finalize__(self, obj):
    if obj is None:
      return

    self.offset = getattr(obj, 'offset', None)
    self.channels = getattr(obj, 'channels', None)

  @classmethod
  def from_buffer(cls, buf, shape, dtype, offset=None, channels=None):
    """
    Wrap a binary buffer holding exactly prod(shape) voxels.

    Raises: ShapeMismatchError if the buffer is larger or smaller.
    """
    dtype = np.dtype(dtype)
    shape = tuple(int(s) for s in shape)
    expected = prod(shape) * dtype.itemsize

    if len(buf) != expected:
      raise ShapeMismatchError(
        "Buffer of {} bytes does not match shape {} of {} ({} bytes).".format(
          len(buf), shape, dtype, expected
      ))

    # frombuffer over bytes is read only
    arr = np.frombuffer(buf, dtype=dtype).reshape(shape).copy()
    return Volume(arr, offset=offset, channels=channels)

  @property
  def width(self):
    """Bytes per voxel."""
    return self.dtype.itemsize

def check_shape(shape):
  shape = tuple(int(s) for s in shape)
  if len(shape) not in (2, 3):
    raise ValueError("Volumes must have 2 or 3 dimensions. Got: {}".format(shape))
  if any(s <= 0 for s in shape):
    raise ValueError("Every extent must be > 0. Got: {}".format(shape))
  return shape

def check_volume_size(shape):
  """Raises SizeLimitExceeded when shape holds more than MAX_VOXELS voxels."""
  voxels = prod(shape)
  if voxels > MAX_VOXELS:
    raise SizeLimitExceeded(
      "Requested {} voxels for shape {}. A single transfer is limited to {} voxels.".format(
        voxels, tuple(shape), MAX_VOXELS
    ))
  return voxels

def check_alignment(shape, offset, block_size=DEFAULT_BLOCK_SIZE):
  """Writes must start and end on block boundaries."""
  misaligned = [ int(o) % block_size != 0 for o in offset ]
  misaligned += [ int(s) % block_size != 0 for s in shape ]
  if any(misaligned):
    raise AlignmentError(
      "Volume writes must be aligned to {} voxel blocks. Got shape {} at offset {}.".format(
        block_size, tuple(shape), tuple(offset)
    ))

def volume_endpoint(
  uuid:str, instance:str,
  shape:ShapeType, offset:OffsetType,
  channels:ChannelsType = None,
  throttle:bool = False, compress:CompressType = False,
  roi:Optional[str] = None, isotropic:bool = False
) -> str:
  """
  Construct the REST endpoint for a volume GET or PUT.

    /node/{uuid}/{instance}/raw|isotropic/{channels}/{dims}/{offset}[?throttle=on][&compress=lz4][&roi=name]

  Query flags only appear when they differ from the default, so
  default calls produce the shortest endpoint.
  """
  shape = check_shape(shape)
  offset = tuple(int(o) for o in offset)
  if len(offset) != len(shape):
    raise ValueError("offset {} must have the same length as shape {}.".format(offset, shape))

  channels = check_channels(channels, len(shape))
  check_volume_size(shape)

  endpoint = "/node/{}/{}/{}/{}/{}/{}".format(
    uuid, instance,
    ('isotropic' if isotropic else 'raw'),
    '_'.join(str(c) for c in channels),
    '_'.join(str(s) for s in reversed(shape)),
    '_'.join(str(o) for o in reversed(offset)),
  )

  query = []
  if throttle:
    query.append('throttle=on')
  if compression.normalize_method(compress):
    query.append('compress=lz4')
  if roi:
    query.append('roi={}'.format(roi))

  if query:
    endpoint += '?' + '&'.join(query)

  return endpoint

def encode_volume(image, dtype, compress:CompressType = False) -> bytes:
  """
  Serialize an array for a PUT. The array is laid out C-contiguous
  (last axis fastest) and optionally lz4 compressed.

  Raises:
    ShapeMismatchError if the array's voxel width differs from dtype's
    SizeLimitExceeded if the array is too large for one transfer
  """
  dtype = np.dtype(dtype)
  image = np.asarray(image)

  if image.dtype.itemsize != dtype.itemsize:
    raise ShapeMismatchError(
      "Expected {} byte voxels ({}), got {} byte voxels ({}).".format(
        dtype.itemsize, dtype, image.dtype.itemsize, image.dtype
    ))

  check_shape(image.shape)
  check_volume_size(image.shape)

  buf = np.ascontiguousarray(image, dtype=dtype).tobytes()
  expected = prod(image.shape) * dtype.itemsize
  if len(buf) != expected:
    raise ShapeMismatchError("Encoded {} bytes, expected {}.".format(len(buf), expected))

  if compression.normalize_method(compress):
    return compression.compress(buf, 'lz4')
  return buf

def decode_volume(
  content:bytes, shape:ShapeType, dtype,
  compress:CompressType = False,
  offset:OffsetType = None, channels:ChannelsType = None,
  endpoint:str = 'N/A'
) -> Volume:
  """
  Deserialize a GET response into a Volume.

  Raises:
    DecompressionError if the payload cannot be decompressed
    ShapeMismatchError if the payload does not hold exactly prod(shape) voxels
  """
  dtype = np.dtype(dtype)
  shape = check_shape(shape)
  nbytes = prod(shape) * dtype.itemsize

  if compression.normalize_method(compress):
    content = compression.decompress(content, 'lz4', uncompressed_size=nbytes, endpoint=endpoint)

  return Volume.from_buffer(content, shape, dtype, offset=offset, channels=channels)
