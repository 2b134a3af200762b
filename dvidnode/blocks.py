"""
Raw access to the store's fixed size cubic blocks.

A request covers `span` blocks that are contiguous along X
starting at a block coordinate. Covering more than one row of
blocks takes more than one request. Payloads are the blocks
concatenated in X order, each block laid out Z, Y, X (X fastest).

Compression and throttling are not supported at this layer.
"""
import numpy as np

from .exceptions import ShapeMismatchError
from .lib import DEFAULT_BLOCK_SIZE

def block_nbytes(dtype, block_size=DEFAULT_BLOCK_SIZE):
  return (block_size ** 3) * np.dtype(dtype).itemsize

def check_block_coords(block_coords):
  block_coords = tuple(int(c) for c in block_coords)
  if len(block_coords) != 3:
    raise ValueError("Block coordinates must be (x,y,z). Got: {}".format(block_coords))
  return block_coords

def check_span(span):
  span = int(span)
  if span < 1:
    raise ValueError("span must be >= 1. Got: {}".format(span))
  return span

def blocks_endpoint(uuid, instance, block_coords, span):
  """/node/{uuid}/{instance}/blocks/{bx}_{by}_{bz}/{span}"""
  block_coords = check_block_coords(block_coords)
  span = check_span(span)
  return "/node/{}/{}/blocks/{}/{}".format(
    uuid, instance, '_'.join(str(c) for c in block_coords), span
  )

def encode_blocks(blocks, span, dtype, block_size=DEFAULT_BLOCK_SIZE):
  """
  Serialize span blocks for a POST.

  blocks: bytes or array holding exactly span blocks. Arrays may be
    shaped (span, B, B, B) or anything with the same number of voxels.

  Raises: ShapeMismatchError if the byte length is not span blocks.
  """
  dtype = np.dtype(dtype)
  span = check_span(span)

  if isinstance(blocks, (bytes, bytearray, memoryview)):
    buf = bytes(blocks)
  else:
    blocks = np.asarray(blocks)
    if blocks.dtype.itemsize != dtype.itemsize:
      raise ShapeMismatchError(
        "Expected {} byte voxels ({}), got {}.".format(dtype.itemsize, dtype, blocks.dtype)
      )
    buf = np.ascontiguousarray(blocks, dtype=dtype).tobytes()

  expected = span * block_nbytes(dtype, block_size)
  if len(buf) != expected:
    raise ShapeMismatchError(
      "{} blocks of {} need {} bytes. Got {} bytes.".format(
        span, dtype, expected, len(buf)
    ))

  return buf

def decode_blocks(content, dtype, block_size=DEFAULT_BLOCK_SIZE, span=None):
  """
  Deserialize a block GET.

  The store omits blocks that do not exist, so a response can
  hold fewer than the requested span but never a partial block.

  Returns: array shaped (n, B, B, B)
  """
  dtype = np.dtype(dtype)
  nbytes = block_nbytes(dtype, block_size)

  if len(content) % nbytes != 0:
    raise ShapeMismatchError(
      "Response of {} bytes is not a whole number of {} byte blocks.".format(len(content), nbytes)
    )

  n = len(content) // nbytes
  if span is not None and n > span:
    raise ShapeMismatchError("Requested {} blocks but received {}.".format(span, n))

  arr = np.frombuffer(content, dtype=dtype).copy()
  return arr.reshape((n, block_size, block_size, block_size))
