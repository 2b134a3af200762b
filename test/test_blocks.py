import pytest

import numpy as np

from dvidnode import blocks as blockslib
from dvidnode.exceptions import ShapeMismatchError

def test_blocks_endpoint():
  assert blockslib.blocks_endpoint('abc', 'gray', (1, 2, 3), 4) == '/node/abc/gray/blocks/1_2_3/4'

  with pytest.raises(ValueError):
    blockslib.blocks_endpoint('abc', 'gray', (1, 2), 4)

  with pytest.raises(ValueError):
    blockslib.blocks_endpoint('abc', 'gray', (1, 2, 3), 0)

def test_block_nbytes():
  assert blockslib.block_nbytes(np.uint8) == 32 ** 3
  assert blockslib.block_nbytes(np.uint64) == 8 * 32 ** 3
  assert blockslib.block_nbytes(np.uint8, 16) == 16 ** 3

@pytest.mark.parametrize("dtype", (np.uint8, np.uint64))
def test_encode_decode(dtype):
  blocks = np.random.randint(0, 255, size=(3, 32, 32, 32)).astype(dtype)
  payload = blockslib.encode_blocks(blocks, 3, dtype)
  assert len(payload) == 3 * blockslib.block_nbytes(dtype)

  decoded = blockslib.decode_blocks(payload, dtype, span=3)
  assert decoded.shape == (3, 32, 32, 32)
  assert np.array_equal(decoded, blocks)

def test_encode_bytes():
  payload = b'\x01' * (2 * 16 ** 3)
  assert blockslib.encode_blocks(payload, 2, np.uint8, 16) == payload

  with pytest.raises(ShapeMismatchError):
    blockslib.encode_blocks(payload, 3, np.uint8, 16)

def test_encode_wrong_count():
  blocks = np.zeros((2, 32, 32, 32), dtype=np.uint8)
  with pytest.raises(ShapeMismatchError):
    blockslib.encode_blocks(blocks, 3, np.uint8)

  with pytest.raises(ShapeMismatchError):
    blockslib.encode_blocks(blocks, 2, np.uint64)

def test_decode_partial():
  nbytes = blockslib.block_nbytes(np.uint8)

  # missing blocks are omitted by the store
  decoded = blockslib.decode_blocks(b'\x00' * nbytes, np.uint8, span=4)
  assert decoded.shape == (1, 32, 32, 32)

  decoded = blockslib.decode_blocks(b'', np.uint8, span=4)
  assert decoded.shape == (0, 32, 32, 32)

  with pytest.raises(ShapeMismatchError):
    blockslib.decode_blocks(b'\x00' * (nbytes + 1), np.uint8, span=4)

  with pytest.raises(ShapeMismatchError):
    blockslib.decode_blocks(b'\x00' * (3 * nbytes), np.uint8, span=2)
