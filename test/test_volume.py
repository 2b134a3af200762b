import pytest

import numpy as np

from dvidnode import volume as volumelib
from dvidnode.compression import compress
from dvidnode.exceptions import (
  AlignmentError, DecompressionError,
  ShapeMismatchError, SizeLimitExceeded
)
from dvidnode.volume import MAX_VOXELS, Volume

def test_max_voxels():
  assert MAX_VOXELS == (2**31 - 1) // 8

def test_volume_endpoint_default():
  endpoint = volumelib.volume_endpoint('abc', 'grayscale', (64, 128, 256), (0, 32, 96))
  assert endpoint == '/node/abc/grayscale/raw/0_1_2/256_128_64/96_32_0'

def test_volume_endpoint_flags():
  endpoint = volumelib.volume_endpoint(
    'abc', 'labels', (32, 32, 32), (0, 0, 0),
    throttle=True, compress=True, roi='cells'
  )
  assert endpoint == '/node/abc/labels/raw/0_1_2/32_32_32/0_0_0?throttle=on&compress=lz4&roi=cells'

  endpoint = volumelib.volume_endpoint('abc', 'labels', (32, 32, 32), (0, 0, 0), compress='lz4')
  assert endpoint == '/node/abc/labels/raw/0_1_2/32_32_32/0_0_0?compress=lz4'

  endpoint = volumelib.volume_endpoint('abc', 'labels', (32, 32, 32), (0, 0, 0), roi='cells')
  assert endpoint == '/node/abc/labels/raw/0_1_2/32_32_32/0_0_0?roi=cells'

def test_volume_endpoint_channels():
  endpoint = volumelib.volume_endpoint('abc', 'gray', (10, 20, 30), (1, 2, 3), channels=(1, 0, 2))
  assert endpoint == '/node/abc/gray/raw/1_0_2/30_20_10/3_2_1'

  endpoint = volumelib.volume_endpoint('abc', 'gray', (20, 30), (2, 3))
  assert endpoint == '/node/abc/gray/raw/0_1/30_20/3_2'

  endpoint = volumelib.volume_endpoint('abc', 'gray', (10, 20, 30), (1, 2, 3), isotropic=True)
  assert endpoint == '/node/abc/gray/isotropic/0_1_2/30_20_10/3_2_1'

def test_volume_endpoint_invalid():
  with pytest.raises(ValueError):
    volumelib.volume_endpoint('abc', 'gray', (10, 20, 30), (1, 2, 3), channels=(0, 1))

  with pytest.raises(ValueError):
    volumelib.volume_endpoint('abc', 'gray', (10, 20, 30), (1, 2))

  with pytest.raises(ValueError):
    volumelib.volume_endpoint('abc', 'gray', (10, 0, 30), (1, 2, 3))

  with pytest.raises(ValueError):
    volumelib.volume_endpoint('abc', 'gray', (30,), (1,))

def test_size_limit():
  # 2048^3 voxels
  with pytest.raises(SizeLimitExceeded):
    volumelib.volume_endpoint('abc', 'gray', (2048, 2048, 2048), (0, 0, 0))

  # exactly at the limit is fine
  volumelib.check_volume_size((MAX_VOXELS, 1, 1))
  with pytest.raises(SizeLimitExceeded):
    volumelib.check_volume_size((MAX_VOXELS + 1, 1, 1))

  # SizeLimitExceeded is a ValueError
  with pytest.raises(ValueError):
    volumelib.check_volume_size((2048, 2048, 2048))

def test_check_alignment():
  volumelib.check_alignment((32, 64, 96), (0, 32, 128))
  volumelib.check_alignment((16, 16, 16), (16, 0, 48), block_size=16)

  with pytest.raises(AlignmentError):
    volumelib.check_alignment((32, 64, 95), (0, 0, 0))

  with pytest.raises(AlignmentError):
    volumelib.check_alignment((32, 32, 32), (0, 1, 0))

@pytest.mark.parametrize("compress", (False, True))
@pytest.mark.parametrize("dtype", (np.uint8, np.uint64))
def test_encode_decode(dtype, compress):
  image = np.random.randint(0, 255, size=(7, 11, 13)).astype(dtype)
  payload = volumelib.encode_volume(image, dtype, compress=compress)

  if not compress:
    assert payload == image.tobytes()

  vol = volumelib.decode_volume(payload, image.shape, dtype, compress=compress, offset=(1,2,3))
  assert isinstance(vol, Volume)
  assert vol.dtype == np.dtype(dtype)
  assert vol.shape == image.shape
  assert vol.offset == (1,2,3)
  assert np.array_equal(vol, image)

def test_encode_c_order():
  image = np.asfortranarray(np.arange(2*3*4, dtype=np.uint8).reshape((2,3,4)))
  payload = volumelib.encode_volume(image, np.uint8)
  assert payload == bytes(range(24))

def test_encode_wrong_width():
  image = np.zeros((4,4,4), dtype=np.uint16)
  with pytest.raises(ShapeMismatchError):
    volumelib.encode_volume(image, np.uint8)

  with pytest.raises(ShapeMismatchError):
    volumelib.encode_volume(image, np.uint64)

def test_decode_wrong_length():
  payload = np.zeros((4,4,4), dtype=np.uint8).tobytes()

  with pytest.raises(ShapeMismatchError):
    volumelib.decode_volume(payload[:-1], (4,4,4), np.uint8)

  with pytest.raises(ShapeMismatchError):
    volumelib.decode_volume(payload + b'\x00', (4,4,4), np.uint8)

  with pytest.raises(ShapeMismatchError):
    volumelib.decode_volume(payload, (4,4,4), np.uint64)

def test_decode_corrupt():
  with pytest.raises(DecompressionError):
    volumelib.decode_volume(b'\xf0\x00\x01\x02', (16,16,16), np.uint8, compress=True)

  # decompresses but to the wrong size
  payload = compress(np.zeros((8,8,8), dtype=np.uint8).tobytes(), 'lz4')
  with pytest.raises((DecompressionError, ShapeMismatchError)):
    volumelib.decode_volume(payload, (16,16,16), np.uint8, compress=True)

def test_volume_is_writable():
  payload = np.arange(8, dtype=np.uint8).tobytes()
  vol = Volume.from_buffer(payload, (2,2,2), np.uint8)
  vol[0,0,0] = 255
  assert vol[0,0,0] == 255
  assert vol.width == 1

def test_volume_attributes_survive_slicing():
  vol = Volume(np.zeros((4,4,4), dtype=np.uint64), offset=(0,32,64), channels=(0,1,2))
  sub = vol[1:3]
  assert isinstance(sub, Volume)
  assert sub.offset == (0,32,64)
  assert sub.channels == (0,1,2)
  assert sub.width == 8
