import logging

import lz4.block

from .exceptions import DecompressionError, CompressionError

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ( None, 'lz4' )

def normalize_method(method):
  if method == True:
    method = 'lz4' # the store's native volume codec
  elif method == False:
    method = None

  method = (method or '').lower()
  return method or None

def decompress(content, method, uncompressed_size=None, endpoint='N/A'):
  """
  Decompress a payload.

  Required:
    content (bytes): payload to be decompressed
    method: None (no compression) or 'lz4'
  Optional:
    uncompressed_size (int): required for 'lz4' as the store
      sends bare lz4 blocks without a size header.
    endpoint (str:default:'N/A'): Used for debugging messages
  Raises:
    NotImplementedError if an unsupported codec is specified.
    DecompressionError if the stream is corrupt or truncated.

  Return: decompressed content
  """
  method = normalize_method(method)

  if method is None:
    return content
  elif method == 'lz4':
    try:
      return lz4_decompress(content, uncompressed_size)
    except DecompressionError:
      logger.error("Unable to decompress response from %s", endpoint)
      raise

  raise NotImplementedError(str(method) + ' is not currently supported. Supported Options: None, lz4')

def compress(content, method='lz4'):
  """
  Compresses a payload.

  Required:
    content (bytes): The information to be compressed
    method (str, default: 'lz4'): None or lz4
  Raises:
    NotImplementedError if an unsupported codec is specified.
    CompressionError if the encoder has an issue

  Return: compressed content
  """
  method = normalize_method(method)

  if method is None:
    return content
  elif method == 'lz4':
    return lz4_compress(content)
  raise NotImplementedError(str(method) + ' is not currently supported. Supported Options: None, lz4')

def lz4_compress(content):
  try:
    return lz4.block.compress(bytes(content), store_size=False)
  except (lz4.block.LZ4BlockError, OverflowError) as err:
    raise CompressionError(str(err)) from err

def lz4_decompress(content, uncompressed_size):
  if uncompressed_size is None:
    raise ValueError("lz4 payloads carry no size header. uncompressed_size is required.")
  if uncompressed_size == 0:
    return b''

  try:
    return lz4.block.decompress(bytes(content), uncompressed_size=int(uncompressed_size))
  except lz4.block.LZ4BlockError as err:
    raise DecompressionError(
      "lz4 stream of {} bytes could not be decoded into {} bytes: {}".format(
        len(content), uncompressed_size, err
    )) from err
