class SizeLimitExceeded(ValueError):
  """
  The requested transfer holds more voxels than a single
  request may carry (INT_MAX / 8).
  """
  pass

class ShapeMismatchError(ValueError):
  """Buffer length disagrees with the declared shape and voxel width."""
  pass

class AlignmentError(ValueError):
  """Signals that an operation requiring block alignment was not aligned."""
  pass

class CompressionError(Exception):
  """Unable to compress a payload."""
  pass

class DecompressionError(Exception):
  """Payload is corrupt or truncated and could not be decompressed."""
  pass

class TransportError(Exception):
  """
  The connection reported a failure: either the request
  could not be completed or the store answered with a
  non-2xx status.
  """
  def __init__(self, message, status_code=None, method=None, endpoint=None, content=None):
    super(TransportError, self).__init__(message)
    self.status_code = status_code
    self.method = method
    self.endpoint = endpoint
    self.content = content

class NotFoundError(Exception):
  """A value the caller required to exist was not found on the store."""
  pass

class StructuralPreconditionError(Exception):
  """
  The request referenced structure that does not exist yet,
  e.g. edges between vertices that were never created.
  The whole batch was rejected.
  """
  pass

class UnsupportedCapabilityError(Exception):
  """This operation is disabled for this node service."""
  pass
