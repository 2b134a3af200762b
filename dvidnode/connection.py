from enum import Enum
import logging

import requests
import tenacity

from .config import load_config
from .exceptions import TransportError
from .lib import nvl
from .types import PayloadType, ResponseType

logger = logging.getLogger(__name__)

class ConnectionMethod(Enum):
  GET = 'GET'
  POST = 'POST'
  PUT = 'PUT'
  DELETE = 'DELETE'

RETRYABLE = (
  requests.exceptions.ConnectionError,
  requests.exceptions.Timeout,
)

def as_method(method):
  """Accepts a ConnectionMethod or a verb string like 'get'."""
  if isinstance(method, ConnectionMethod):
    return method
  return ConnectionMethod(str(method).upper())

def log_retry(retry_state):
  logger.warning(
    "Attempt %d of %s failed with %r. Retrying.",
    retry_state.attempt_number,
    retry_state.fn.__name__ if retry_state.fn else 'request',
    retry_state.outcome.exception(),
  )

def normalize_server(server):
  server = server.rstrip('/')
  if not server.startswith(('http://', 'https://')):
    server = 'http://' + server
  return server

class DVIDConnection(object):
  """
  Issues HTTP requests against the store's REST API.

  Endpoints are given relative to {server}/api, e.g.
  '/node/3f8c/grayscale/info'. Every request carries the 'u' (user)
  and 'app' query parameters so the store can attribute load.

  Transient network failures are retried with random exponential
  backoff. Non-2xx statuses are returned to the caller unchanged;
  interpreting them is not this layer's job.

  requests.Session objects are not threadsafe, so use one
  connection per thread.
  """
  def __init__(
    self, server=None, user=None, appname=None,
    timeout=None, retries=None, session=None
  ):
    config = load_config()

    server = nvl(server, config['server'])
    if not server:
      raise ValueError("No server specified. Pass one in or set DVID_SERVER.")

    self.server = normalize_server(server)
    self.user = nvl(user, config['user'])
    self.appname = nvl(appname, config['appname'])
    self.timeout = nvl(timeout, config['timeout'])
    self.retries = int(nvl(retries, config['retries']))

    self.session = session or requests.Session()
    self.session.params = { 'u': self.user, 'app': self.appname }

    self._retry = tenacity.retry(
      reraise=True,
      retry=tenacity.retry_if_exception_type(RETRYABLE),
      stop=tenacity.stop_after_attempt(self.retries),
      wait=tenacity.wait_random_exponential(0.5, 60.0),
      before_sleep=log_retry,
    )

  @property
  def api_url(self):
    return self.server + '/api'

  def url(self, endpoint):
    if not endpoint.startswith('/'):
      endpoint = '/' + endpoint
    return self.api_url + endpoint

  def make_request(
    self, endpoint:str, method=ConnectionMethod.GET,
    payload:PayloadType = None, headers:dict = None
  ) -> ResponseType:
    """
    Perform one HTTP request.

    endpoint: path relative to {server}/api
    method: ConnectionMethod or verb string
    payload: request body (bytes or str) or None
    headers: extra headers

    Returns: (status_code, content bytes)
    Raises: TransportError if the request could not be completed
    """
    method = as_method(method)
    url = self.url(endpoint)

    if isinstance(payload, str):
      payload = payload.encode('utf8')

    @self._retry
    def do_request():
      return self.session.request(
        method.value, url, data=payload,
        headers=headers, timeout=self.timeout,
      )

    logger.debug("%s %s (%d byte payload)", method.value, url, len(payload or b''))

    try:
      response = do_request()
    except requests.exceptions.RequestException as err:
      raise TransportError(
        "{} {} failed: {}".format(method.value, endpoint, err),
        method=method.value, endpoint=endpoint,
      ) from err

    return response.status_code, response.content

  def close(self):
    self.session.close()

  def __enter__(self):
    return self

  def __exit__(self, exception_type, exception_value, traceback):
    self.close()
