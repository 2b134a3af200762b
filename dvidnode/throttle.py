import contextlib
import logging
import threading
import time

logger = logging.getLogger(__name__)

class ThrottleGate(object):
  """
  Admission control for expensive volume transfers.

  Because it is easy to overload a single store with hundreds of
  concurrent volume GETs/PUTs, throttled transfers pass through
  this gate one at a time. Waiters are admitted in arrival order
  (ticket lock).

  The gate is a context manager:

    with gate:
      status, content = connection.make_request(...)

  and is always released on exit, including when the request
  raises.

  Every NodeService in a process shares default_throttle_gate()
  unless it is handed its own gate.
  """
  def __init__(self):
    self._cond = threading.Condition(threading.Lock())
    self._next_ticket = 0
    self._serving = 0
    self._abandoned = set()
    self._holder = None

  @property
  def in_flight(self):
    with self._cond:
      return 0 if self._holder is None else 1

  @property
  def waiting(self):
    with self._cond:
      queued = self._next_ticket - self._serving - len(self._abandoned)
      return queued - (0 if self._holder is None else 1)

  def acquire(self, timeout=None):
    """
    Block until this caller may start a throttled transfer.

    timeout: seconds to wait, None waits forever

    Returns: True if acquired, False on timeout
    """
    start = time.monotonic()
    with self._cond:
      ticket = self._next_ticket
      self._next_ticket += 1

      if ticket != self._serving:
        logger.debug("Waiting on throttle gate behind %d transfer(s).", ticket - self._serving)

      try:
        acquired = self._cond.wait_for(lambda: self._serving == ticket, timeout)
      except BaseException:
        # an interrupted waiter must not hold up the queue
        self._abandon(ticket)
        raise

      if not acquired:
        self._abandon(ticket)
        return False

      self._holder = threading.get_ident()

    elapsed = time.monotonic() - start
    if elapsed > 1.0:
      logger.debug("Acquired throttle gate after %.2f sec.", elapsed)
    return True

  def release(self):
    with self._cond:
      if self._holder is None:
        raise RuntimeError("Released a throttle gate that was not held.")

      self._holder = None
      self._advance()

  def _abandon(self, ticket):
    """Give up a ticket that was never served. Caller holds _cond."""
    if ticket == self._serving and self._holder is None:
      self._advance()
    else:
      self._abandoned.add(ticket)
      self._cond.notify_all()

  def _advance(self):
    self._serving += 1
    while self._serving in self._abandoned:
      self._abandoned.remove(self._serving)
      self._serving += 1
    self._cond.notify_all()

  def hold(self, active=True):
    """Returns this gate when active, otherwise a context that does nothing."""
    if active:
      return self
    return contextlib.nullcontext()

  def __enter__(self):
    self.acquire()
    return self

  def __exit__(self, exception_type, exception_value, traceback):
    self.release()

_DEFAULT_GATE = None
_DEFAULT_GATE_LOCK = threading.Lock()

def default_throttle_gate():
  """The process wide gate shared by all NodeService instances."""
  global _DEFAULT_GATE
  with _DEFAULT_GATE_LOCK:
    if _DEFAULT_GATE is None:
      _DEFAULT_GATE = ThrottleGate()
    return _DEFAULT_GATE
