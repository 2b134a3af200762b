import getpass
import json
import logging
import os

logger = logging.getLogger(__name__)

HOME = os.path.expanduser('~')
DVIDNODE_DIR = os.path.join(HOME, '.dvidnode')
DVIDNODE_DIR = os.environ.get("DVIDNODE_DIR", DVIDNODE_DIR)

DEFAULTS = {
  'server': None,
  'user': None,
  'appname': 'dvidnode',
  'timeout': 600.0,
  'retries': 7,
}

# environment variable -> (config key, parser)
ENVIRONMENT = {
  'DVID_SERVER': ('server', str),
  'DVID_USER': ('user', str),
  'DVID_APPNAME': ('appname', str),
  'DVIDNODE_TIMEOUT': ('timeout', float),
  'DVIDNODE_RETRIES': ('retries', int),
}

def configpath(filepath):
  return os.path.join(DVIDNODE_DIR, filepath)

def default_user():
  try:
    return getpass.getuser()
  except (KeyError, OSError): # no passwd entry e.g. in some containers
    return 'unknown'

def load_config_file(path=None):
  path = path or configpath('config.json')
  if not os.path.exists(path):
    return {}

  with open(path, 'rt') as f:
    data = json.loads(f.read())

  unknown = set(data.keys()) - set(DEFAULTS.keys())
  if unknown:
    logger.warning("Ignoring unknown keys in %s: %s", path, sorted(unknown))

  return { k: v for k, v in data.items() if k in DEFAULTS }

def load_config(path=None, environ=None):
  """
  Resolve client configuration.

  Precedence (lowest to highest):
    1. built in defaults
    2. ~/.dvidnode/config.json (or path)
    3. environment variables (DVID_SERVER, DVID_USER,
      DVID_APPNAME, DVIDNODE_TIMEOUT, DVIDNODE_RETRIES)

  Returns: dict with keys server, user, appname, timeout, retries
  """
  environ = os.environ if environ is None else environ

  config = dict(DEFAULTS)
  config.update(load_config_file(path))

  for var, (key, parser) in ENVIRONMENT.items():
    if var in environ and environ[var] != '':
      try:
        config[key] = parser(environ[var])
      except ValueError:
        raise ValueError("{} could not be parsed: {}".format(var, environ[var]))

  if config['user'] is None:
    config['user'] = default_user()

  if config['retries'] < 1:
    raise ValueError("retries must be >= 1. Got: {}".format(config['retries']))

  return config
