from . import errors
from . import options
from . import tree
from . import factory
from . import build
from . import risk
from . import controller
