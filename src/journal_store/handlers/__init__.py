# Import all handlers so they register themselves.
# Handlers for the same event_type run in import order.
from . import mood  # noqa: F401
from . import medication  # noqa: F401
from . import assessment  # noqa: F401
