from .tenant import Department, Tenant  # noqa: F401
from .user import User  # noqa: F401
from .subscription import Subscription  # noqa: F401
from .alert import AlertChannel, AlertLog, AlertSettings  # noqa: F401
