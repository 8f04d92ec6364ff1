from .job import Job  # noqa: F401
from .tenant import TenantLimits  # noqa: F401
from .batch import Batch  # noqa: F401
from .document import Document  # noqa: F401
