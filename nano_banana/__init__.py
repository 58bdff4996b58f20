__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Public library API – import-light facade
# ---------------------------------------------------------------------------

from .core.memory import MemoryPressureController, MemorySnapshot  # noqa: F401,E402
from .core.storage import PersistedArtifact, StorageRouter  # noqa: F401,E402

__all__ = [
    "MemoryPressureController",
    "MemorySnapshot",
    "PersistedArtifact",
    "StorageRouter",
    "__version__",
]
