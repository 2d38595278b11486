"""testfleet: duration-bounded test sharding and cost-aware distributed dispatch."""

__version__ = "0.1.0"

from testfleet.catalog import load_test_catalog  # noqa: E402
from testfleet.coordinator import Coordinator, run, run_blocking, run_from_config  # noqa: E402

__all__ = [
    "Coordinator",
    "__version__",
    "load_test_catalog",
    "run",
    "run_blocking",
    "run_from_config",
]
