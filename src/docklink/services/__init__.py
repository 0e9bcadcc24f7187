"""Services for docklink.

- engine/: request/response access to the engine API
- stream/: frame decoding, demultiplexing and attach sessions
- lifecycle.py: LifecycleController state machine over process handles
- wait.py: WaitCoordinator for bounded waits on process exit
"""

from .lifecycle import LifecycleController, RunResult
from .wait import WaitCoordinator

__all__ = ["LifecycleController", "RunResult", "WaitCoordinator"]
