"""Board controller and the task store clients it talks to."""

from .clients import EngineTaskStoreClient, HttpTaskStoreClient, TaskStoreClient
from .controller import ActionResult, BoardController

__all__ = [
    "ActionResult",
    "BoardController",
    "EngineTaskStoreClient",
    "HttpTaskStoreClient",
    "TaskStoreClient",
]
