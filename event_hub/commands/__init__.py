from .catalog import ModelCatalog, ModelRecord
from .dispatcher import CommandDispatcher, CommandPublisher, DispatchResult
from .models import Command, CommandType

__all__ = [
    "Command",
    "CommandDispatcher",
    "CommandPublisher",
    "CommandType",
    "DispatchResult",
    "ModelCatalog",
    "ModelRecord",
]
