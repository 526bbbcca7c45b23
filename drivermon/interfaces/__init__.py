from .backend import Backend, Unsubscribe
from .command_sink import CommandEvent, CommandSink

__all__ = ["Backend", "Unsubscribe", "CommandEvent", "CommandSink"]
