from .ask import ask_command
from .chat import chat_command
from .info import config_command, keys_command, models_command, providers_command, version_command

__all__ = [
    "ask_command",
    "chat_command",
    "models_command",
    "providers_command",
    "keys_command",
    "config_command",
    "version_command",
]
