"""hitball-bot — Group-chat hit counter game."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("hitball-bot")
except PackageNotFoundError:
    __version__ = "0.0.0"
