"""Version information for schemaledger."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("schemaledger")
except PackageNotFoundError:
    # Running from a source checkout without an install.
    __version__ = "0.1.0"
