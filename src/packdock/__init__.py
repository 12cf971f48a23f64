from ._version import __version__
from .client import PackdockClient, PackdockError, PackdockHTTPError
from .pipeline import InstallReport, PackInstaller

__all__ = ["InstallReport", "PackInstaller", "PackdockClient", "PackdockError", "PackdockHTTPError", "__version__"]
