import os
import sys

from .base import Provider


def get_provider(config=None):
    """The provider for the running platform."""
    if os.name == 'nt':
        from .windows import WindowsProvider
        return WindowsProvider(config)
    if sys.platform == 'darwin':
        from .macos import MacProvider
        return MacProvider(config)
    from .linux import LinuxProvider
    return LinuxProvider(config)


__all__ = ['Provider', 'get_provider']
