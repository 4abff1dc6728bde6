"""Conlets - pluggable components rendered in the console."""

from .base_conlet import BaseConlet, ConletContext, ConletResponse, RenderMode, mode_name
from .conlet_registry import ConletRegistry

# Import all conlet classes
from .helloworld.conlet import HelloWorldConlet
from .sysinfo.conlet import SysInfoConlet
from .messagebox.conlet import MessageBoxConlet

# All available conlets in registration order
ALL_CONLETS = [
    HelloWorldConlet,
    SysInfoConlet,
    MessageBoxConlet,
]

__all__ = [
    'BaseConlet', 'ConletContext', 'ConletResponse', 'RenderMode', 'mode_name',
    'ConletRegistry', 'ALL_CONLETS',
    'HelloWorldConlet', 'SysInfoConlet', 'MessageBoxConlet',
]
