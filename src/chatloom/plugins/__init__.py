from chatloom.plugins.base import ChatPlugin, FunctionPlugin, PluginContext
from chatloom.plugins.manager import PluginManager

__all__ = ["ChatPlugin", "FunctionPlugin", "PluginContext", "PluginManager"]
