"""Script tools: compile check and input bounds."""

from .api import register_script_tools

__all__ = ["register_script_tools"]
