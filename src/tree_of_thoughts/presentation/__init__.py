"""Presentation layer for the tree-of-thoughts protocol.

Public API
----------
- :func:`render_dot` -- Graphviz DOT text for an investigation tree
- :class:`ConsoleDashboard` -- rich console output for protocol responses
"""

from tree_of_thoughts.presentation.console import ConsoleDashboard
from tree_of_thoughts.presentation.dot import STATE_COLORS, render_dot

__all__ = [
    "ConsoleDashboard",
    "STATE_COLORS",
    "render_dot",
]
