"""Control discovery and active exploration."""

from .active_explorer import ActiveExplorer, sample_options, search_terms_from_rows
from .controls import ControlDriver
from .discovery import ControlDiscovery, extract_label, is_interactive_dropdown

__all__ = [
    "ActiveExplorer",
    "ControlDiscovery",
    "ControlDriver",
    "extract_label",
    "is_interactive_dropdown",
    "sample_options",
    "search_terms_from_rows",
]
