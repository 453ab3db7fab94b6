"""Infrastructure layer for the tree-of-thoughts protocol.

Re-exports the public API surface for convenience::

    from tree_of_thoughts.infrastructure import (
        PolicyConfig, StoreConfig, load_config_file,
        InMemoryInvestigationStore, JsonFileInvestigationStore,
        EventBus, EventLog,
    )
"""

from tree_of_thoughts.infrastructure.config import (
    PolicyConfig,
    StoreConfig,
    load_config_file,
    load_config_from_json,
    load_config_from_yaml,
)
from tree_of_thoughts.infrastructure.event_bus import EventBus, EventLog
from tree_of_thoughts.infrastructure.serialization import (
    from_json,
    from_yaml,
    investigation_from_dict,
    investigation_to_dict,
    to_json,
    to_yaml,
)
from tree_of_thoughts.infrastructure.store import (
    InMemoryInvestigationStore,
    InvestigationStore,
    JsonFileInvestigationStore,
    create_store,
)

__all__ = [
    # Configuration
    "PolicyConfig",
    "StoreConfig",
    "load_config_file",
    "load_config_from_json",
    "load_config_from_yaml",
    # Event bus
    "EventBus",
    "EventLog",
    # Serialization
    "investigation_to_dict",
    "investigation_from_dict",
    "to_json",
    "from_json",
    "to_yaml",
    "from_yaml",
    # Stores
    "InvestigationStore",
    "InMemoryInvestigationStore",
    "JsonFileInvestigationStore",
    "create_store",
]
