from adapters.server_config.loader import ServerConfigError, load_server_config, parse_server_config
from adapters.server_config.models import ServerConfigDocument
from adapters.server_config.writer import apply_chain_source, save_chain_source

__all__ = [
    "ServerConfigDocument",
    "ServerConfigError",
    "apply_chain_source",
    "load_server_config",
    "parse_server_config",
    "save_chain_source",
]
