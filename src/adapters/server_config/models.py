"""Modelos del fichero de configuración de ldk-server (TOML).

Idea:
- Solo tipamos las secciones que necesita un *cliente*: dirección REST,
  red, directorio de almacenamiento y la fuente de cadena (informativa).
- El resto del documento se ignora (`extra="ignore"`), así un servidor más
  nuevo con secciones extra no rompe el parseo.

Importante:
- `node.api_key` no se lee aunque exista: el servidor la ignora y genera la
  suya en `<storage_dir>/<network>/api_key`.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NodeSection(_Section):
    network: str = Field(..., min_length=1)
    rest_service_address: str = Field(..., min_length=1)


class DiskSection(_Section):
    dir_path: str = Field(..., min_length=1)


class StorageSection(_Section):
    disk: DiskSection


class BitcoindSection(_Section):
    rpc_address: str
    rpc_user: str
    rpc_password: str = Field(..., repr=False)


class ElectrumSection(_Section):
    server_url: str


class EsploraSection(_Section):
    server_url: str


class ServerConfigDocument(_Section):
    node: NodeSection
    storage: StorageSection
    bitcoind: BitcoindSection | None = None
    electrum: ElectrumSection | None = None
    esplora: EsploraSection | None = None
