"""Redes de Bitcoin tal como las nombra ldk-server.

Por qué existe:
- El servidor guarda el estado por red (API key, wallet) en un subdirectorio
  de su storage dir. Aquí traducimos el nombre que aparece en el config al
  nombre de ese directorio.
"""

from __future__ import annotations

from enum import Enum


class Network(str, Enum):
    """Redes en las que puede correr ldk-server."""

    BITCOIN = "bitcoin"
    TESTNET = "testnet"
    TESTNET4 = "testnet4"
    SIGNET = "signet"
    REGTEST = "regtest"

    @classmethod
    def parse(cls, value: str) -> "Network | None":
        """Red conocida para un valor del config (``mainnet`` es alias de ``bitcoin``)."""

        name = value.strip().lower()
        if name == "mainnet":
            return cls.BITCOIN
        try:
            return cls(name)
        except ValueError:
            return None


def network_dir_name(network: str) -> str:
    """Nombre del directorio que usa el servidor para ``network``.

    Los nombres desconocidos pasan tal cual, así los setups propios siguen
    funcionando.
    """

    known = Network.parse(network)
    return known.value if known is not None else network
