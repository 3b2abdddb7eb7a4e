"""
Runtime capability acquisition.

A provider (a key, a vault client, another engine) hands out a
CapabilityContract mapping operation names to callables. A consumer learns
the operations it recognises into its own table and calls them by name,
without importing the provider's type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

SIGN = "sign"
VERIFY = "verify"
GET_PUBLIC_KEY = "getPublicKey"

CRYPTO_CAPABILITIES = frozenset({SIGN, VERIFY, GET_PUBLIC_KEY})


class MissingCapabilityError(Exception):
    """Raised when executing a capability that has not been learned."""


@dataclass
class CapabilityContract:
    """Operations offered by a provider, keyed by name."""

    provider_id: str
    capabilities: dict[str, Callable[..., Any]] = field(default_factory=dict)

    def copy(self) -> CapabilityContract:
        return CapabilityContract(provider_id=self.provider_id, capabilities=dict(self.capabilities))


class CapabilityBroker:
    """Table of learned capabilities.

    ``learn`` is a setup step: it is not synchronised and must not run
    concurrently with operations that read the table.
    """

    def __init__(self, recognized: Iterable[str] = CRYPTO_CAPABILITIES) -> None:
        """Initialize the broker.

        Args:
            recognized: Operation names this broker accepts when learning.
                Anything else offered by a provider is ignored.
        """
        self.recognized = frozenset(recognized)
        self._capabilities: dict[str, Callable[..., Any]] = {}
        self._providers: dict[str, str] = {}

    def learn(self, contracts: Iterable[CapabilityContract]) -> None:
        """Copy recognised operations from each contract into the table.

        Later contracts overwrite earlier entries with the same name.
        """
        for contract in contracts:
            for name, implementation in dict(contract.capabilities).items():
                if name not in self.recognized:
                    logger.debug("Ignoring capability %s from %s", name, contract.provider_id)
                    continue
                previous = self._providers.get(name)
                if previous is not None and previous != contract.provider_id:
                    logger.debug(
                        "Capability %s from %s replaces %s",
                        name,
                        contract.provider_id,
                        previous,
                    )
                self._capabilities[name] = implementation
                self._providers[name] = contract.provider_id
                logger.debug("Learned capability %s from %s", name, contract.provider_id)

    def can(self, name: str) -> bool:
        return name in self._capabilities

    def capabilities(self) -> list[str]:
        return sorted(self._capabilities)

    def provider_of(self, name: str) -> str | None:
        """Return the id of the provider a capability was learned from."""
        return self._providers.get(name)

    def execute(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """Call a learned capability.

        Raises:
            MissingCapabilityError: If ``name`` has not been learned.
        """
        implementation = self._capabilities.get(name)
        if implementation is None:
            raise MissingCapabilityError(f"Missing capability: {name}")
        return implementation(*args, **kwargs)
