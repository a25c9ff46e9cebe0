from __future__ import annotations

import logging

from chain_sync_engine.app.domain.ports.out import ChainRpcProvider

logger = logging.getLogger(__name__)


class ContractCreationLocator:
    """
    Finds the first block at which code exists at an address.

    "Code exists at block B" is monotonic for contracts that never
    self-destruct, so a lower-bound binary search over [0, head] needs
    about log2(head) eth_getCode calls.
    """

    def __init__(self, *, provider: ChainRpcProvider) -> None:
        self._provider = provider

    async def find_creation_block(self, address: str) -> int | None:
        logger.debug("Checking for contract code at address %s...", address)

        # No code at the head means it is not a contract.
        if not await self._provider.code_exists(address, "latest"):
            logger.debug("Address %s is not a contract.", address)
            return None

        logger.debug("Contract detected. Starting binary search for creation block...")

        low = 0
        high = await self._provider.current_head()
        creation_block: int | None = None

        while low <= high:
            mid = low + (high - low) // 2
            if await self._provider.code_exists(address, mid):
                # candidate; look for an earlier one
                creation_block = mid
                high = mid - 1
            else:
                low = mid + 1

        logger.info("Found creation block for %s: %s", address, creation_block)
        return creation_block
