import pytest

from chain_sync_engine.app.application.services.contract_creation import ContractCreationLocator
from tests.fakes import FakeChainProvider

TOKEN = "0x6b175474e89094c44da98b954eedeac495271d0f"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("creation", "head"),
    [(0, 0), (0, 100), (1, 1), (57, 57), (57, 1_000), (999_999, 1_000_000)],
)
async def test_finds_first_block_with_code(creation, head):
    provider = FakeChainProvider(head=head, creation_block=creation)

    assert await ContractCreationLocator(provider=provider).find_creation_block(TOKEN) == creation


@pytest.mark.asyncio
async def test_search_is_logarithmic():
    provider = FakeChainProvider(head=1_000_000, creation_block=123_456)

    await ContractCreationLocator(provider=provider).find_creation_block(TOKEN)

    # one probe at "latest" plus ~log2(head) probes
    assert len(provider.code_calls) <= 22


@pytest.mark.asyncio
async def test_externally_owned_account_has_no_creation_block():
    provider = FakeChainProvider(head=500, creation_block=None)

    assert await ContractCreationLocator(provider=provider).find_creation_block(TOKEN) is None
    assert provider.code_calls == ["latest"]
