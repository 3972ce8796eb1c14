import pytest

from fake_wallet import CHAIN_ID, IDENTITY, FakeWallet
from scatter.client import ScatterClient
from scatter.core.ApiTypes import Identity, IdentityAccount, Network, SignaturesResult
from scatter.signer import ScatterSignatureProvider
from scatter.storage import MemoryStorageProvider
from shared.config import ScatterConfig
from shared.errors import NotConnected

NETWORK = Network(host="jungle.example.com", chain_id=CHAIN_ID)


class StubClient:
    app_name = "stub-dapp"
    network = NETWORK

    def __init__(self, identity=None):
        self.identity = identity
        self.payloads = []

    async def request_signature(self, payload):
        self.payloads.append(payload)
        return SignaturesResult(signatures=("SIG_K1_a", "SIG_K1_b"))


@pytest.mark.asyncio
async def test_sign_builds_request_signature_payload():
    client = StubClient()
    provider = ScatterSignatureProvider(client)

    signatures = await provider.sign(CHAIN_ID, ["EOS6MR"], b"\x01\x02\xff", abi_names=["eosio.token"])

    assert signatures == ["SIG_K1_a", "SIG_K1_b"]
    assert client.payloads == [{
        "transaction": {
            "chainId": CHAIN_ID,
            "serializedTransaction": "0102ff",
            "abis": ["eosio.token"],
        },
        "blockchain": "eos",
        "network": NETWORK.to_dict(),
        "requiredFields": {},
        "origin": "stub-dapp",
    }]


@pytest.mark.asyncio
async def test_available_keys_come_from_cached_identity():
    identity = Identity(accounts=(
        IdentityAccount(name="a", public_key="EOS1"),
        IdentityAccount(name="b", public_key="EOS1"),
        IdentityAccount(name="c", public_key="EOS2"),
        IdentityAccount(name="d", public_key="0xabc", blockchain="eth"),
    ))
    provider = ScatterSignatureProvider(StubClient(identity))
    assert await provider.get_available_keys() == ["EOS1", "EOS2"]
    assert await ScatterSignatureProvider(StubClient()).get_available_keys() == []


@pytest.mark.asyncio
async def test_client_signature_provider_signs_through_wallet():
    async with FakeWallet() as wallet:
        wallet.responders["identityFromPermissions"] = lambda payload: dict(IDENTITY)
        config = ScatterConfig(app_name="test-dapp", endpoints=[wallet.endpoint], connect_timeout=2.0)
        client = ScatterClient(network=NETWORK, storage=MemoryStorageProvider(), config=config)

        with pytest.raises(NotConnected):
            client.signature_provider()

        try:
            await client.connect()
            provider = client.signature_provider()
            assert await provider.get_available_keys() == [IDENTITY["publicKey"]]
            assert await provider.sign(CHAIN_ID, [IDENTITY["publicKey"]], "00ff") == ["SIG_K1_tx"]

            request = wallet.requests_of("requestSignature")[0]
            assert request["payload"]["transaction"]["serializedTransaction"] == "00ff"
            assert request["payload"]["network"]["chainId"] == CHAIN_ID
        finally:
            await client.dispose()
