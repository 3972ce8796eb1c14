# Transaction signing through the wallet

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from scatter.core.ApiTypes import Network
from scatter.core.MessageTypes import Blockchain
from shared.log import get_logger

if TYPE_CHECKING:
    from scatter.client import ScatterClient

logger = get_logger(__name__)


class SignatureProvider(ABC):
    """Abstract base class for transaction signers"""
    @abstractmethod
    async def get_available_keys(self) -> List[str]:
        """Public keys this provider can sign with"""
        ...

    @abstractmethod
    async def sign(self, chain_id: str, required_keys: Iterable[str],
                   sign_bytes: Union[bytes, bytearray, str],
                   abi_names: Optional[Iterable[str]] = None) -> List[str]:
        """Sign a serialized transaction and return the signatures"""
        ...


class ScatterSignatureProvider(SignatureProvider):
    """
    Signs EOSIO transactions by asking the user's wallet.

    The wallet holds the private keys; this provider only forwards the
    serialized transaction with a `requestSignature` request and hands back
    whatever signatures the user approved.
    """

    def __init__(self, client: "ScatterClient", network: Optional[Network] = None):
        self.client = client
        self.network = network or client.network

    async def get_available_keys(self) -> List[str]:
        identity = self.client.identity
        if identity is None:
            return []
        keys = []
        for account in identity.accounts:
            if account.blockchain == Blockchain.EOSIO.value and account.public_key:
                if account.public_key not in keys:
                    keys.append(account.public_key)
        return keys

    def build_payload(self, chain_id: str, sign_bytes: Union[bytes, bytearray, str],
                      abi_names: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        serialized = sign_bytes if isinstance(sign_bytes, str) else bytes(sign_bytes).hex()
        return {
            "transaction": {
                "chainId": chain_id,
                "serializedTransaction": serialized,
                "abis": list(abi_names or []),
            },
            "blockchain": Blockchain.EOSIO.value,
            "network": self.network.to_dict() if self.network is not None else None,
            "requiredFields": {},
            "origin": self.client.app_name,
        }

    async def sign(self, chain_id: str, required_keys: Iterable[str],
                   sign_bytes: Union[bytes, bytearray, str],
                   abi_names: Optional[Iterable[str]] = None) -> List[str]:
        # required_keys are resolved by the wallet from the transaction itself
        payload = self.build_payload(chain_id, sign_bytes, abi_names)
        result = await self.client.request_signature(payload)
        logger.debug(f"Wallet returned {len(result.signatures)} signature(s)")
        return list(result.signatures)
