from __future__ import annotations

'''
Typed records exchanged with the wallet.

Wire keys are camelCase; attributes are snake_case. Every record has
from_dict/to_dict so the cached identity can be stored as JSON.
'''
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from scatter.core.MessageTypes import Blockchain


def _require_dict(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a JSON object, got {type(data).__name__}")
    return data


@dataclass(frozen=True)
class Network:
    blockchain: str = Blockchain.EOSIO.value
    host: str = ""
    port: int = 443
    protocol: str = "https"
    chain_id: str = ""
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Network":
        data = _require_dict(data, "network")
        return cls(
            blockchain=data.get("blockchain", Blockchain.EOSIO.value),
            host=data.get("host", ""),
            port=int(data.get("port", 443)),
            protocol=data.get("protocol", "https"),
            chain_id=data.get("chainId", ""),
            name=data.get("name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "blockchain": self.blockchain,
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol,
            "chainId": self.chain_id,
        }
        if self.name is not None:
            result["name"] = self.name
        return result


@dataclass
class IdentityRequiredFields:
    accounts: List[Network] = field(default_factory=list)
    location: List[str] = field(default_factory=list)
    personal: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accounts": [n.to_dict() for n in self.accounts],
            "location": list(self.location),
            "personal": list(self.personal),
        }


@dataclass(frozen=True)
class IdentityAccount:
    name: str = ""
    authority: str = ""
    public_key: str = ""
    blockchain: str = Blockchain.EOSIO.value
    is_hardware: bool = False
    chain_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityAccount":
        data = _require_dict(data, "account")
        return cls(
            name=data.get("name", ""),
            authority=data.get("authority", ""),
            public_key=data.get("publicKey", ""),
            blockchain=data.get("blockchain", Blockchain.EOSIO.value),
            is_hardware=bool(data.get("isHardware", False)),
            chain_id=data.get("chainId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "authority": self.authority,
            "publicKey": self.public_key,
            "blockchain": self.blockchain,
            "isHardware": self.is_hardware,
            "chainId": self.chain_id,
        }


@dataclass(frozen=True)
class Identity:
    hash: str = ""
    public_key: str = ""
    name: str = ""
    kyc: bool = False
    accounts: tuple = ()
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        data = _require_dict(data, "identity")
        known = {"hash", "publicKey", "name", "kyc", "accounts"}
        return cls(
            hash=data.get("hash", ""),
            public_key=data.get("publicKey", ""),
            name=data.get("name", ""),
            kyc=bool(data.get("kyc", False)),
            accounts=tuple(IdentityAccount.from_dict(a) for a in data.get("accounts") or []),
            # personal/location blocks echoed back from the required fields
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update({
            "hash": self.hash,
            "publicKey": self.public_key,
            "name": self.name,
            "kyc": self.kyc,
            "accounts": [a.to_dict() for a in self.accounts],
        })
        return result

    def account_for(self, blockchain: str) -> Optional[IdentityAccount]:
        for account in self.accounts:
            if account.blockchain == blockchain:
                return account
        return None


@dataclass(frozen=True)
class SignaturesResult:
    signatures: tuple = ()
    returned_fields: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignaturesResult":
        data = _require_dict(data, "signature result")
        signatures = data.get("signatures") or []
        if not isinstance(signatures, list) or not all(isinstance(s, str) for s in signatures):
            raise ValueError("signatures must be a list of strings")
        return cls(signatures=tuple(signatures), returned_fields=dict(data.get("returnedFields") or {}))


@dataclass(frozen=True)
class ApiError:
    message: str = ""
    type: Optional[str] = None
    code: Any = None
    is_error: bool = True
    raw: Any = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApiError":
        return cls(
            message=str(data.get("message", "")),
            type=data.get("type"),
            code=data.get("code"),
            is_error=bool(data.get("isError", True)),
            raw=data,
        )


@dataclass(frozen=True)
class ApiRequest:
    """One correlated request. Immutable once sent."""
    type: str
    payload: Any
    id: str

    def to_wire(self, appkey: str, nonce: str, next_nonce: str) -> Dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "id": self.id,
            "appkey": appkey,
            "nonce": nonce,
            "nextNonce": next_nonce,
        }


@dataclass(frozen=True)
class ApiResponse:
    """
    Discriminated result of one request.

    The wallet signals failure with an object carrying an `isError` key;
    any other value is a success value for the request type.
    """
    ok: bool
    value: Any = None
    error: Optional[ApiError] = None

    @classmethod
    def from_wire(cls, result: Any) -> "ApiResponse":
        if isinstance(result, dict) and "isError" in result:
            return cls(ok=False, error=ApiError.from_dict(result))
        return cls(ok=True, value=result)
