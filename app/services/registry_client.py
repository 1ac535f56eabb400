# app/services/registry_client.py
"""
Read-only client for the on-chain tag registry contract.

Only view functions are used here; tag creation, status transitions and
revocation are submitted by the stamping service, not by this code.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from app.core.config import Settings
from app.models.enums import ChainStatus

_BYTES32 = {"internalType": "bytes32", "type": "bytes32"}

TAG_REGISTRY_ABI = [
    {
        "name": "validateTag",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tagId", **_BYTES32}],
        "outputs": [
            {"name": "isValid", "internalType": "bool", "type": "bool"},
            {"name": "hash", **_BYTES32},
            {"name": "metadataURI", "internalType": "string", "type": "string"},
            {"name": "status", "internalType": "uint8", "type": "uint8"},
            {"name": "createdAt", "internalType": "uint256", "type": "uint256"},
        ],
    },
    {
        "name": "validateByHash",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "hash", **_BYTES32}],
        "outputs": [
            {"name": "isValid", "internalType": "bool", "type": "bool"},
            {"name": "tagId", **_BYTES32},
            {"name": "metadataURI", "internalType": "string", "type": "string"},
            {"name": "status", "internalType": "uint8", "type": "uint8"},
            {"name": "createdAt", "internalType": "uint256", "type": "uint256"},
        ],
    },
    {
        "name": "tagExistsByHash",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "hash", **_BYTES32}],
        "outputs": [{"name": "", "internalType": "bool", "type": "bool"}],
    },
]


class RegistryNotConfigured(RuntimeError):
    pass


def tag_code_to_bytes32(tag_code: str) -> bytes:
    """Registry tag id: keccak256 of the UTF-8 tag code."""
    return bytes(Web3.keccak(text=tag_code))


def _hex32(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def _parse_hash(hash_hex: str) -> bytes:
    raw = hash_hex[2:] if hash_hex.startswith("0x") else hash_hex
    value = bytes.fromhex(raw)
    if len(value) != 32:
        raise ValueError("hash must be 32 bytes")
    return value


@dataclass(frozen=True)
class OnChainTagRecord:
    """Projection of the registry's view of one tag."""

    exists: bool
    is_valid: bool
    hash: Optional[str]
    metadata_uri: Optional[str]
    status: Optional[ChainStatus]
    created_at: Optional[datetime]
    creator: Optional[str] = None
    tag_id: Optional[str] = None

    @classmethod
    def from_call(cls, result: Sequence[Any], *, second_field: str) -> "OnChainTagRecord":
        is_valid, ref, metadata_uri, status, created_ts = result
        created_ts = int(created_ts)
        exists = created_ts > 0
        ref_hex = _hex32(ref)
        return cls(
            exists=exists,
            is_valid=bool(is_valid),
            hash=ref_hex if second_field == "hash" and exists else None,
            tag_id=ref_hex if second_field == "tag_id" and exists else None,
            metadata_uri=(metadata_uri or None) if exists else None,
            status=ChainStatus.parse(int(status)) if exists else None,
            created_at=datetime.fromtimestamp(created_ts, tz=timezone.utc) if exists else None,
        )


class TagRegistryReader(Protocol):
    async def validate_tag(self, tag_code: str) -> OnChainTagRecord: ...

    async def validate_by_hash(self, hash_hex: str) -> OnChainTagRecord: ...

    async def tag_exists_by_hash(self, hash_hex: str) -> bool: ...


class Web3TagRegistry:
    """
    web3.py implementation of TagRegistryReader.

    Calls are not time-bounded here; the reconciler wraps each one in
    guarded_call with the configured chain timeout.
    """

    def __init__(self, settings: Settings, w3: Optional[AsyncWeb3] = None):
        self.settings = settings
        self._w3 = w3
        self._contract = None

    @property
    def configured(self) -> bool:
        return bool(self.settings.chain_rpc_url and self.settings.chain_contract_address)

    def _get_contract(self):
        if not self.configured:
            raise RegistryNotConfigured("chain_rpc_url / chain_contract_address not set")
        if self._contract is None:
            if self._w3 is None:
                self._w3 = AsyncWeb3(AsyncHTTPProvider(self.settings.chain_rpc_url))
            self._contract = self._w3.eth.contract(
                address=Web3.to_checksum_address(self.settings.chain_contract_address),
                abi=TAG_REGISTRY_ABI,
            )
        return self._contract

    async def validate_tag(self, tag_code: str) -> OnChainTagRecord:
        contract = self._get_contract()
        result = await contract.functions.validateTag(tag_code_to_bytes32(tag_code)).call()
        return OnChainTagRecord.from_call(result, second_field="hash")

    async def validate_by_hash(self, hash_hex: str) -> OnChainTagRecord:
        contract = self._get_contract()
        result = await contract.functions.validateByHash(_parse_hash(hash_hex)).call()
        return OnChainTagRecord.from_call(result, second_field="tag_id")

    async def tag_exists_by_hash(self, hash_hex: str) -> bool:
        contract = self._get_contract()
        return bool(await contract.functions.tagExistsByHash(_parse_hash(hash_hex)).call())
