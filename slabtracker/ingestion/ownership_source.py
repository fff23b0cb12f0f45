"""Alchemy NFT API (Polygon) ownership source."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from slabtracker.core.config import settings
from slabtracker.core.errors import UpstreamError
from slabtracker.core.logging import get_logger
from .base import OwnedToken, OwnedTokenPage, OwnershipSource
from .http import JsonHttpClient

log = get_logger("ingestion.alchemy")

ALCHEMY_POLYGON_BASE = "https://polygon-mainnet.g.alchemy.com/nft/v3"
IPFS_GATEWAY = "https://ipfs.io/ipfs/"
PAGE_SIZE = 100


def resolve_token_uri(uri: str) -> str:
    """ipfs://Qm... -> gateway URL; anything else unchanged."""
    if uri.startswith("ipfs://"):
        return IPFS_GATEWAY + uri[len("ipfs://"):].removeprefix("ipfs/")
    return uri


class AlchemyOwnershipSource(OwnershipSource):
    """Fetches tokens of one contract held by an owner."""

    name = "alchemy"

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.ALCHEMY_API_KEY
        self.client = JsonHttpClient(self.name, base_url=ALCHEMY_POLYGON_BASE, transport=transport)
        self.metadata_client = JsonHttpClient(
            "token-metadata",
            timeout=settings.METADATA_FETCH_TIMEOUT_SECONDS,
            max_attempts=1,
            transport=transport,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def fetch_page(self, owner: str, contract: str, cursor: Optional[str] = None) -> OwnedTokenPage:
        params: Dict[str, Any] = {
            "owner": owner,
            "contractAddresses[]": contract,
            "withMetadata": "true",
            "pageSize": PAGE_SIZE,
        }
        if cursor:
            params["pageKey"] = cursor

        data, _ = await self.client.get_json(f"/{self.api_key}/getNFTsForOwner", params=params)
        if not isinstance(data, dict) or not isinstance(data.get("ownedNfts"), list):
            raise UpstreamError(self.name, "unexpected getNFTsForOwner payload")

        tokens = [self._parse_nft(item) for item in data["ownedNfts"] if isinstance(item, dict)]
        log.debug(f"Fetched {len(tokens)} tokens for {owner} (total={data.get('totalCount')})")
        return OwnedTokenPage(tokens=tokens, next_cursor=data.get("pageKey") or None)

    async def fetch_token_metadata(self, token_uri: str) -> Optional[Dict[str, Any]]:
        data, _ = await self.metadata_client.get_json(resolve_token_uri(token_uri))
        return data if isinstance(data, dict) else None

    @staticmethod
    def _parse_nft(item: Dict[str, Any]) -> OwnedToken:
        raw = item.get("raw") or {}
        image = item.get("image") or {}
        metadata = raw.get("metadata")
        return OwnedToken(
            token_id=str(item.get("tokenId")),
            contract_address=str((item.get("contract") or {}).get("address", "")).lower(),
            token_uri=raw.get("tokenUri") or item.get("tokenUri") or None,
            metadata=metadata if isinstance(metadata, dict) else {},
            name=item.get("name") or None,
            description=item.get("description") or None,
            image_url=image.get("pngUrl") or image.get("cachedUrl") or image.get("originalUrl") or None,
        )
