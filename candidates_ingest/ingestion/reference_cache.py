"""
Shared metadata caches keyed by token contract id.
"""
from typing import Iterable, Optional

import structlog

from candidates_ingest.clients import NearRpcClient
from candidates_ingest.ingestion.price_sheet import PriceSheet
from candidates_ingest.models import FtMetadata, NftCount, NftMetadata

logger = structlog.get_logger()


class ReferenceCaches:
    """
    Fungible and non-fungible token metadata shared by all candidates.

    - Fungible entries are created once, on first sighting, and never
      re-fetched.
    - Non-fungible entries are overwritten on every sighting since the NFT
      listing carries the metadata inline at no extra cost.
    """

    def __init__(
        self,
        ft_metas: Optional[dict[str, FtMetadata]] = None,
        nft_metas: Optional[dict[str, NftMetadata]] = None,
    ):
        self.ft_metas: dict[str, FtMetadata] = ft_metas or {}
        self.nft_metas: dict[str, NftMetadata] = nft_metas or {}

    def upsert_nfts(self, nft_counts: Iterable[NftCount]) -> None:
        for nft in nft_counts:
            self.nft_metas[nft.contract_account_id] = NftMetadata(
                contract_id=nft.contract_account_id,
                name=nft.contract_metadata.name,
                symbol=nft.contract_metadata.symbol,
            )

    async def ensure_ft_metadata(
        self,
        contract_ids: Iterable[str],
        rpc: NearRpcClient,
        prices: PriceSheet,
    ) -> int:
        """
        Create metadata for contracts not seen before.

        A contract whose lookup fails is skipped and will be tried again the
        next time it is seen. Returns the number of entries created.
        """
        created = 0
        for contract_id in dict.fromkeys(contract_ids):
            if contract_id in self.ft_metas:
                continue

            meta = await rpc.fetch_ft_metadata(contract_id)
            if meta is None:
                continue

            meta.price = prices.get(contract_id)
            self.ft_metas[contract_id] = meta
            created += 1

        if created:
            logger.debug("Created fungible token metadata", count=created)
        return created
