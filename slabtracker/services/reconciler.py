"""Ownership reconciliation: make stored slabs for an owner match the chain.

There is no event stream, so a token missing from the latest full snapshot
is how transfers, sales and burns show up. That only holds for a complete
snapshot: if any page fails, the run aborts before deleting anything.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from slabtracker.core.config import settings
from slabtracker.core.errors import InvariantViolation, UpstreamError
from slabtracker.core.logging import get_logger
from slabtracker.identity.card_matcher import CardIdentityMatcher
from slabtracker.identity.set_names import SetNameNormalizer
from slabtracker.ingestion.base import OwnedToken, OwnershipSource
from slabtracker.models.base import as_utc, utcnow
from slabtracker.models.catalog import CatalogSet
from slabtracker.models.checkpoints import SyncCheckpoint
from slabtracker.models.price import Price
from slabtracker.models.raw import RawAsset
from slabtracker.models.runs import SyncRun
from slabtracker.models.slab import Slab
from slabtracker.parsing.fingerprint import ParsedSlab, is_persistable, is_tracked_category, parse_slab

log = get_logger("reconciler")

JOB_NAME = "ownership_sync"
PLATFORM = "courtyard"
CHAIN = "polygon"
_IN_CHUNK = 500

SLAB_FIELDS = (
    "platform",
    "cert_number",
    "grader",
    "grade",
    "set_name",
    "card_name",
    "card_number",
    "variant",
    "image_url",
    "fingerprint_text",
    "parse_status",
    "catalog_card_id",
)


@dataclass
class ReconcileResult:
    owner: str
    skipped: bool = False
    reason: Optional[str] = None
    fetched: int = 0
    indexed: int = 0
    unchanged: int = 0
    ghosts: int = 0
    non_category: int = 0
    dropped: int = 0
    deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _assign_changed(row: Any, values: Dict[str, Any]) -> bool:
    changed = False
    for key, value in values.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed = True
    return changed


class OwnershipReconciler:
    """Upserts RawAsset/Slab rows for one owner and removes what they no longer hold."""

    def __init__(
        self,
        db: Session,
        source: OwnershipSource,
        contract_address: Optional[str] = None,
        stale_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.source = source
        self.contract = (contract_address or settings.contract_address).lower()
        self.stale_after = timedelta(
            seconds=settings.OWNERSHIP_STALE_SECONDS if stale_seconds is None else stale_seconds
        )
        self.clock = clock

    def is_fresh(self, owner: str) -> bool:
        checkpoint = self.db.get(SyncCheckpoint, (owner.lower(), self.contract))
        if not checkpoint:
            return False
        return self.clock() - as_utc(checkpoint.last_synced_at) < self.stale_after

    async def reconcile(self, owner: str, force: bool = False) -> ReconcileResult:
        owner = owner.lower()
        result = ReconcileResult(owner=owner)

        if not force and self.is_fresh(owner):
            log.info(f"Skipping reconcile for {owner}: synced within {self.stale_after}")
            result.skipped, result.reason = True, "fresh"
            return result

        if not self.source.is_available():
            log.warning(f"Ownership source {self.source.name} not configured; cannot reconcile {owner}")
            result.skipped, result.reason = True, "source_unavailable"
            return result

        run = SyncRun(job_name=JOB_NAME, status="running", records_processed=0, meta={"owner": owner})
        self.db.add(run)
        self.db.commit()

        try:
            tokens = await self.source.list_owned_tokens(owner, self.contract)
            tokens = list({t.token_id: t for t in tokens}.values())
            result.fetched = len(tokens)
            log.info(f"Fetched {len(tokens)} tokens for {owner}")

            await self._apply_snapshot(owner, tokens, result)
            result.deleted = self._delete_missing(owner, {t.token_id for t in tokens})
            self._touch_checkpoint(owner)

            run.status = "success"
            run.records_processed = result.indexed
            run.meta = result.to_dict()
            run.ended_at = utcnow()
            self.db.commit()

            log.info(
                f"Reconciled {owner}: indexed={result.indexed} unchanged={result.unchanged} "
                f"deleted={result.deleted} ghosts={result.ghosts} non_category={result.non_category} "
                f"dropped={result.dropped}"
            )
            return result

        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            run.status = "failure"
            run.error_message = str(exc)
            run.ended_at = utcnow()
            self.db.add(run)
            self.db.commit()
            log.bind(job=JOB_NAME, owner=owner).error(f"Reconcile failed for {owner}: {exc}")
            raise

    # -------------------------------------------------------------------------
    # Snapshot application
    # -------------------------------------------------------------------------
    async def _apply_snapshot(self, owner: str, tokens: List[OwnedToken], result: ReconcileResult) -> None:
        normalizer = SetNameNormalizer(self.db.execute(select(CatalogSet.set_name)).scalars().all())
        matcher = CardIdentityMatcher(self.db)
        existing = self._load_existing({t.token_id for t in tokens})
        now = self.clock()

        for token in tokens:
            metadata = dict(token.metadata or {})
            if not metadata and token.token_uri:
                metadata = await self._fetch_metadata(token)

            name = metadata.get("name") or token.name
            description = metadata.get("description") or token.description

            if not metadata and not name and not description and not token.image_url:
                log.debug(f"Skipping ghost token {token.token_id} (no metadata)")
                result.ghosts += 1
                continue

            if not is_tracked_category(metadata, name, description):
                log.debug(f"Skipping non-category token {token.token_id}")
                result.non_category += 1
                continue

            parsed = parse_slab(metadata, name, description)
            catalog_card_id = self._resolve_identity(parsed, matcher, normalizer)
            asset = self._upsert_raw(existing, owner, token, metadata, now)

            if not is_persistable(parsed):
                log.warning(f"Dropping token {token.token_id}: no card name and no cert number")
                result.dropped += 1
                if asset.id is not None:
                    self._delete_slabs([asset.id])
                continue

            if self._upsert_slab(asset, parsed, token, catalog_card_id):
                result.indexed += 1
            else:
                result.unchanged += 1

        self.db.flush()

    async def _fetch_metadata(self, token: OwnedToken) -> Dict[str, Any]:
        try:
            metadata = await self.source.fetch_token_metadata(token.token_uri)
        except UpstreamError as exc:
            log.warning(f"Failed to fetch metadata for token {token.token_id}: {exc}")
            return {}
        return metadata or {}

    @staticmethod
    def _resolve_identity(
        parsed: ParsedSlab,
        matcher: CardIdentityMatcher,
        normalizer: SetNameNormalizer,
    ) -> Optional[str]:
        match = matcher.match(parsed.card_name, parsed.card_number, parsed.set_name)
        if match:
            parsed.set_name = match.set_name
            return match.card_id
        parsed.set_name = normalizer(parsed.set_name)
        return None

    def _load_existing(self, token_ids: set) -> Dict[str, RawAsset]:
        ids = sorted(token_ids)
        existing: Dict[str, RawAsset] = {}
        for start in range(0, len(ids), _IN_CHUNK):
            chunk = ids[start:start + _IN_CHUNK]
            stmt = select(RawAsset).where(
                RawAsset.contract_address == self.contract,
                RawAsset.token_id.in_(chunk),
            )
            for asset in self.db.execute(stmt).scalars():
                existing[asset.token_id] = asset
        return existing

    def _upsert_raw(
        self,
        existing: Dict[str, RawAsset],
        owner: str,
        token: OwnedToken,
        metadata: Dict[str, Any],
        now: datetime,
    ) -> RawAsset:
        values = {
            "owner_address": owner,
            "token_uri": token.token_uri,
            "raw_metadata": metadata,
        }
        asset = existing.get(token.token_id)
        if asset is None:
            asset = RawAsset(
                id=uuid.uuid4(),
                chain=CHAIN,
                contract_address=self.contract,
                token_id=token.token_id,
                last_indexed_at=now,
                **values,
            )
            self.db.add(asset)
            existing[token.token_id] = asset
            return asset

        if asset.owner_address != owner:
            log.info(f"Token {token.token_id} moved from {asset.owner_address} to {owner}")
        if _assign_changed(asset, values):
            asset.last_indexed_at = now
        return asset

    def _upsert_slab(
        self,
        asset: RawAsset,
        parsed: ParsedSlab,
        token: OwnedToken,
        catalog_card_id: Optional[str],
    ) -> bool:
        """Create or replace the slab for an asset. Returns True when anything changed."""
        if not parsed.card_name and not parsed.cert_number:
            raise InvariantViolation(f"slab for token {token.token_id} has neither card name nor cert number")

        values = {
            "platform": PLATFORM,
            "cert_number": parsed.cert_number,
            "grader": parsed.grader,
            "grade": parsed.grade,
            "set_name": parsed.set_name,
            "card_name": parsed.card_name,
            "card_number": parsed.card_number,
            "variant": parsed.variant,
            "image_url": parsed.image_url or token.image_url,
            "fingerprint_text": parsed.fingerprint,
            "parse_status": parsed.parse_status.value,
            "catalog_card_id": catalog_card_id,
        }

        slab = self.db.execute(select(Slab).where(Slab.raw_asset_id == asset.id)).scalar_one_or_none()
        if slab is None:
            self.db.add(Slab(id=uuid.uuid4(), raw_asset_id=asset.id, **values))
            return True
        return _assign_changed(slab, values)

    # -------------------------------------------------------------------------
    # Deletions
    # -------------------------------------------------------------------------
    def _delete_missing(self, owner: str, current_token_ids: set) -> int:
        stmt = select(RawAsset.id, RawAsset.token_id).where(
            RawAsset.owner_address == owner,
            RawAsset.contract_address == self.contract,
        )
        stale_ids = [row.id for row in self.db.execute(stmt) if row.token_id not in current_token_ids]
        if not stale_ids:
            return 0

        for start in range(0, len(stale_ids), _IN_CHUNK):
            chunk = stale_ids[start:start + _IN_CHUNK]
            self._delete_slabs(chunk)
            self.db.execute(
                delete(RawAsset)
                .where(RawAsset.id.in_(chunk), RawAsset.owner_address == owner)
                .execution_options(synchronize_session=False)
            )
        log.info(f"Removed {len(stale_ids)} tokens no longer owned by {owner}")
        return len(stale_ids)

    def _delete_slabs(self, asset_ids: List[uuid.UUID]) -> None:
        slab_ids = select(Slab.id).where(Slab.raw_asset_id.in_(asset_ids))
        self.db.execute(
            delete(Price).where(Price.slab_id.in_(slab_ids)).execution_options(synchronize_session=False)
        )
        self.db.execute(
            delete(Slab).where(Slab.raw_asset_id.in_(asset_ids)).execution_options(synchronize_session=False)
        )

    def _touch_checkpoint(self, owner: str) -> None:
        now = self.clock()
        checkpoint = self.db.get(SyncCheckpoint, (owner, self.contract))
        if not checkpoint:
            checkpoint = SyncCheckpoint(owner_address=owner, contract_address=self.contract, last_synced_at=now)
        else:
            checkpoint.last_synced_at = now
        self.db.add(checkpoint)
