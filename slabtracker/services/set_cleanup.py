"""Maintenance sweeps over stored slab set names, run after a catalog refresh."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from slabtracker.core.logging import get_logger
from slabtracker.identity.card_matcher import CardIdentityMatcher
from slabtracker.identity.set_names import SetNameNormalizer
from slabtracker.models.base import utcnow
from slabtracker.models.catalog import CatalogCard, CatalogSet
from slabtracker.models.runs import SyncRun
from slabtracker.models.slab import Slab

log = get_logger("set_cleanup")

JOB_NAME = "set_cleanup"


def pick_canonical(counts: Dict[str, int], catalog_names: Set[str]) -> str:
    """Winner among case variants of one set name.

    Most slabs first, then the catalog's spelling, then lexicographic order,
    so the outcome does not depend on row order.
    """
    return min(counts, key=lambda name: (-counts[name], name not in catalog_names, name))


class SetNameCleanupService:
    def __init__(self, db: Session):
        self.db = db

    def normalize_slab_set_names(self) -> Dict[str, Any]:
        """Re-normalize every slab set name, then merge case-only variants."""
        run = SyncRun(job_name=JOB_NAME, status="running", records_processed=0, meta={"sweep": "normalize"})
        self.db.add(run)
        self.db.commit()

        try:
            catalog_names = set(self.db.execute(select(CatalogSet.set_name)).scalars().all())
            normalizer = SetNameNormalizer(catalog_names)

            renamed = 0
            names = self.db.execute(
                select(Slab.set_name).where(Slab.set_name.is_not(None)).distinct()
            ).scalars().all()
            for name in names:
                target = normalizer(name)
                if target and target != name:
                    renamed += self._rename(name, target)
                    log.debug(f"Normalized set {name!r} -> {target!r}")

            merged = self._merge_case_variants(catalog_names)

            run.status = "success"
            run.records_processed = renamed + merged
            run.meta = {"sweep": "normalize", "renamed": renamed, "merged": merged}
            run.ended_at = utcnow()
            self.db.commit()

            log.info(f"Set name sweep: renamed={renamed} merged={merged}")
            return {"success": True, "renamed": renamed, "merged": merged}

        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            run.status = "failure"
            run.error_message = str(exc)
            run.ended_at = utcnow()
            self.db.add(run)
            self.db.commit()
            log.error(f"Set name sweep failed: {exc}")
            raise

    def rematch_slabs(self) -> Dict[str, Any]:
        """Re-run the card matcher over stored slabs against the current catalog."""
        card_count = self.db.execute(select(func.count()).select_from(CatalogCard)).scalar_one()
        if not card_count:
            log.warning("Catalog has no cards; run the catalog sync before rematching")
            return {"success": False, "matched": 0, "changed": 0, "no_match": 0}

        matcher = CardIdentityMatcher(self.db)
        matched = changed = no_match = 0

        slabs: List[Slab] = list(self.db.execute(select(Slab)).scalars())
        log.info(f"Rematching {len(slabs)} slabs against {card_count} catalog cards")

        for slab in slabs:
            match = matcher.match(slab.card_name, slab.card_number, slab.set_name)
            if match is None:
                no_match += 1
                continue

            matched += 1
            if (slab.set_name, slab.catalog_card_id) != (match.set_name, match.card_id):
                log.debug(f"{slab.card_name!r} #{slab.card_number}: {slab.set_name!r} -> {match.set_name!r}")
                slab.set_name = match.set_name
                slab.catalog_card_id = match.card_id
                changed += 1

        self.db.commit()
        log.info(f"Rematch done: matched={matched} changed={changed} no_match={no_match}")
        return {"success": True, "matched": matched, "changed": changed, "no_match": no_match}

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _merge_case_variants(self, catalog_names: Set[str]) -> int:
        rows = self.db.execute(
            select(Slab.set_name, func.count())
            .where(Slab.set_name.is_not(None))
            .group_by(Slab.set_name)
        ).all()

        groups: Dict[str, Dict[str, int]] = defaultdict(dict)
        for name, count in rows:
            groups[name.lower()][name] = count

        merged = 0
        for counts in groups.values():
            if len(counts) < 2:
                continue
            winner = pick_canonical(counts, catalog_names)
            for name in counts:
                if name != winner:
                    merged += self._rename(name, winner)
                    log.info(f"Merged set {name!r} into {winner!r}")
        return merged

    def _rename(self, old: str, new: Optional[str]) -> int:
        result = self.db.execute(
            update(Slab)
            .where(Slab.set_name == old)
            .values(set_name=new)
        )
        return result.rowcount or 0
