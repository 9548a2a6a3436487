"""
Sync engine.

Pushes confirmed time blocks to a PM system as time entries. The synced-issue
ledger keeps the push idempotent per (source ref, target system, target
project); a failed block is reported and stays eligible for the next run.
"""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

from toki.core.logging import get_logger, log_error
from toki.db.models import IssueCandidate, TimeBlock, WorkItem
from toki.db.store import Store, StoreError
from toki.integrations.base import ProjectManagementSystem, TimeEntry, format_duration_compact

logger = get_logger(__name__)

__all__ = [
    "BlockSyncResult",
    "Created",
    "Failed",
    "Skipped",
    "SyncEngine",
    "SyncReport",
    "WouldCreate",
    "format_duration_compact",
]


@dataclass(frozen=True)
class Created:
    issue_number: int | None
    issue_url: str | None
    # Entry exists in the target but the ledger or block flag was not fully written
    ledger_pending: bool = False


@dataclass(frozen=True)
class Skipped:
    reason: str


@dataclass(frozen=True)
class Failed:
    error: str


@dataclass(frozen=True)
class WouldCreate:
    pass


SyncOutcome = Created | Skipped | Failed | WouldCreate


@dataclass
class BlockSyncResult:
    block_id: uuid.UUID
    source_external_ref: str | None
    outcome: SyncOutcome


@dataclass
class SyncReport:
    created: int = 0
    ledger_pending: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    outcomes: list[BlockSyncResult] = field(default_factory=list)

    def record(self, result: BlockSyncResult) -> None:
        self.outcomes.append(result)
        match result.outcome:
            case Created(ledger_pending=pending):
                self.created += 1
                self.ledger_pending += int(pending)
            case Failed(error=error):
                self.failed += 1
                self.errors.append(error)
            case _:
                # Dry-run WouldCreate counts as skipped
                self.skipped += 1


@dataclass
class _ResolvedSource:
    ref: str
    external_id: str
    title: str | None
    source_system: str | None


class SyncEngine:
    """Pushes ``TimeBlock``s through a ``ProjectManagementSystem`` client."""

    def __init__(self, store: Store):
        self.store = store

    async def _resolve_source(self, block: TimeBlock) -> _ResolvedSource | None:
        items = await self.store.get_work_items(block.work_item_ids)
        if not items:
            return None
        item: WorkItem = items[0]
        candidate: IssueCandidate | None = await self.store.get_issue_candidate(
            item.external_id, item.external_system
        ) or await self.store.get_issue_candidate_by_external_id(item.external_id)

        if candidate is not None:
            return _ResolvedSource(
                ref=candidate.source_external_ref or candidate.external_id,
                external_id=candidate.external_id,
                title=candidate.title,
                source_system=candidate.external_system,
            )
        return _ResolvedSource(
            ref=item.external_id,
            external_id=item.external_id,
            title=item.title,
            source_system=item.external_system,
        )

    async def _sync_block(
        self,
        block: TimeBlock,
        client: ProjectManagementSystem,
        target_system: str,
        target_project: str,
        dry_run: bool,
        force: bool,
    ) -> BlockSyncResult:
        source = await self._resolve_source(block)
        if source is None:
            return BlockSyncResult(block.id, None, Skipped("No linked work item"))

        already_synced = await self.store.is_synced(source.ref, target_system, target_project)
        if already_synced and not force:
            logger.debug("Block already synced", extra={"block_id": str(block.id), "source_ref": source.ref})
            return BlockSyncResult(block.id, source.ref, Skipped("Already synced"))

        if dry_run:
            return BlockSyncResult(block.id, source.ref, WouldCreate())

        # Reserve the ledger row before pushing; a reserved row blocks later unforced pushes
        if not already_synced:
            await self.store.upsert_synced_issue(
                source_external_ref=source.ref,
                target_system=target_system,
                target_project=target_project,
                title=source.title,
                source_system=source.source_system,
            )

        entry = TimeEntry(
            work_item_id=source.external_id,
            started_at=block.start_time,
            duration_seconds=block.duration_seconds,
            description=block.description,
            category=block.category or "Other",
        )
        try:
            result = await client.add_time_entry(entry)
        except Exception:
            if not already_synced:
                await self._release_reservation(source.ref, target_system, target_project)
            raise

        ledger_pending = False
        try:
            await self.store.upsert_synced_issue(
                source_external_ref=source.ref,
                target_system=target_system,
                target_project=target_project,
                target_issue_id=result.target_issue_id,
                target_issue_number=result.target_issue_number,
                target_issue_url=result.target_issue_url,
                title=source.title,
                source_system=source.source_system,
            )
            await self.store.mark_time_block_synced(block.id)
        except StoreError as e:
            ledger_pending = True
            log_error(
                logger,
                "Time entry created but ledger update failed",
                error=e,
                extra={"block_id": str(block.id), "source_ref": source.ref},
            )

        logger.info(
            "Time block synced",
            extra={
                "block_id": str(block.id),
                "source_ref": source.ref,
                "target": f"{target_system}:{target_project}",
                "duration": format_duration_compact(block.duration_seconds),
                "ledger_pending": ledger_pending,
            },
        )
        return BlockSyncResult(
            block.id,
            source.ref,
            Created(result.target_issue_number, result.target_issue_url, ledger_pending=ledger_pending),
        )

    async def _release_reservation(self, source_ref: str, target_system: str, target_project: str) -> None:
        try:
            await self.store.delete_synced_issue(source_ref, target_system, target_project)
        except StoreError as e:
            log_error(
                logger,
                "Could not release ledger reservation; use force to push this source again",
                error=e,
                extra={"source_ref": source_ref, "target": f"{target_system}:{target_project}"},
            )

    async def sync_blocks(
        self,
        blocks: Sequence[TimeBlock],
        client: ProjectManagementSystem,
        target_project: str,
        dry_run: bool = False,
        force: bool = False,
    ) -> SyncReport:
        """Sync each confirmed block; failures are recorded and the batch continues."""
        target_system = client.system_name()
        report = SyncReport()

        for block in blocks:
            if not block.confirmed:
                report.record(BlockSyncResult(block.id, None, Skipped("Not confirmed")))
                continue
            try:
                result = await self._sync_block(block, client, target_system, target_project, dry_run, force)
            except Exception as e:
                log_error(
                    logger,
                    "Failed to sync time block",
                    error=e,
                    extra={"block_id": str(block.id), "target": f"{target_system}:{target_project}"},
                )
                result = BlockSyncResult(block.id, None, Failed(str(e)))
            report.record(result)

        logger.info(
            "Sync complete",
            extra={
                "created": report.created,
                "skipped": report.skipped,
                "failed": report.failed,
                "dry_run": dry_run,
            },
        )
        return report
