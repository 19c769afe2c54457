"""Read-only progress projection of a transfer record."""

from shared.models.transfer import TransferProgress, TransferRecord


def progress_from_record(record: TransferRecord) -> TransferProgress:
    return TransferProgress(
        transfer_id=record.id,
        status=record.status,
        current=record.processed,
        total=record.total,
        success_count=record.success_count,
        skipped_count=record.skipped_count,
        failed_count=record.failed_count,
        results=list(record.results),
    )
