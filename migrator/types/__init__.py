# migrator/types/__init__.py

from .new import (
    OwnerKey,
    AssetId,
    TimestampMs,
)

from .entry import (
    Entry,
    Batch,
    EntrySet,
)

from .progress import (
    PROGRESS_SCHEMA_VERSION,
    BatchAttemptDetail,
    FailedBatchRecord,
    PendingSubmission,
    ProgressRecord,
)

from .outcome import (
    OutcomeStatus,
    BatchState,
    BatchOutcome,
    LedgerReceipt,
)

from .config import (
    PackingPolicy,
    CapacityUnit,
    CallShape,
    LedgerConfig,
    LoggingConfig,
    MigrationConfig,
)
