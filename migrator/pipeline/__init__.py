# migrator/pipeline/__init__.py

from .executor import BatchExecutor
from .controller import RetrySplitController, RunSummary, split_batch
from .migration_pipeline import MigrationPipeline, MigrationResult, next_batch_index
