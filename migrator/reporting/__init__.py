# migrator/reporting/__init__.py

from .reporter import ProgressReporter, ProgressMetrics, compute_metrics
