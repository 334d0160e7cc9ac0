# Activity metrics package
# Metric definitions, evaluation, dashboard config round-trip and templates.

from .dashboard_config import DashboardConfigError, from_config, to_config, validate_config  # noqa: F401
from .definitions import LayoutRow, MetricDefinition, MetricDefinitionError  # noqa: F401
from .evaluator import SeriesResult, evaluate, evaluate_series  # noqa: F401
from .fields import ActivityField, DailyLogError, DailyLogRecord  # noqa: F401
from .templates import Dashboard, Template, check_compatibility, clone_template  # noqa: F401
