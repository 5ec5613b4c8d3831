"""Configuration modules for voicerelay."""

from .aggregation import (
    AggregationConfig,
    get_aggregation_config,
    load_aggregation_config,
    update_aggregation_config,
    reset_aggregation_config,
)
from .services import (
    ServiceSettings,
    get_service_settings,
    load_service_settings,
    reset_service_settings,
)

__all__ = [
    'AggregationConfig',
    'get_aggregation_config',
    'load_aggregation_config',
    'update_aggregation_config',
    'reset_aggregation_config',
    'ServiceSettings',
    'get_service_settings',
    'load_service_settings',
    'reset_service_settings',
]
