"""Feature table export and import."""

from .feature_table import (
    FEATURE_TABLE_COLUMNS,
    FeatureRecord,
    FeatureTableWriter,
    read_feature_table,
    write_feature_table,
)

__all__ = [
    'FEATURE_TABLE_COLUMNS',
    'FeatureRecord',
    'FeatureTableWriter',
    'read_feature_table',
    'write_feature_table',
]
