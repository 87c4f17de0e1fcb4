"""
Per-project storage units.

Modules:
    registry: One shared connection pool per storage unit, created lazily
    compiler: Field definitions -> crawl_data table DDL
    versions: Version pointer, schema snapshots, data unit provisioning
    data_store: Typed reads and writes against one version's table

Naming:
    project_<id>_config      configuration unit (version pointer)
    project_<id>_data_v<N>   data unit of schema version N
"""

__all__ = [
    "ConnectionRegistry",
    "VersionManager",
    "VersionedDataStore",
    "compile_schema",
    "open_data_store",
]
