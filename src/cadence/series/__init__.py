"""
Series subsystem.

Components:
- series_models.py: SeriesState, SeriesStatus, dedupe keys
- series_store.py: SQLite repository with compare-and-swap on `version`
- cas.py: read-modify-CAS retry loop shared by all writers
- exception_manager.py: skip-date mutations (add / remove / skip next)
- scheduler.py: MaterializationScheduler + async polling driver
- series_api.py: operations exposed to the API/CLI layer
"""
