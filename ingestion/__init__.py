"""
Task pipeline components for crawl ingestion.

Modules:
    params: Merge of project parameter templates with task overrides
    dedup: Primary-key and content-hash deduplication against stored rows
    runner: Task orchestrator (fetch, extract, deduplicate, load)
    scheduler: APScheduler integration with retry of transient failures

Subpackages:
    extractors: HTTP fetch and record list extraction
    loaders: Batched inserts into versioned data units

Architecture:
    One task is one self-contained unit of work:

    1. Fetch - a single request to the project's API with merged parameters
    2. Extract - locate the record list inside the response
    3. Deduplicate - drop records already stored in the task's version
    4. Load - insert the rest in batches of INSERT_BATCH_SIZE

Usage:
    from ingestion.runner import TaskRunner

    runner = TaskRunner(session, registry)
    result = await runner.run(task_id)

    print(f"Loaded {result['records_loaded']} records")

Error Handling:
    Failures surface as core.exceptions types. RetryableError subclasses
    are re-queued by the scheduler with exponential backoff.
"""

__all__ = [
    "TaskRunner",
    "TaskScheduler",
    "APIExtractor",
    "Deduplicator",
    "PostgresLoader",
    "extract_records",
    "merge_request_params",
]
