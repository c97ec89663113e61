"""Build service sub-package -- the generation/build/repair pipeline.

Sub-modules:
    stages        -- job statuses, stage labels, stage inference from output lines
    tracker       -- concurrency-safe registry of jobs and their live progress
    repair_loop   -- bounded fix-and-rebuild state machine with degraded fallback
    orchestrator  -- one generation run end to end

Process-wide singletons live in ``app/services/build_service.py``.
"""
