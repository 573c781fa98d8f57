"""PEroxide background worker package.

Modules
-------
scan_worker
    :class:`~peroxide.workers.scan_worker.ScanWorker`, which runs the staged
    scan of one uploaded file as a detached ``asyncio`` task and records its
    progress and verdict in the scan registry.
"""
