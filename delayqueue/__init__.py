"""
Delayed Task Dispatch Queue

Schedules one-shot jobs for a future timestamp and hands each ready job to a
downstream work queue, with at most one claim per item across any number of
concurrent dispatchers sharing the same store.
"""

__version__ = "1.0.0"
