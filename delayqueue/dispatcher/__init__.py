"""
Dispatcher module.
Contains the dispatch pass and the interval scheduler that drives it.
"""

from delayqueue.dispatcher.main import DispatchScheduler, Dispatcher, run, run_once

__all__ = ["Dispatcher", "DispatchScheduler", "run", "run_once"]
