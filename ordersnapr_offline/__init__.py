"""
OrderSnapr offline layer.

On-device entity cache, mutation sync queues and the local surfaces the UI
uses to follow connection and sync state.
"""

__version__ = "1.0.0"
