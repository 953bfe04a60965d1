"""
Status API Module

Local HTTP surface reporting connection and sync state to the UI.
"""

from .app import app, start_status_api

__all__ = ['app', 'start_status_api']
