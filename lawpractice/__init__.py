"""
Law Practice Management System

Multi-tenant case, task, document and billing management for law firms.
"""

__version__ = "1.0.0"
__author__ = "Law Practice Team"
__description__ = "Case lifecycle, task automation, document management and billing for law firms"
