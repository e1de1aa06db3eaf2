"""
CloudBite Link - server discovery and resilient connection management for CloudBite clients
"""

__version__ = "1.0.0"
