"""
Policy-file driven role-based authorization for SQL warehouses.
"""

__version__ = "0.1.0"
