"""
Database module - Motor connection holder.
"""

from common.database.mongodb import MongoDB

__all__ = ["MongoDB"]
