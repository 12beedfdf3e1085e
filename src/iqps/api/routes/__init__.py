from . import admin, papers

__all__ = ["admin", "papers"]
