from .live import watch_rows

__all__ = ["watch_rows"]
