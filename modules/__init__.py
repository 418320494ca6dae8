"""Helper modules for CartRelay."""

__all__ = [
    "currency",
    "messenger",
    "profiles",
    "redirect",
    "storage_mirror",
]
