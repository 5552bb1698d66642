"""Root conftest so the in-tree ``signalforge`` package is importable."""
