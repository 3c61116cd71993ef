"""Backend adapters — the fixed capability set every source implements.

The core never special-cases a source by name; it talks to every registry
through :class:`~xbridge.backends.base.Backend`.
"""
