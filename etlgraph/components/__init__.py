"""
Built-in component palette.

Each module registers its component on import; `etlgraph` imports all of them.
"""
