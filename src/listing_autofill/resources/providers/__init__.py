"""Provider configuration documents loaded via :mod:`importlib.resources`."""
