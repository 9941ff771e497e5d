"""CPG Explorer: read-only exploration of a precomputed code property graph."""

__version__ = "0.1.0"
