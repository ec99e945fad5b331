"""GEOS geometry bridge.

Ties native GEOS geometry handles, reader/writer handles and engine
contexts (reached through shapely) to the lifetime of Python objects,
so that every native resource is destroyed exactly once and never used
after destruction or from the wrong context.
"""

__version__ = "0.1.0"
