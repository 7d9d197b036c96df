"""
The MODEL layer contains pure data structures and the geometric primitives.
It has NO knowledge of emitters, zones or output sinks.
"""
