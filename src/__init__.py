"""
Records cache package.

Modules are grouped into record data and indexing, a small partitioned
execution engine, and utilities, so the statistics pass and the record
transformation stay reusable by an external inference engine.
"""
