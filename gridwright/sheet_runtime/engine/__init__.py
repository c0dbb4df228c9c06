"""Pure sheet engine: derivation, filtering, dedup, HTTP, agents and import.

Nothing in this package touches the database.  Functions take rows as plain
``{column_id: value}`` dicts plus column definitions and return new values;
the managers persist the results.
"""
