"""Built-in formula files (package data)."""
