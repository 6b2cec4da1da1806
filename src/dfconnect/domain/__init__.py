"""Domain layer: plan IR, data types, identifiers and the error taxonomy."""
