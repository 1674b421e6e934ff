"""HTTP interface for the gallery UI."""
