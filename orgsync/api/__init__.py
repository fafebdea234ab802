"""HTTP API for compare, pre-flight and migrate."""
