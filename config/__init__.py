"""Configuration: YAML defaults, dotted lookup and typed validation."""
