"""export-foundry test suite."""
