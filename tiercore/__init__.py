"""Configuration, path and logging helpers shared by the tierbackup tools."""
