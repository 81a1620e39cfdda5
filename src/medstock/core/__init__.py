"""Core configuration and logging for MedStock."""
