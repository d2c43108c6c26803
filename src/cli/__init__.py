"""TableStore command-line interface."""
