"""TableStore - repository abstraction over partitioned table storage."""

__version__ = "0.1.0"
