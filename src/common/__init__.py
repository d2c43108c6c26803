"""
Shared infrastructure: storage backends, logging, resilience and telemetry.
"""
