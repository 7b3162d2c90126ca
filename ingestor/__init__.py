"""
Stream Ingestors

Ingests invocation payloads and SQS messages into a Zerobus table stream with
per-record acknowledgment and one-shot recovery of unacknowledged records.
"""

__version__ = "0.1.0"
