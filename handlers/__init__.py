"""
Stream Ingestors - Lambda Entrypoints

- handlers.generic_ingestor.lambda_handler: one arbitrary JSON payload per invocation
- handlers.sqs_ingestor.lambda_handler: SQS batch with partial-failure response
"""
