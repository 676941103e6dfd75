"""
Core modules for statement ingestion.

This package contains:
- config: Application configuration and settings
- dates: Statement date normalization
- db: SQLite stores for statements, transactions, categories and changes
- exceptions: Custom exception classes
- exporters: Analytics sink (partitioned JSONL)
- line_items: Line-item extraction from expense documents
- logger: Logging configuration
- matching: Category label resolution
- schema: Pydantic models for data validation
- validation: Ingestion input and category name checks
"""
