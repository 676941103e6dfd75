"""
LLM integration for transaction classification.

This package contains:
- classify: Response parsing and the batched classification engine
- client: Model gateway client wrapper
- prompts: Classification prompt builder
"""
