"""
Utils Package

Provides utility modules for:
- validation_errors: structured API error responses
"""
