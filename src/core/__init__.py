"""
Core Package

Shared building blocks of the namespace harness:
- Exception hierarchy and error handler
- Structured logging and the command transcript
- YAML configuration loading
- Data models and the configuration document schema
- Assertion engine
"""
