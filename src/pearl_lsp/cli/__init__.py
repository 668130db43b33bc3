"""
PEARL Command-Line Interface
============================

- **pearl-lsp**: Language server over stdio or TCP
- **pearl-check**: Batch analysis of PEARL files

Both tools are Click-based applications.
"""

__all__ = ["pearl_lsp", "pearl_check"]
