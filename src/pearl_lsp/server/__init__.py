"""
PEARL Language Server Protocol Layer
====================================

- **features**: hover, go-to-definition, folding and completion computed
  from a stored analysis result (no protocol types)
- **semantic_tokens**: token classification and relative encoding
- **server**: pygls wiring of the above to protocol requests

The server module is imported lazily by the ``pearl-lsp`` command so that
the analysis backend can be used without the protocol libraries loaded.
"""
