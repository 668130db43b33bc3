"""
PEARL Language Server
=====================

pygls wiring: document lifecycle notifications trigger a full analysis whose
result replaces the stored one; every request reads the stored result.

Supported requests and notifications:

    initialize, workspace/didChangeConfiguration
    textDocument/didOpen, didChange, didClose
    textDocument/hover, definition, foldingRange, completion
    textDocument/semanticTokens/full
    completionItem/resolve

A request handler that hits an unexpected exception logs it and answers
with an empty result; the server keeps running.
"""

import logging
from pathlib import Path
from typing import Optional

from lsprotocol import types as lsp
from pygls.lsp.server import LanguageServer

from pearl_lsp import __version__
from pearl_lsp.analysis import AnalysisResult, PearlAnalyzer
from pearl_lsp.cache import DocumentStore
from pearl_lsp.config import LOG_LEVELS, AnalysisOptions
from pearl_lsp.errors import Diagnostic, DiagnosticTag
from pearl_lsp.language.tokens import FoldingKind, FoldingRegion
from pearl_lsp.server import features, semantic_tokens
from pearl_lsp.uris import is_file_uri, uri_to_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Server instance + per-session state
# ---------------------------------------------------------------------------

class PearlLanguageServer(LanguageServer):
    """
    Language server holding the per-session analysis state.

    Attributes:
        options: Options for new analysis runs
        documents: Latest analysis result per open document
        analyzer: Analyzer sharing the document store's include cache
    """

    def __init__(self):
        super().__init__(
            "pearl-lsp", __version__,
            text_document_sync_kind=lsp.TextDocumentSyncKind.Full,
        )
        self.workspace_root: Optional[Path] = None
        self.options = AnalysisOptions()
        self.documents = DocumentStore()
        self.analyzer = PearlAnalyzer(self.options, self.documents.include_cache)
        self._included_uris: dict[str, set[str]] = {}

    def configure(self, settings) -> None:
        """Apply client settings to subsequent analysis runs."""
        self.options = AnalysisOptions.from_settings(settings, self.workspace_root)
        self.analyzer = PearlAnalyzer(self.options, self.documents.include_cache)
        _apply_log_level(self.options.log_level)
        logger.debug(
            f"Configured: include mode {self.options.include_mode.value}, "
            f"{len(self.options.predefined_macros)} predefined macros"
        )

    def analyze_document(self, uri: str, text: str, version: Optional[int] = None) -> AnalysisResult:
        """Analyze a document and store the result."""
        result = self.analyzer.analyze_source(text, uri, version)
        self.documents.put(uri, result)
        return result

    def publish(self, result: AnalysisResult) -> None:
        """
        Publish the diagnostics of an analysis run.

        Diagnostics raised inside included files are published under the
        included file's URI. Included files that reported diagnostics on the
        previous run but not on this one are cleared. Included files that are
        themselves open documents are left to their own analysis.
        """
        by_uri: dict[str, list[lsp.Diagnostic]] = {result.uri: []}
        for diagnostic in result.diagnostics:
            by_uri.setdefault(diagnostic.uri or result.uri, []).append(to_lsp_diagnostic(diagnostic))

        included = {uri for uri in by_uri if uri != result.uri and uri not in self.documents}
        stale = self._included_uris.get(result.uri, set()) - included
        self._included_uris[result.uri] = included

        self.text_document_publish_diagnostics(
            lsp.PublishDiagnosticsParams(
                uri=result.uri, version=result.version, diagnostics=by_uri[result.uri],
            )
        )
        for uri in sorted(included):
            self.text_document_publish_diagnostics(
                lsp.PublishDiagnosticsParams(uri=uri, diagnostics=by_uri[uri])
            )
        for uri in sorted(stale):
            self.text_document_publish_diagnostics(
                lsp.PublishDiagnosticsParams(uri=uri, diagnostics=[])
            )

    def clear(self, uri: str) -> None:
        """Forget a closed document and clear everything it published."""
        self.documents.forget(uri)
        for included in sorted(self._included_uris.pop(uri, set())):
            self.text_document_publish_diagnostics(
                lsp.PublishDiagnosticsParams(uri=included, diagnostics=[])
            )
        self.text_document_publish_diagnostics(
            lsp.PublishDiagnosticsParams(uri=uri, diagnostics=[])
        )

    def refresh(self, uri: str, text: str, version: Optional[int] = None) -> None:
        self.publish(self.analyze_document(uri, text, version))


server = PearlLanguageServer()


def _apply_log_level(raw: Optional[str]) -> None:
    """Set the root logger level from a string like 'debug', 'warning', etc."""
    if raw and raw.lower() in LOG_LEVELS:
        logging.getLogger().setLevel(LOG_LEVELS[raw.lower()])


# ---------------------------------------------------------------------------
# Conversions to protocol types
# ---------------------------------------------------------------------------

_FOLDING_KINDS = {
    FoldingKind.COMMENT: lsp.FoldingRangeKind.Comment,
    FoldingKind.REGION: lsp.FoldingRangeKind.Region,
    FoldingKind.PREPROC: lsp.FoldingRangeKind.Region,
}

_COMPLETION_KINDS = {
    "keyword": lsp.CompletionItemKind.Keyword,
    "macro": lsp.CompletionItemKind.Constant,
    "function": lsp.CompletionItemKind.Function,
    "variable": lsp.CompletionItemKind.Variable,
    "task": lsp.CompletionItemKind.Class,
    "module": lsp.CompletionItemKind.Module,
    "sema": lsp.CompletionItemKind.Property,
    "bolt": lsp.CompletionItemKind.Property,
    "label": lsp.CompletionItemKind.Reference,
}


def to_lsp_diagnostic(diagnostic: Diagnostic) -> lsp.Diagnostic:
    tags = None
    if DiagnosticTag.UNNECESSARY in diagnostic.tags:
        tags = [lsp.DiagnosticTag.Unnecessary]
    return lsp.Diagnostic(
        range=lsp.Range(
            start=lsp.Position(line=diagnostic.line, character=diagnostic.column),
            end=lsp.Position(line=diagnostic.end_line, character=diagnostic.end_column),
        ),
        message=diagnostic.message,
        severity=lsp.DiagnosticSeverity(int(diagnostic.severity)),
        code=diagnostic.code or None,
        source="pearl",
        tags=tags,
    )


def to_lsp_folding_range(region: FoldingRegion) -> lsp.FoldingRange:
    return lsp.FoldingRange(
        start_line=region.start_line,
        end_line=region.end_line,
        kind=_FOLDING_KINDS[region.kind],
        collapsed_text=region.label,
    )


def to_lsp_completion_item(candidate: features.CompletionCandidate) -> lsp.CompletionItem:
    return lsp.CompletionItem(
        label=candidate.label,
        kind=_COMPLETION_KINDS.get(candidate.kind, lsp.CompletionItemKind.Text),
        detail=candidate.detail,
    )


def _workspace_text(uri: str) -> str:
    return server.workspace.get_text_document(uri).source


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@server.feature(lsp.INITIALIZE)
def on_initialize(params: lsp.InitializeParams):
    root_uri = params.root_uri
    if not root_uri and params.workspace_folders:
        root_uri = params.workspace_folders[0].uri
    if root_uri and is_file_uri(root_uri):
        server.workspace_root = uri_to_path(root_uri)

    server.configure(getattr(params, "initialization_options", None))
    logger.info(f"pearl-lsp {__version__} initialized, workspace root {server.workspace_root}")


@server.feature(lsp.WORKSPACE_DID_CHANGE_CONFIGURATION)
def did_change_configuration(params: lsp.DidChangeConfigurationParams):
    """Apply new settings and re-analyze all open documents."""
    settings = getattr(params, "settings", None) or {}
    if not isinstance(settings, dict):
        logger.warning(f"Ignoring settings of type {type(settings).__name__}")
        return
    server.configure(settings)

    for uri in server.documents.uris():
        document = server.documents.get(uri)
        server.refresh(uri, _workspace_text(uri), document.version)


# ---------------------------------------------------------------------------
# Document synchronization
# ---------------------------------------------------------------------------

@server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
def did_open(params: lsp.DidOpenTextDocumentParams):
    td = params.text_document
    server.refresh(td.uri, td.text, td.version)


@server.feature(lsp.TEXT_DOCUMENT_DID_CHANGE)
def did_change(params: lsp.DidChangeTextDocumentParams):
    uri = params.text_document.uri
    server.refresh(uri, _workspace_text(uri), params.text_document.version)


@server.feature(lsp.TEXT_DOCUMENT_DID_CLOSE)
def did_close(params: lsp.DidCloseTextDocumentParams):
    uri = params.text_document.uri
    server.clear(uri)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@server.feature(lsp.TEXT_DOCUMENT_HOVER)
def hover(params: lsp.HoverParams) -> Optional[lsp.Hover]:
    uri = params.text_document.uri
    result = server.documents.get(uri)
    if result is None:
        return None
    try:
        text = features.hover_markdown(result, params.position.line, params.position.character)
    except Exception:
        logger.exception(f"Hover failed for {uri}")
        return None
    if text is None:
        return None
    return lsp.Hover(
        contents=lsp.MarkupContent(kind=lsp.MarkupKind.Markdown, value=text),
    )


@server.feature(lsp.TEXT_DOCUMENT_DEFINITION)
def definition(params: lsp.DefinitionParams) -> Optional[lsp.Location]:
    uri = params.text_document.uri
    result = server.documents.get(uri)
    if result is None:
        return None
    try:
        target = features.find_definition(result, params.position.line, params.position.character)
    except Exception:
        logger.exception(f"Definition lookup failed for {uri}")
        return None
    if target is None:
        return None
    return lsp.Location(
        uri=target.uri,
        range=lsp.Range(
            start=lsp.Position(line=target.line, character=target.column),
            end=lsp.Position(line=target.line, character=target.column + target.length),
        ),
    )


@server.feature(lsp.TEXT_DOCUMENT_FOLDING_RANGE)
def folding_range(params: lsp.FoldingRangeParams) -> list[lsp.FoldingRange]:
    uri = params.text_document.uri
    result = server.documents.get(uri)
    if result is None:
        return []
    try:
        return [to_lsp_folding_range(r) for r in features.folding_regions(result)]
    except Exception:
        logger.exception(f"Folding failed for {uri}")
        return []


@server.feature(
    lsp.TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL,
    lsp.SemanticTokensLegend(
        token_types=semantic_tokens.TOKEN_TYPES,
        token_modifiers=semantic_tokens.TOKEN_MODIFIERS,
    ),
)
def semantic_tokens_full(params: lsp.SemanticTokensParams) -> lsp.SemanticTokens:
    uri = params.text_document.uri
    result = server.documents.get(uri)
    if result is None:
        return lsp.SemanticTokens(data=[])
    try:
        return lsp.SemanticTokens(data=semantic_tokens.encode(result.document_tokens))
    except Exception:
        logger.exception(f"Token classification failed for {uri}")
        return lsp.SemanticTokens(data=[])


@server.feature(
    lsp.TEXT_DOCUMENT_COMPLETION,
    lsp.CompletionOptions(resolve_provider=True),
)
def completion(params: lsp.CompletionParams) -> Optional[lsp.CompletionList]:
    uri = params.text_document.uri
    result = server.documents.get(uri)
    if result is None:
        return None
    try:
        candidates = features.completion_candidates(
            server.analyzer, result, params.position.line, params.position.character,
        )
    except Exception:
        logger.exception(f"Completion failed for {uri}")
        return lsp.CompletionList(is_incomplete=False, items=[])
    return lsp.CompletionList(
        is_incomplete=False,
        items=[to_lsp_completion_item(c) for c in candidates],
    )


@server.feature(lsp.COMPLETION_ITEM_RESOLVE)
def completion_resolve(item: lsp.CompletionItem) -> lsp.CompletionItem:
    """Attach the keyword description to a keyword proposal."""
    description = features.KEYWORD_DESCRIPTIONS.get(item.label)
    if item.kind == lsp.CompletionItemKind.Keyword and description:
        item.documentation = lsp.MarkupContent(kind=lsp.MarkupKind.Markdown, value=description)
    return item
