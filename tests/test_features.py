# =============================================================================
# test_features.py - Editor Feature Tests
# =============================================================================
# Tests for the features computed from a stored analysis result.
#
# Test coverage includes:
#   - Hover text for symbols, builtins, macros, keywords and operators
#   - Go-to-definition for symbols and macros
#   - Folding region ordering
#   - Semantic token classification and relative encoding
#   - Completion candidates and their ordering
#   - Conversion to protocol types and request handlers
#   - Diagnostics pushed on open, change and close
#   - Diagnostics of included files published under their own URI
# =============================================================================

import os

import pytest
from lsprotocol import types as lsp

from pearl_lsp.analysis import PearlAnalyzer, analyze
from pearl_lsp.config import AnalysisOptions
from pearl_lsp.language.tokens import FoldingKind, FoldingRegion, TokenKind
from pearl_lsp.server import features, semantic_tokens
from pearl_lsp.server import server as pearl_server
from pearl_lsp.uris import path_to_uri


# =============================================================================
# Helper Functions
# =============================================================================

def hover(source: str, line: int, character: int, options=None):
    """Hover text at a position of an analyzed source."""
    return features.hover_markdown(analyze(source, options=options), line, character)


def token_types(source: str) -> list:
    """Decode the semantic token stream into (text, type, modifiers) triples."""
    result = analyze(source)
    data = semantic_tokens.encode(result.document_tokens)
    lines = source.split("\n")
    decoded = []
    line = column = 0
    for i in range(0, len(data), 5):
        delta_line, delta_column, length, type_index, modifiers = data[i:i + 5]
        if delta_line:
            line += delta_line
            column = delta_column
        else:
            column += delta_column
        text = lines[line][column:column + length]
        decoded.append((text, semantic_tokens.TOKEN_TYPES[type_index], modifiers))
    return decoded


# =============================================================================
# Hover Tests
# =============================================================================

class TestHover:
    """Test hover text for each kind of token."""

    def test_declared_variable(self):
        text = hover("DCL X FIXED; X := X + 1;", 0, 13)
        assert text == "```pearl\nDCL X FIXED\n```\n\nDeclared at <input>:1"

    def test_declaration_site(self):
        """Hovering the declaring occurrence describes the symbol too."""
        assert "DCL X FIXED" in hover("DCL X FIXED; X := X + 1;", 0, 4)

    def test_procedure_signature(self):
        source = "P: PROC (A FIXED) RETURNS (FLOAT);\nEND;\nCALL P(1);"
        text = hover(source, 2, 5)
        assert "PROC P (A FIXED) RETURNS(FLOAT)" in text

    def test_builtin(self):
        text = hover("DCL X FLOAT; X := SQRT(X);", 0, 18)
        assert text == "```pearl\nSQRT(x FLOAT) RETURNS(FLOAT)\n```\n\nSquare root (builtin)"

    def test_macro_reference(self):
        source = "#define LIMIT 100\nDCL X FIXED INIT(LIMIT); Y := X;"
        text = hover(source, 1, 19)
        assert text.startswith("```pearl\n#define LIMIT 100\n```")
        assert "Defined at <input>:1:1" in text

    def test_predefined_macro(self):
        options = AnalysisOptions(predefined_macros={"DEBUG": "1"})
        text = hover("DCL X FIXED INIT(DEBUG); Y := X;", 0, 18, options=options)
        assert "#define DEBUG 1" in text
        assert "Predefined macro" in text

    def test_keyword(self):
        assert hover("DCL X FIXED;", 0, 1) == "**DCL**: Declaration of variables and objects."

    def test_type_keyword(self):
        assert hover("DCL X FIXED;", 0, 7) == "**FIXED**: type keyword"

    def test_operator(self):
        assert hover("DCL X FIXED; X := 1;", 0, 15) == "operator `:=`"

    def test_undeclared_identifier(self):
        assert hover("Y := 1;", 0, 0) == "identifier `Y` (not declared)"

    @pytest.mark.parametrize("line, character", [
        (0, 25),    # comment
        (0, 18),    # number
        (0, 11),    # ';'
        (5, 0),     # past the end
    ])
    def test_nothing_to_show(self, line, character):
        assert hover("DCL X FIXED; X := 12; ! set X", line, character) is None


# =============================================================================
# Definition Tests
# =============================================================================

class TestDefinition:
    """Test go-to-definition."""

    def test_variable(self):
        result = analyze("DCL Speed FIXED;\nSpeed := Speed + 1;")
        target = features.find_definition(result, 1, 10)
        assert target == features.DefinitionTarget("<input>", 0, 4, 5)

    def test_macro(self):
        result = analyze("\n#define LIMIT 100\nDCL X FIXED INIT(LIMIT); Y := X;")
        target = features.find_definition(result, 2, 19)
        assert target == features.DefinitionTarget("<input>", 1, 0, 0)

    def test_predefined_macro_has_no_target(self):
        options = AnalysisOptions(predefined_macros={"DEBUG": "1"})
        result = analyze("DCL X FIXED INIT(DEBUG); Y := X;", options=options)
        assert features.find_definition(result, 0, 18) is None

    def test_keyword_has_no_target(self):
        assert features.find_definition(analyze("DCL X FIXED;"), 0, 0) is None

    def test_undeclared_has_no_target(self):
        assert features.find_definition(analyze("Y := 1;"), 0, 0) is None

    def test_included_declaration(self, tmp_path):
        (tmp_path / "defs.p").write_text("DCL Shared FIXED;\n")
        main = tmp_path / "main.p"
        main.write_text('#include "defs.p"\nShared := Shared;\n')
        result = PearlAnalyzer().analyze_file(main)
        target = features.find_definition(result, 1, 10)
        assert target.uri.endswith("/defs.p")
        assert (target.line, target.column, target.length) == (0, 4, 6)


# =============================================================================
# Folding Tests
# =============================================================================

class TestFolding:
    """Test folding region collection."""

    def test_regions_sorted_by_start_line(self):
        source = "/* header\n   text */\nPROC A: PROC;\n  BEGIN\n  END;\nEND;"
        regions = features.folding_regions(analyze(source))
        assert [(r.start_line, r.end_line, r.kind) for r in regions] == [
            (0, 1, FoldingKind.COMMENT),
            (2, 5, FoldingKind.REGION),
            (3, 4, FoldingKind.REGION),
        ]

    def test_conditional_region(self):
        source = "#ifdef DEBUG\nDCL X FIXED;\n#endif\n"
        regions = features.folding_regions(analyze(source))
        assert [(r.start_line, r.end_line, r.kind) for r in regions] == [
            (0, 2, FoldingKind.PREPROC),
        ]

    def test_include_regions_excluded(self, tmp_path):
        (tmp_path / "defs.p").write_text("/* a\n b */\nDCL S FIXED GLOBAL;\n")
        main = tmp_path / "main.p"
        main.write_text('#include "defs.p"\n')
        result = PearlAnalyzer().analyze_file(main)
        assert features.folding_regions(result) == []


# =============================================================================
# Semantic Token Tests
# =============================================================================

class TestSemanticTokens:
    """Test classification and relative encoding."""

    def test_encoding(self):
        result = analyze("DCL X FIXED; X := 1;")
        assert semantic_tokens.encode(result.document_tokens) == [
            0, 4, 1, 1, 1,
            0, 2, 5, 0, 0,
            0, 7, 1, 1, 0,
            0, 2, 2, 7, 0,
            0, 3, 1, 9, 0,
        ]

    def test_line_delta_resets_column(self):
        data = semantic_tokens.encode(analyze("DCL X FIXED;\n  X := 1;").document_tokens)
        assert data[10:15] == [1, 2, 1, 1, 0]

    def test_symbol_kinds(self):
        source = "MODULE M;\nDCL S SEMA;\nP: PROC (A FIXED);\n  REQUEST S; A := SQRT(A);\nEND;\nMODEND;"
        decoded = token_types(source)
        assert ("M", "class", 1) in decoded
        assert ("S", "property", 1) in decoded
        assert ("S", "property", 0) in decoded
        assert ("P", "function", 1) in decoded
        assert ("A", "parameter", 1) in decoded
        assert ("A", "parameter", 0) in decoded
        assert ("SQRT", "function", 0) in decoded

    def test_label_and_task(self):
        decoded = token_types("T: TASK;\n  L: ;\n  GOTO L;\nEND;")
        assert ("T", "class", 1) in decoded
        assert ("L", "label", 1) in decoded
        assert ("L", "label", 0) in decoded

    def test_strings_and_operator_keywords(self):
        decoded = token_types("DCL C CHAR(5); C := 'abc' CAT '0'B;")
        assert ("'abc'", "string", 0) in decoded
        assert ("CAT", "operator", 0) in decoded
        assert ("'0'B", "string", 0) in decoded

    def test_skipped_tokens(self):
        """Comments, directives and macro expansions are not classified."""
        result = analyze("#define N 5\nDCL X FIXED INIT(N); ! note\nY := X;")
        skipped = [
            t for t in result.document_tokens
            if t.kind in (TokenKind.DIRECTIVE, TokenKind.COMMENT, TokenKind.MACRO_EXPANSION)
            or t.macro_value is not None
        ]
        assert skipped
        assert all(semantic_tokens.classify(t) is None for t in skipped)

    def test_unresolved_identifier_is_variable(self):
        assert token_types("Y := 1;")[0] == ("Y", "variable", 0)


# =============================================================================
# Completion Tests
# =============================================================================

class TestCompletion:
    """Test completion candidates."""

    SOURCE = "#define LIMIT 1\nDCL Alpha FIXED;\nAlpha := 1;\n"

    def candidates(self, source=None, line=2, character=0):
        source = source or self.SOURCE
        analyzer = PearlAnalyzer()
        result = analyzer.analyze_source(source)
        return features.completion_candidates(analyzer, result, line, character)

    def test_group_order(self):
        labels = [c.label for c in self.candidates()]
        assert labels[:3] == ["Alpha", "LIMIT", "SQRT"]
        assert labels.index("SQRT") < labels.index("DCL")

    def test_candidate_details(self):
        by_label = {c.label: c for c in self.candidates()}
        assert by_label["Alpha"] == features.CompletionCandidate("Alpha", "variable", "DCL Alpha FIXED")
        assert by_label["LIMIT"].detail == "#define LIMIT 1"
        assert by_label["SQRT"].kind == "function"
        assert by_label["FIXED"].kind == "keyword"

    def test_labels_are_unique(self):
        labels = [c.label for c in self.candidates("DCL SQRT FIXED;\n\n", 1, 0)]
        assert labels.count("SQRT") == 1

    def test_declared_name_wins_over_builtin(self):
        by_label = {c.label: c for c in self.candidates("DCL SQRT FIXED;\n\n", 1, 0)}
        assert by_label["SQRT"].kind == "variable"

    def test_scope_sensitive(self):
        source = "P: PROC;\n  DCL Local FIXED;\n  Local := 1;\nEND;\n\n"
        inside = {c.label for c in self.candidates(source, 2, 2)}
        outside = {c.label for c in self.candidates(source, 4, 0)}
        assert "Local" in inside
        assert "Local" not in outside
        assert "P" in outside


# =============================================================================
# Protocol Conversion and Handler Tests
# =============================================================================

class TestServer:
    """Test the protocol conversions and request handlers."""

    def test_diagnostic_conversion(self):
        diagnostic = analyze("DCL X FIXED;").diagnostics[0]
        converted = pearl_server.to_lsp_diagnostic(diagnostic)
        assert converted.range.start == lsp.Position(line=0, character=4)
        assert converted.range.end == lsp.Position(line=0, character=5)
        assert converted.severity == lsp.DiagnosticSeverity.Warning
        assert converted.source == "pearl"
        assert converted.code == "unused-symbol"
        assert converted.tags == [lsp.DiagnosticTag.Unnecessary]

    def test_error_has_no_tags(self):
        converted = pearl_server.to_lsp_diagnostic(analyze("Y := 1;").diagnostics[0])
        assert converted.severity == lsp.DiagnosticSeverity.Error
        assert converted.tags is None

    def test_folding_conversion(self):
        region = FoldingRegion("<input>", 0, 4, FoldingKind.PREPROC, "#ifdef DEBUG")
        converted = pearl_server.to_lsp_folding_range(region)
        assert converted.kind == lsp.FoldingRangeKind.Region
        assert converted.collapsed_text == "#ifdef DEBUG"

    def test_completion_conversion(self):
        item = pearl_server.to_lsp_completion_item(
            features.CompletionCandidate("LIMIT", "macro", "#define LIMIT 1")
        )
        assert item.kind == lsp.CompletionItemKind.Constant
        assert item.detail == "#define LIMIT 1"

    def test_hover_handler(self):
        uri = "file:///work/hover.p"
        pearl_server.server.analyze_document(uri, "DCL X FIXED; X := X;")
        params = lsp.HoverParams(
            text_document=lsp.TextDocumentIdentifier(uri=uri),
            position=lsp.Position(line=0, character=13),
        )
        result = pearl_server.hover(params)
        assert result.contents.kind == lsp.MarkupKind.Markdown
        assert "DCL X FIXED" in result.contents.value

    def test_unknown_document(self):
        params = lsp.HoverParams(
            text_document=lsp.TextDocumentIdentifier(uri="file:///work/unknown.p"),
            position=lsp.Position(line=0, character=0),
        )
        assert pearl_server.hover(params) is None

    def test_definition_handler(self):
        uri = "file:///work/definition.p"
        pearl_server.server.analyze_document(uri, "DCL Speed FIXED;\nSpeed := Speed;")
        params = lsp.DefinitionParams(
            text_document=lsp.TextDocumentIdentifier(uri=uri),
            position=lsp.Position(line=1, character=10),
        )
        location = pearl_server.definition(params)
        assert location.uri == uri
        assert location.range.start == lsp.Position(line=0, character=4)
        assert location.range.end == lsp.Position(line=0, character=9)

    def test_semantic_tokens_handler(self):
        uri = "file:///work/tokens.p"
        pearl_server.server.analyze_document(uri, "DCL X FIXED; X := 1;")
        params = lsp.SemanticTokensParams(text_document=lsp.TextDocumentIdentifier(uri=uri))
        assert pearl_server.semantic_tokens_full(params).data[:5] == [0, 4, 1, 1, 1]

    def test_completion_resolve_adds_keyword_documentation(self):
        item = lsp.CompletionItem(label="FIN", kind=lsp.CompletionItemKind.Keyword)
        resolved = pearl_server.completion_resolve(item)
        assert resolved.documentation.value == "Closes `IF` or `CASE`."

    def test_configure(self):
        server = pearl_server.PearlLanguageServer()
        server.configure({"pearl": {"predefinedMacros": ["DEBUG"], "includeMode": "workspace"}})
        assert server.options.predefined_macros == {"DEBUG": ""}
        assert server.analyzer.options is server.options
        assert server.analyzer.include_cache is server.documents.include_cache


# =============================================================================
# Diagnostic Publishing Tests
# =============================================================================

@pytest.fixture
def published(monkeypatch):
    """Capture diagnostics pushed by the module-level server."""
    captured = []
    monkeypatch.setattr(pearl_server.server, "text_document_publish_diagnostics", captured.append)
    return captured


class TestPublishing:
    """Test the diagnostics pushed on document lifecycle notifications."""

    def test_did_open_publishes(self, published):
        uri = "file:///work/opened.p"
        pearl_server.did_open(lsp.DidOpenTextDocumentParams(
            text_document=lsp.TextDocumentItem(uri=uri, language_id="pearl", version=1, text="Y := 1;"),
        ))
        assert len(published) == 1
        assert published[0].uri == uri
        assert published[0].version == 1
        assert [d.message for d in published[0].diagnostics] == ["undefined identifier 'Y'"]
        assert uri in pearl_server.server.documents

    def test_did_change_reanalyzes_workspace_text(self, published, monkeypatch):
        uri = "file:///work/changed.p"
        monkeypatch.setattr(pearl_server, "_workspace_text", lambda _uri: "DCL X FIXED; X := X;")
        pearl_server.did_change(lsp.DidChangeTextDocumentParams(
            text_document=lsp.VersionedTextDocumentIdentifier(uri=uri, version=7),
            content_changes=[],
        ))
        assert len(published) == 1
        assert published[0].version == 7
        assert published[0].diagnostics == []
        assert pearl_server.server.documents.get(uri).version == 7

    def test_did_close_clears(self, published):
        uri = "file:///work/closed.p"
        pearl_server.server.refresh(uri, "Y := 1;", 1)
        published.clear()

        pearl_server.did_close(lsp.DidCloseTextDocumentParams(
            text_document=lsp.TextDocumentIdentifier(uri=uri),
        ))
        assert uri not in pearl_server.server.documents
        assert [(p.uri, p.diagnostics) for p in published] == [(uri, [])]

    def test_semantic_tokens_failure_answers_empty(self, monkeypatch, caplog):
        uri = "file:///work/broken.p"
        pearl_server.server.analyze_document(uri, "DCL X FIXED; X := 1;")

        def fail(tokens):
            raise RuntimeError("classification failed")

        monkeypatch.setattr(semantic_tokens, "encode", fail)
        params = lsp.SemanticTokensParams(text_document=lsp.TextDocumentIdentifier(uri=uri))
        assert pearl_server.semantic_tokens_full(params) == lsp.SemanticTokens(data=[])
        assert "Token classification failed" in caplog.text


class TestIncludedFileDiagnostics:
    """Test that diagnostics raised inside included files reach the client."""

    def make_server(self, monkeypatch):
        server = pearl_server.PearlLanguageServer()
        captured = []
        monkeypatch.setattr(server, "text_document_publish_diagnostics", captured.append)
        return server, captured

    def test_published_under_included_uri(self, tmp_path, monkeypatch):
        main = tmp_path / "a.p"
        included = tmp_path / "b.p"
        main.write_text('#include "b.p"\n')
        included.write_text('#include "a.p"\n#include "missing.p"\nZ := 1;\n')
        main_uri = path_to_uri(main.resolve())
        included_uri = path_to_uri(included.resolve())
        server, captured = self.make_server(monkeypatch)

        server.refresh(main_uri, main.read_text(), 1)

        by_uri = {p.uri: p for p in captured}
        assert list(by_uri) == [main_uri, included_uri]
        assert by_uri[main_uri].diagnostics == []
        messages = [d.message for d in by_uri[included_uri].diagnostics]
        assert len(messages) == 3
        assert any("circular include detected" in m for m in messages)
        assert any("file not found" in m for m in messages)
        assert "undefined identifier 'Z'" in messages

    def test_fixed_include_is_cleared(self, tmp_path, monkeypatch):
        main = tmp_path / "a.p"
        included = tmp_path / "b.p"
        main.write_text('#include "b.p"\n')
        included.write_text("Z := 1;\n")
        main_uri = path_to_uri(main.resolve())
        included_uri = path_to_uri(included.resolve())
        server, captured = self.make_server(monkeypatch)
        server.refresh(main_uri, main.read_text(), 1)

        included.write_text("")
        stat = included.stat()
        os.utime(included, (stat.st_atime, stat.st_mtime + 10))
        captured.clear()
        server.refresh(main_uri, main.read_text(), 2)

        assert [(p.uri, p.diagnostics) for p in captured] == [(main_uri, []), (included_uri, [])]

    def test_close_clears_included_uris(self, tmp_path, monkeypatch):
        main = tmp_path / "a.p"
        (tmp_path / "b.p").write_text("Z := 1;\n")
        main.write_text('#include "b.p"\n')
        main_uri = path_to_uri(main.resolve())
        server, captured = self.make_server(monkeypatch)
        server.refresh(main_uri, main.read_text(), 1)
        captured.clear()

        server.clear(main_uri)
        assert [p.uri for p in captured] == [path_to_uri((tmp_path / "b.p").resolve()), main_uri]
        assert all(p.diagnostics == [] for p in captured)

    def test_open_included_document_left_alone(self, tmp_path, monkeypatch):
        main = tmp_path / "a.p"
        included = tmp_path / "b.p"
        included.write_text("Z := 1;\n")
        main.write_text('#include "b.p"\n')
        main_uri = path_to_uri(main.resolve())
        included_uri = path_to_uri(included.resolve())
        server, captured = self.make_server(monkeypatch)
        server.refresh(included_uri, included.read_text(), 1)
        captured.clear()

        server.refresh(main_uri, main.read_text(), 1)
        assert [p.uri for p in captured] == [main_uri]
