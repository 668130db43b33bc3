# =============================================================================
# test_analyzer.py - Semantic Analyzer Tests
# =============================================================================
# Tests for the scope-stack semantic analyzer.
#
# Test coverage includes:
#   - Block structure: matching, mismatched closers, unclosed blocks
#   - Declarations, duplicate detection, SPC/DCL pairs
#   - Reference resolution across nested and sibling scopes
#   - Kind-directed statements (CALL, ACTIVATE, REQUEST, ENTER, ...)
#   - Labels and GOTO
#   - Unused-symbol sweep
#   - Builtin procedures
#   - Bounded analysis (names visible at a position)
# =============================================================================

import pytest
from pearl_lsp.analysis import PearlAnalyzer, analyze
from pearl_lsp.config import AnalysisOptions
from pearl_lsp.errors import DiagnosticTag, Severity
from pearl_lsp.language.analyzer import SemanticAnalyzer
from pearl_lsp.language.lexer import Lexer
from pearl_lsp.language.scope import SymbolKind
from pearl_lsp.language.tokens import FoldingKind, TokenKind


# =============================================================================
# Helper Functions
# =============================================================================

def messages(source: str) -> list:
    """Analyze a source and return all diagnostic messages."""
    return [d.message for d in analyze(source).diagnostics]


def errors(source: str) -> list:
    return [d.message for d in analyze(source).diagnostics if d.severity == Severity.ERROR]


def codes(source: str) -> list:
    return [d.code for d in analyze(source).diagnostics]


def run_analyzer(source: str) -> SemanticAnalyzer:
    """Run lexer and analyzer and return the analyzer for state inspection."""
    analyzer = SemanticAnalyzer(Lexer(source).tokenize())
    analyzer.analyze()
    return analyzer


def identifier(result, text: str, occurrence: int = 0):
    """Return the n-th identifier token spelled ``text``."""
    matches = [t for t in result.tokens if t.kind == TokenKind.IDENTIFIER and t.text == text]
    return matches[occurrence]


# =============================================================================
# Reference Scenarios
# =============================================================================

class TestScenarios:
    """End-to-end scenarios for the analyzer."""

    def test_unused_variable_in_proc(self):
        """X is only written, so it is unused; M and P are never reported."""
        result = analyze("MODULE M; PROC P: PROC; DCL X FIXED; X:=1; END; MODEND;")
        assert [d.message for d in result.diagnostics] == [
            "variable 'X' is declared but never used",
        ]
        diagnostic = result.diagnostics[0]
        assert diagnostic.severity == Severity.WARNING
        assert diagnostic.code == "unused-symbol"
        assert DiagnosticTag.UNNECESSARY in diagnostic.tags

    def test_activate_resolves_task(self):
        assert messages("TASK T: TASK; END; PROC Q: PROC; ACTIVATE T; END;") == []

    def test_goto_undefined_label(self):
        source = "PROC Q: PROC; GOTO L1; END;"
        result = analyze(source)
        assert [d.message for d in result.diagnostics] == ["label L1 not defined"]
        diagnostic = result.diagnostics[0]
        assert diagnostic.code == "undefined-label"
        assert diagnostic.column == source.index("END")

    def test_include_cycle_terminates(self, tmp_path):
        source = tmp_path / "a.p"
        source.write_text('#include "a.p"\nMODULE A; MODEND;\n')
        result = PearlAnalyzer().analyze_file(source)
        assert any("circular include" in d.message for d in result.diagnostics)


# =============================================================================
# Block Structure Tests
# =============================================================================

class TestBlockStructure:
    """Test matching of block openers and closers."""

    def test_well_formed_nesting(self):
        """Correctly matched blocks produce no structural diagnostics."""
        source = """\
MODULE M;
PROC P: PROC;
  DCL (I, S) FIXED;
  S := 0;
  BEGIN
    IF S > 0 THEN S := 1; ELSE S := 2; FIN;
    CASE S ALT (1) S := 3; OUT S := 4; FIN;
  END;
  FOR I TO 10 REPEAT S := S + I; END;
  S := I;
END;
MODEND;
"""
        analyzer = run_analyzer(source)
        assert analyzer.diagnostics.diagnostics == []
        assert len(analyzer.frames) == 1
        assert analyzer.arena.depth == 1

    def test_mismatched_closer(self):
        source = "PROC A: PROC; BEGIN FIN; END; END;"
        result = analyze(source)
        assert [d.code for d in result.diagnostics] == ["mismatched-block"]
        diagnostic = result.diagnostics[0]
        assert diagnostic.message == (
            "unexpected FIN: no open IF/CASE block "
            "(innermost open block is BEGIN, expected END)"
        )
        assert diagnostic.column == source.index("FIN")

    def test_repeated_mismatched_closers_leave_stack_unchanged(self):
        """Each bad closer is reported once and the stack is not popped."""
        assert codes("PROC A: PROC; BEGIN FIN; FIN; FIN; END; END;") == ["mismatched-block"] * 3

    def test_closer_at_top_level(self):
        assert errors("END;") == ["unexpected END: no open PROC/TASK/BEGIN/REPEAT block"]

    def test_modend_with_open_proc(self):
        result = analyze("MODULE M; PROC P: PROC; MODEND; END; MODEND;")
        assert [d.code for d in result.diagnostics] == ["mismatched-block"]

    def test_unclosed_blocks(self):
        result = analyze("PROC A: PROC;\n  BEGIN\n")
        warnings = [d for d in result.diagnostics if d.code == "unclosed-block"]
        assert [d.message for d in warnings] == [
            "Block 'BEGIN' not closed, expected END",
            "Block 'PROC' not closed, expected END",
        ]
        assert all(d.severity == Severity.WARNING for d in warnings)
        assert warnings[0].line == 1

    def test_else_without_if(self):
        assert errors("PROC A: PROC; ELSE END;") == ["ELSE without matching IF"]

    def test_nested_proc_rejected(self):
        source = "MODULE M; PROC A: PROC; PROC B: PROC; END; END; MODEND;"
        assert errors(source) == ["PROC 'B' may only be declared at module level"]

    def test_bare_proc_header(self):
        """PROC name; and TASK name PRIO 5; open bodies too."""
        assert messages("MODULE M; PROC P; END; TASK T PRIO 5; END; MODEND;") == []

    def test_parenthesized_module_name(self):
        result = analyze("MODULE(Motor); MODEND;")
        assert result.diagnostics == []
        assert identifier(result, "Motor").definition.kind == SymbolKind.MODULE

    def test_block_folding(self):
        result = analyze("PROC A: PROC;\n  BEGIN\n  END;\nEND;")
        regions = [(f.start_line, f.end_line, f.kind) for f in result.folding]
        assert (0, 3, FoldingKind.REGION) in regions
        assert (1, 2, FoldingKind.REGION) in regions


# =============================================================================
# Declaration Tests
# =============================================================================

class TestDeclarations:
    """Test DCL/SPC processing."""

    def test_grouped_declaration(self):
        result = analyze("DCL (A, B) FLOAT, C CHAR(20) GLOBAL; A := B;")
        b = identifier(result, "B").definition
        c = identifier(result, "C").definition
        assert b.attributes.type_name == "FLOAT"
        assert c.attributes.type_name == "CHAR(20)"
        assert c.attributes.is_global

    def test_array_dimensions_and_flags(self):
        result = analyze("DCL T (10, 5) INV FIXED INIT(0); X := T;")
        symbol = identifier(result, "T").definition
        assert symbol.attributes.dimensions == 2
        assert symbol.attributes.is_inv
        assert symbol.attributes.is_init

    def test_duplicate_declaration(self):
        result = analyze("DCL X FIXED;\nDCL X FLOAT;\nY := X;")
        duplicates = [d for d in result.diagnostics if d.code == "duplicate-declaration"]
        assert len(duplicates) == 1
        assert duplicates[0].line == 1
        assert "'X' is already declared in this scope" in duplicates[0].message
        assert "first declared at <input>:1:5" in duplicates[0].message

    def test_shadowing_in_nested_scope_is_allowed(self):
        source = "PROC A: PROC; DCL X FIXED; BEGIN DCL X FLOAT; X := X; END; X := X; END;"
        assert codes(source) == []

    def test_spc_followed_by_dcl(self):
        """An implementation may follow its specification."""
        assert codes("SPC X FIXED; DCL X FIXED; Y := X;") == ["undefined-identifier"]

    def test_spc_kinds(self):
        result = analyze("SPC S SEMA, B BOLT, T TASK, P ENTRY, D DATION; REQUEST S; ENTER B; ACTIVATE T; CALL P; X := D;")
        kinds = {name: identifier(result, name).definition.kind for name in "SBTPD"}
        assert kinds == {
            "S": SymbolKind.SEMA,
            "B": SymbolKind.BOLT,
            "T": SymbolKind.TASK,
            "P": SymbolKind.PROC,
            "D": SymbolKind.VAR,
        }

    def test_missing_semicolon(self):
        result = analyze("DCL X FIXED\nDCL Y FIXED; X := Y; Y := X;")
        assert [d.message for d in result.diagnostics] == ["expected ';' after DCL statement"]
        assert result.diagnostics[0].line == 1

    def test_missing_name(self):
        assert errors("DCL ;") == ["expected identifier in DCL statement"]

    def test_proc_parameters(self):
        result = analyze("P: PROC (A FIXED, (B, C) FLOAT IDENT) RETURNS (FIXED) GLOBAL;\n  X := A + B + C;\nEND;")
        proc = identifier(result, "P").definition
        assert proc.kind == SymbolKind.PROC
        assert proc.attributes.parameters == ["A FIXED", "B FLOAT IDENT", "C FLOAT IDENT"]
        assert proc.attributes.returns == "FIXED"
        assert proc.attributes.is_global

        b = identifier(result, "B").definition
        assert b.attributes.is_parameter
        assert b.attributes.is_ident
        assert [d.message for d in result.diagnostics] == ["undefined identifier 'X'"]


# =============================================================================
# Resolution Tests
# =============================================================================

class TestResolution:
    """Test reference resolution and definition links."""

    def test_reference_in_nested_scope(self):
        source = "PROC A: PROC; DCL X FIXED; BEGIN X := X + 1; END; END;"
        result = analyze(source)
        assert result.diagnostics == []
        declaration = identifier(result, "X", 0)
        reference = identifier(result, "X", 2)
        assert reference.definition is declaration.definition
        assert declaration.definition.name_token is declaration

    def test_sibling_scope_not_visible(self):
        source = "PROC A: PROC; BEGIN DCL X FIXED; END; BEGIN X := 1; END; END;"
        result = analyze(source)
        assert "undefined identifier 'X'" in [d.message for d in result.diagnostics]

    def test_loop_variable_scoped_to_repeat(self):
        source = "PROC A: PROC; DCL S FIXED; FOR I TO 10 REPEAT S := S + I; END; S := I; END;"
        result = analyze(source)
        assert [d.message for d in result.diagnostics] == ["undefined identifier 'I'"]
        assert identifier(result, "I", 1).definition is identifier(result, "I", 0).definition

    def test_write_does_not_count_as_use(self):
        result = analyze("DCL X FIXED; X := 1;")
        assert [d.code for d in result.diagnostics] == ["unused-symbol"]

    def test_structure_component_not_resolved(self):
        assert codes("DCL R STRUCT [A FIXED]; R.A := R.A;") == []

    def test_builtin_in_call_position(self):
        result = analyze("DCL X FLOAT; X := SQRT(2.0) + X;")
        assert result.diagnostics == []
        sqrt = identifier(result, "SQRT")
        assert sqrt.builtin.name == "SQRT"
        assert sqrt.definition is None

    def test_builtin_name_without_call_is_undefined(self):
        assert errors("DCL X FLOAT; X := SQRT + X;") == ["undefined identifier 'SQRT'"]

    def test_niladic_builtin(self):
        assert codes("DCL T CLOCK; T := NOW; T := T;") == []

    def test_declared_name_shadows_builtin(self):
        result = analyze("DCL SQRT FIXED; X := SQRT(1);")
        assert identifier(result, "SQRT", 1).definition is not None
        assert identifier(result, "SQRT", 1).builtin is None

    def test_macro_name_is_not_a_symbol(self):
        result = analyze("#define LIMIT 10\nDCL X FIXED; X := LIMIT + X;")
        assert result.diagnostics == []
        assert "LIMIT" in result.macros


# =============================================================================
# Kind-Directed Statement Tests
# =============================================================================

class TestKindDirected:
    """Test statements that require a particular kind of symbol."""

    def test_request_on_variable(self):
        result = analyze("DCL S FIXED; REQUEST S;")
        assert [d.message for d in result.diagnostics] == [
            "'S' is declared as VAR, but REQUEST requires SEMA",
        ]
        assert result.diagnostics[0].code == "kind-mismatch"

    @pytest.mark.parametrize("statement", ["REQUEST S;", "RELEASE S;", "SEMASET 1, S;", "RELEASE S, S;"])
    def test_sema_statements(self, statement):
        assert codes(f"DCL S SEMA; {statement}") == []

    @pytest.mark.parametrize("keyword", ["ENTER", "LEAVE", "RESERVE", "FREE"])
    def test_bolt_statements(self, keyword):
        assert codes(f"DCL B BOLT; {keyword} B;") == []
        assert errors(f"DCL B SEMA; {keyword} B;") == [
            f"'B' is declared as SEMA, but {keyword} requires BOLT",
        ]

    def test_semaset_on_variable(self):
        assert codes("DCL V FIXED; SEMASET 1, V;") == ["kind-mismatch"]

    def test_call_requires_proc(self):
        assert errors("TASK T: TASK; END; CALL T;") == [
            "'T' is declared as TASK, but CALL requires PROC",
        ]

    def test_call_builtin(self):
        assert codes("DCL D DATION; CALL FLUSH(D);") == []

    def test_call_undefined(self):
        assert errors("CALL Missing;") == ["undefined identifier 'Missing'"]

    def test_activate_requires_task(self):
        assert errors("P: PROC; END; ACTIVATE P;") == [
            "'P' is declared as PROC, but ACTIVATE requires TASK",
        ]

    def test_activate_requires_name(self):
        assert errors("ACTIVATE;") == ["ACTIVATE requires a task name"]

    def test_activate_with_priority(self):
        assert codes("T: TASK; END; ACTIVATE T PRIO 5;") == []

    def test_terminate_without_name(self):
        assert codes("T: TASK; TERMINATE; END;") == []

    def test_terminate_rejects_priority(self):
        assert errors("T: TASK; END; TERMINATE T PRIO 2;") == [
            "TERMINATE does not accept a PRIO clause",
        ]

    def test_resume_rejects_task_name(self):
        assert errors("T: TASK; END; RESUME T;") == ["RESUME does not take a task name"]

    def test_kind_mismatch_uses_nearest_declaration(self):
        """A nearer non-TASK name hides an outer TASK of the same name."""
        source = "T: TASK; END; P: PROC; DCL T FIXED; ACTIVATE T; END;"
        assert codes(source) == ["kind-mismatch"]


# =============================================================================
# Label and GOTO Tests
# =============================================================================

class TestLabels:
    """Test labels and GOTO target checking."""

    def test_goto_defined_label(self):
        assert codes("P: PROC; L1: ; GOTO L1; END;") == []

    def test_forward_goto(self):
        assert codes("P: PROC; GOTO Done; Done: ; END;") == []

    def test_label_in_nested_block_belongs_to_body(self):
        assert codes("P: PROC; BEGIN Inner: ; END; GOTO Inner; END;") == []

    def test_unused_label(self):
        result = analyze("P: PROC; Unused: ; END;")
        assert [d.message for d in result.diagnostics] == [
            "label 'Unused' is declared but never used",
        ]

    def test_label_after_then(self):
        assert codes("P: PROC; DCL X FIXED; IF X > 0 THEN Again: X := X - 1; GOTO Again; FIN; END;") == []

    def test_goto_without_body(self):
        assert errors("GOTO Nowhere;") == ["label Nowhere not defined"]

    def test_forward_goto_without_body(self):
        assert codes("GOTO Later; Later: ;") == []

    def test_forward_goto_in_module(self):
        assert codes("MODULE M; GOTO Later; Later: ; MODEND;") == []

    def test_undefined_goto_without_body_reported_at_target(self):
        result = analyze("GOTO Nowhere;\nLater: ;\nGOTO Later;")
        undefined = [d for d in result.diagnostics if d.code == "undefined-label"]
        assert [(d.line, d.column) for d in undefined] == [(0, 5)]


# =============================================================================
# Unused Symbol Tests
# =============================================================================

class TestUnused:
    """Test the unused-symbol sweep."""

    def test_global_variable_never_reported(self):
        assert codes("MODULE M; DCL G FIXED GLOBAL; MODEND;") == []

    def test_module_level_variable_reported(self):
        assert messages("MODULE M; DCL X FIXED; MODEND;") == [
            "variable 'X' is declared but never used",
        ]

    def test_global_scope_swept_without_modend(self):
        assert messages("MODULE M; DCL X FIXED;") == [
            "Block 'MODULE' not closed, expected MODEND",
            "variable 'X' is declared but never used",
        ]

    def test_unused_sema_kind_name(self):
        assert messages("DCL S SEMA;") == ["semaphore 'S' is declared but never used"]

    def test_unused_parameter(self):
        assert messages("P: PROC (A FIXED); END;") == ["variable 'A' is declared but never used"]

    def test_report_unused_disabled(self):
        options = AnalysisOptions(report_unused=False)
        assert analyze("DCL X FIXED;", options=options).diagnostics == []

    def test_unused_position_is_declaration(self):
        result = analyze("MODULE M;\n  DCL Counter FIXED;\nMODEND;")
        diagnostic = result.diagnostics[0]
        assert (diagnostic.line, diagnostic.column, diagnostic.end_column) == (1, 6, 13)


# =============================================================================
# Bounded Analysis Tests
# =============================================================================

BOUNDED_SOURCE = """\
MODULE M;
DCL G FIXED;
P: PROC (A FIXED);
  DCL L FIXED;

  BEGIN
    DCL Inner FIXED;
  END;
END;
DCL After FIXED;
MODEND;
"""


class TestBoundedAnalysis:
    """Test the names visible at a position."""

    def test_visible_inside_proc(self):
        analyzer = PearlAnalyzer()
        result = analyzer.analyze_source(BOUNDED_SOURCE)
        visible = analyzer.visible_symbols(result, 4, 0)
        assert set(visible) == {"M", "G", "P", "A", "L"}

    def test_closed_scope_not_visible(self):
        analyzer = PearlAnalyzer()
        result = analyzer.analyze_source(BOUNDED_SOURCE)
        visible = analyzer.visible_symbols(result, 7, 6)
        assert "Inner" not in visible
        assert "L" in visible

    def test_later_declarations_not_visible(self):
        analyzer = PearlAnalyzer()
        result = analyzer.analyze_source(BOUNDED_SOURCE)
        assert "After" not in analyzer.visible_symbols(result, 1, 0)
        assert "After" in analyzer.visible_symbols(result, 9, 16)

    def test_bounded_run_reports_nothing_after_cutoff(self):
        tokens = Lexer("DCL X FIXED;\nY := 1;").tokenize()
        analyzer = SemanticAnalyzer(tokens, cutoff=12)
        analyzer.analyze()
        assert analyzer.diagnostics.diagnostics == []

    def test_bounded_run_does_not_link_tokens(self):
        analyzer = PearlAnalyzer()
        result = analyzer.analyze_source("DCL X FIXED; X := X;")
        before = [t.definition for t in result.tokens]
        analyzer.visible_symbols(result, 0, 20)
        assert [t.definition for t in result.tokens] == before
