"""Tests for the verdict pipeline and its layers."""

from unittest.mock import MagicMock

import pytest
from hypothesis import given
from hypothesis import strategies as st

from gatekeeper.services.ai_scan import AIFinding, AIScanResult, AIScanUnavailableError
from gatekeeper.services.pipeline import (
    BLOCK,
    PASS,
    PENDING,
    WARN,
    PipelineContext,
    SourceFile,
    Thresholds,
    VerdictAccumulator,
    VerdictPipeline,
    compute_overall_risk,
    extract_added_lines,
)
from gatekeeper.services.pipeline.layers import find_unbalanced_brackets

CLEAN = "def add(a, b):\n    return a + b\n"


def branchy(decisions: int) -> str:
    body = "\n".join(f"    if a == {i}:\n        return {i}" for i in range(decisions))
    return f"def f(a):\n{body}\n    return -1\n"


def run(files, ai_provider=None, thresholds=None, **context):
    context.setdefault("repo_id", "acme/widgets")
    context.setdefault("pr_number", 1)
    pipeline = VerdictPipeline(thresholds or Thresholds(), ai_provider)
    return pipeline.run(files, PipelineContext(**context))


class TestSourceFile:
    def test_language_is_detected(self):
        assert SourceFile("app/main.py", CLEAN).language == "python"
        assert SourceFile("web/app.tsx", "").language == "typescript"

    def test_from_patch_keeps_added_lines(self):
        patch = "--- a/x.py\n+++ b/x.py\n@@ -1,2 +1,2 @@\n-old = 1\n+new = 2\n context\n+more = 3\n"

        file = SourceFile.from_patch("x.py", patch)

        assert file.is_patch
        assert file.content == "new = 2\nmore = 3"

    def test_extract_added_lines_of_empty_patch(self):
        assert extract_added_lines("") == ""


class TestLintLayer:
    def test_too_many_debugger_statements_block(self):
        result = run([SourceFile("app.js", "debugger;\n" * 6)])

        assert result.status == BLOCK
        assert "Too many lint errors: 6 (limit 5)" in result.block_reasons
        assert result.analysis_results["lint"]["errors"] == 6

    def test_errors_at_limit_do_not_block(self):
        result = run([SourceFile("app.py", "breakpoint()\n" * 5)])

        assert result.analysis_results["lint"]["errors"] == 5
        assert result.status != BLOCK

    def test_python_syntax_error_is_a_lint_error(self):
        result = run([SourceFile("broken.py", "def f(:\n    pass\n")])

        issues = result.analysis_results["lint"]["issues"]
        assert any(i["message"].startswith("Syntax error") for i in issues)

    def test_patches_are_not_parsed(self):
        result = run([SourceFile("partial.py", "    return x\n", is_patch=True)])

        assert result.analysis_results["lint"]["errors"] == 0

    def test_long_lines_warn(self):
        result = run([SourceFile("wide.py", ("x = '" + "a" * 210 + "'\n") * 11)])

        assert result.status == WARN
        assert "Too many lint warnings: 11 (limit 10)" in result.warn_reasons

    def test_unbalanced_brackets(self):
        assert find_unbalanced_brackets("function f() { return [1, 2]; }", "javascript") is None
        assert find_unbalanced_brackets("if (a) { b(); ", "javascript") == "Unclosed '{' (1 open)"
        assert find_unbalanced_brackets("const s = '}';", "javascript") is None
        assert find_unbalanced_brackets("x = a);", "c") == "Unexpected ')'"


class TestComplexityRatchet:
    def test_no_baseline_has_no_delta(self):
        result = run([SourceFile("app.py", CLEAN)])

        section = result.analysis_results["complexity"]
        assert result.health_delta is None
        assert section["has_baseline"] is False
        assert section["files_without_baseline"] == ["app.py"]
        assert result.health_current == 100.0
        assert "no baseline" in result.summary

    def test_improvement_passes(self):
        result = run([SourceFile("app.py", CLEAN)], baselines={"app.py": 50.0})

        assert result.status == PASS
        assert result.health_delta == 50.0

    def test_small_drop_warns(self):
        result = run([SourceFile("app.py", branchy(20))], baselines={"app.py": 100.0})

        assert result.health_delta == -18.0
        assert result.status == WARN
        assert "Health score decreased by 18.0" in result.warn_reasons

    def test_large_drop_blocks(self):
        result = run([SourceFile("app.py", branchy(24))], baselines={"app.py": 100.0})

        assert result.health_delta == -30.0
        assert result.status == BLOCK
        assert "Health score dropped by 30.0 (limit 20.0)" in result.block_reasons

    def test_complexity_limit_blocks(self):
        result = run([SourceFile("app.py", branchy(30))])

        assert result.status == BLOCK
        assert any(r.startswith("File complexity exceeds limit: app.py has 31") for r in result.block_reasons)

    def test_only_files_with_baselines_count_toward_delta(self):
        files = [SourceFile("old.py", CLEAN), SourceFile("new.py", branchy(20))]

        result = run(files, baselines={"old.py": 90.0})

        assert result.health_delta == 10.0
        assert result.analysis_results["complexity"]["files_without_baseline"] == ["new.py"]

    def test_patch_is_measured_on_the_whole_head_file(self):
        added = "\n".join(f"+    if a == {i}:\n+        return {i}" for i in range(20, 24))
        file = SourceFile.from_patch("app.py", f"@@ -40,0 +41,8 @@\n{added}\n", full_content=branchy(24))

        result = run([file], baselines={"app.py": 100.0})

        change = result.analysis_results["complexity"]["file_changes"][0]
        assert change["complexity"] == 25
        assert change["whole_file"] is True
        assert result.health_delta == -30.0
        assert "Health score dropped by 30.0 (limit 20.0)" in result.block_reasons

    def test_patch_without_head_content_is_not_compared(self):
        file = SourceFile.from_patch("app.py", "@@ -1,0 +1,1 @@\n+x = 1\n")

        result = run([file], baselines={"app.py": 50.0})

        section = result.analysis_results["complexity"]
        assert result.health_delta is None
        assert section["files_without_head_content"] == ["app.py"]
        assert section["file_changes"][0]["delta"] is None


class TestSecurityLayer:
    def test_eval_blocks(self):
        result = run([SourceFile("app.py", "result = eval(user_input)\n")])

        assert result.status == BLOCK
        assert "Security issues detected: 1" in result.block_reasons
        assert result.analysis_results["security"]["score"] == 80
        assert result.findings[0]["severity"] == "high"

    def test_each_pattern_counts_once_per_file(self):
        content = "eval(a)\neval(b)\nos.system(cmd)\n"

        result = run([SourceFile("app.py", content)])

        issues = result.analysis_results["security"]["issues"]
        assert len(issues) == 2
        assert issues[0]["count"] == 2
        assert issues[1]["line"] == 3

    def test_method_named_eval_is_not_flagged(self):
        result = run([SourceFile("app.py", "model.eval()\n")])

        assert result.analysis_results["security"]["issues"] == []


class TestCodeSmellLayer:
    def test_smells_warn_above_limit(self):
        content = "".join(f"# TODO: item {i}\n" for i in range(6))

        result = run([SourceFile("app.py", content)])

        assert result.status == WARN
        assert "Code quality concerns: 6 code smells" in result.warn_reasons

    def test_print_counts_only_in_python(self):
        py = run([SourceFile("app.py", "print('x')\n")])
        js = run([SourceFile("app.js", "print('x');\nconsole.log(1);\n")])

        assert py.analysis_results["code_smells"]["count"] == 1
        assert js.analysis_results["code_smells"]["count"] == 1


class TestTicketAlignment:
    def test_no_ticket_is_aligned(self):
        result = run([SourceFile("billing/invoice.py", CLEAN)])

        section = result.analysis_results["ticket_alignment"]
        assert section["aligned"] is True
        assert section["confidence"] == 1.0

    def test_matching_paths_are_aligned(self):
        result = run([SourceFile("app/auth/login.py", CLEAN)], ticket="Fix login validation")

        assert result.analysis_results["ticket_alignment"]["aligned"] is True
        assert result.status == PASS

    def test_unrelated_paths_warn(self):
        result = run([SourceFile("billing/invoice.py", CLEAN)], ticket="Fix login validation")

        assert result.status == WARN
        assert "Changes may not match the linked ticket (confidence 0.00)" in result.warn_reasons


class TestAISemanticLayer:
    def test_not_configured_is_pending_and_neutral(self):
        result = run([SourceFile("app.py", CLEAN)])

        section = result.analysis_results["ai_scan"]
        assert section["verdict"] == PENDING
        assert section["categories"]["security"] == 100
        assert result.status == PASS

    def test_unavailable_provider_does_not_block(self):
        provider = MagicMock()
        provider.scan.side_effect = AIScanUnavailableError("timed out")

        result = run([SourceFile("app.py", CLEAN)], ai_provider=provider)

        assert result.analysis_results["ai_scan"]["verdict"] == PENDING
        assert result.analysis_results["ai_scan"]["reason"] == "timed out"
        assert result.status == PASS

    def test_unexpected_provider_error_does_not_block(self):
        provider = MagicMock()
        provider.scan.side_effect = RuntimeError("boom")

        result = run([SourceFile("app.py", CLEAN)], ai_provider=provider)

        assert result.analysis_results["ai_scan"]["verdict"] == PENDING
        assert result.status == PASS

    def test_bad_verdict_blocks(self):
        provider = MagicMock()
        provider.scan.return_value = AIScanResult(
            verdict="BAD",
            findings=[AIFinding(file="app.py", line_range=[3, 4], message="SQL injection", severity=5)],
        )

        result = run([SourceFile("app.py", CLEAN)], ai_provider=provider)

        assert result.status == BLOCK
        assert "AI scan detected critical issues" in result.block_reasons
        assert result.analysis_results["ai_scan"]["categories"]["testing"] == 60
        assert result.findings[-1]["line"] == 3
        assert "AI scan: BAD." in result.summary

    def test_risky_verdict_warns(self):
        provider = MagicMock()
        provider.scan.return_value = AIScanResult(verdict="RISKY")

        result = run([SourceFile("app.py", CLEAN)], ai_provider=provider)

        assert result.status == WARN
        assert result.reasons == ["AI scan detected potential risks"]

    def test_batch_is_limited(self):
        provider = MagicMock()
        provider.scan.return_value = AIScanResult(verdict="GOOD")
        files = [SourceFile(f"m{i}.py", "x = 1\n" * 2000) for i in range(7)]

        run(files, ai_provider=provider, thresholds=Thresholds(ai_max_files=3, ai_max_chars=100))

        batch = provider.scan.call_args.args[0]
        assert len(batch) == 3
        assert all(len(item["content"]) == 100 for item in batch)


class TestVerdict:
    def test_clean_change_passes(self):
        result = run([SourceFile("app.py", CLEAN)])

        assert result.status == PASS
        assert result.reasons == []
        assert result.record_fields()["block_reasons"] == []
        assert result.analysis_results["verdict"]["status"] == PASS

    def test_block_wins_over_warn(self):
        content = "eval(x)\n" + "".join(f"# TODO: {i}\n" for i in range(6))

        result = run([SourceFile("app.py", content)])

        assert result.status == BLOCK
        assert result.warn_reasons == ["Code quality concerns: 6 code smells"]
        # Only block reasons are persisted for a blocked change
        assert result.record_fields()["block_reasons"] == ["Security issues detected: 1"]

    def test_warn_reasons_persisted_for_warn(self):
        result = run([SourceFile("billing/invoice.py", CLEAN)], ticket="Fix login")

        assert result.record_fields()["block_reasons"] == result.warn_reasons

    def test_layer_order_does_not_change_verdict(self):
        files = [
            SourceFile("app.py", "eval(x)\n" + "".join(f"# TODO: {i}\n" for i in range(6))),
            SourceFile("app.js", "debugger;\n" * 6),
        ]
        context = PipelineContext(repo_id="acme/widgets", pr_number=3, ticket="unrelated words")
        thresholds = Thresholds()
        layers = VerdictPipeline.default_layers(thresholds, None)

        forward = VerdictPipeline(thresholds, layers=layers).run(files, context)
        backward = VerdictPipeline(thresholds, layers=list(reversed(layers))).run(files, context)

        assert forward.status == backward.status == BLOCK
        assert sorted(forward.block_reasons) == sorted(backward.block_reasons)
        assert sorted(forward.warn_reasons) == sorted(backward.warn_reasons)
        assert forward.overall_risk == backward.overall_risk

    def test_overall_risk_blocks_above_limit(self):
        content = "breakpoint()\n" * 3 + "eval(x)\n"

        result = run([SourceFile("app.py", content)], thresholds=Thresholds(max_risk_score=10))

        assert result.overall_risk == 14
        assert "Risk score too high: 14 (limit 10)" in result.block_reasons

    def test_overall_risk_weights(self):
        results = {
            "complexity": {"avg_complexity": 30},
            "lint": {"errors": 10},
            "security": {"score": 0},
            "code_smells": {"count": 10},
        }

        assert compute_overall_risk(results) == 100
        assert compute_overall_risk({}) == 0

    @given(
        st.integers(min_value=0, max_value=200),
        st.integers(min_value=0, max_value=50),
        st.integers(min_value=0, max_value=100),
        st.integers(min_value=0, max_value=50),
    )
    def test_overall_risk_in_range(self, complexity, errors, security, smells):
        risk = compute_overall_risk({
            "complexity": {"avg_complexity": complexity},
            "lint": {"errors": errors},
            "security": {"score": security},
            "code_smells": {"count": smells},
        })

        assert 0 <= risk <= 100

    def test_empty_change_passes(self):
        result = run([])

        assert result.status == PASS
        assert result.files_analyzed == 0


class TestVerdictAccumulator:
    @pytest.mark.parametrize(
        ("blocks", "warns", "status"),
        [(0, 0, PASS), (0, 2, WARN), (1, 0, BLOCK), (1, 3, BLOCK)],
    )
    def test_status_from_reasons(self, blocks, warns, status):
        accumulator = VerdictAccumulator()
        for i in range(warns):
            accumulator.warn("layer", f"warn {i}")
        for i in range(blocks):
            accumulator.block("layer", f"block {i}")

        assert accumulator.status == status
