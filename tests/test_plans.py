"""Tests for plan-file detection and parsing."""

from devoverlay.plans import is_plan_file, parse_plan_content, plan_file_write


class TestIsPlanFile:

    def test_claude_plans_directory(self):
        assert is_plan_file("/Users/me/.claude/plans/feature.md") is True
        assert is_plan_file("C:\\Users\\me\\.claude\\plans\\feature.md") is True

    def test_plan_basenames(self):
        assert is_plan_file("plan.md") is True
        assert is_plan_file("docs/.plan.md") is True
        assert is_plan_file("docs/PLAN.md") is True

    def test_other_files(self):
        assert is_plan_file("src/plan.ts") is False
        assert is_plan_file("myplan.md") is False
        assert is_plan_file(".claude/plans/nested/x.md") is False
        assert is_plan_file("README.md") is False


class TestPlanFileWrite:

    def test_write_to_plan_file(self):
        content = plan_file_write("Write", {"file_path": "plan.md", "content": "# Plan"})
        assert content == "# Plan"

    def test_camel_case_path_key(self):
        assert plan_file_write("Write", {"filePath": "plan.md", "content": "x"}) == "x"

    def test_other_tools_and_files(self):
        assert plan_file_write("Edit", {"file_path": "plan.md", "content": "x"}) is None
        assert plan_file_write("Write", {"file_path": "app.md", "content": "x"}) is None
        assert plan_file_write("Write", {"file_path": "plan.md"}) is None
        assert plan_file_write("Write", None) is None


class TestParsePlanContent:

    def test_heading_becomes_title(self):
        assert parse_plan_content("Intro\n# Add auth\n\nStep 1") == ("Add auth", "Intro\n\nStep 1")

    def test_first_line_without_heading(self):
        assert parse_plan_content("Refactor\nstep a\nstep b") == ("Refactor", "step a\nstep b")

    def test_subheadings_are_not_titles(self):
        title, body = parse_plan_content("## Context\nwhy\n# Real title\nwhat")
        assert title == "Real title"
        assert body == "## Context\nwhy\nwhat"

    def test_empty(self):
        assert parse_plan_content("") == ("Plan", "")
