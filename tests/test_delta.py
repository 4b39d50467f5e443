"""Tests for the delta engine."""

import pytest

from iacguard.delta import DeltaEngine, diff_audits, unified_patch
from iacguard.errors import ParseError


@pytest.fixture
def delta_engine(audit_engine) -> DeltaEngine:
    return DeltaEngine(audit_engine)


class TestUnifiedPatch:
    """Tests for the text patch."""

    def test_labels_and_lines(self, gp2_volume_template: str, gp3_volume_template: str):
        patch = unified_patch(gp2_volume_template, gp3_volume_template)

        assert patch.startswith("--- Current Version\n+++ New Version\n")
        assert '-  type              = "gp2"\n' in patch
        assert '+  type              = "gp3"\n' in patch

    def test_identical_is_empty(self, bucket_only_template: str):
        assert unified_patch(bucket_only_template, bucket_only_template) == ""

    def test_missing_trailing_newline(self):
        patch = unified_patch("a = 1", "a = 2")

        assert patch.endswith("\n")
        assert "-a = 1\n" in patch
        assert "+a = 2\n" in patch


class TestDeltaEngine:
    """Tests for DeltaEngine.compare."""

    @pytest.mark.asyncio
    async def test_gp2_to_gp3(
        self,
        delta_engine: DeltaEngine,
        gp2_volume_template: str,
        gp3_volume_template: str,
    ):
        diff = await delta_engine.compare(gp2_volume_template, gp3_volume_template)

        assert diff.cost_delta == -2.0
        fixed = diff.security_delta.fixed_violations
        assert [g.code for g in fixed] == ["COST005"]
        assert fixed[0].results[0].resource_ref == "aws_ebs_volume.data"
        assert diff.security_delta.new_violations == []
        assert diff.security_delta.total_issues_change == -1
        assert diff.security_delta.score_change == 0
        assert not diff.security_delta.is_regression

    @pytest.mark.asyncio
    async def test_identical_content(self, delta_engine: DeltaEngine, bucket_only_template: str):
        diff = await delta_engine.compare(bucket_only_template, bucket_only_template)

        assert diff.patch == ""
        assert diff.cost_delta == 0
        assert diff.security_delta.new_violations == []
        assert diff.security_delta.fixed_violations == []
        assert {g.code for g in diff.security_delta.unchanged_violations} == {
            "SEC001",
            "SEC006",
            "SEC009",
        }

    @pytest.mark.asyncio
    async def test_added_resource_is_regression(
        self,
        delta_engine: DeltaEngine,
        gp3_volume_template: str,
        bucket_only_template: str,
    ):
        new = gp3_volume_template + "\n" + bucket_only_template

        diff = await delta_engine.compare(gp3_volume_template, new)

        new_keys = {
            f"{g.code}:{r.resource_ref}"
            for g in diff.security_delta.new_violations
            for r in g.results
        }
        assert new_keys == {"SEC001:aws_s3_bucket.data", "SEC009:aws_s3_bucket.data"}
        assert diff.security_delta.score_change == -30
        assert diff.security_delta.is_regression
        assert diff.cost_delta == 0.5

    @pytest.mark.asyncio
    async def test_reordering_is_not_a_change(
        self,
        delta_engine: DeltaEngine,
        bucket_and_volume_template: str,
    ):
        bucket, volume = bucket_and_volume_template.split("\n\n")
        reordered = volume + "\n\n" + bucket

        diff = await delta_engine.compare(bucket_and_volume_template, reordered)

        assert diff.patch != ""
        assert diff.security_delta.new_violations == []
        assert diff.security_delta.fixed_violations == []
        assert diff.security_delta.score_change == 0
        assert diff.cost_delta == 0

    @pytest.mark.asyncio
    async def test_partial_group_split(self, delta_engine: DeltaEngine):
        old = '''resource "aws_ebs_volume" "a" {
  size = 10
}

resource "aws_ebs_volume" "b" {
  size = 10
}
'''
        new = old.replace('resource "aws_ebs_volume" "a" {\n', 'resource "aws_ebs_volume" "a" {\n  encrypted = true\n')

        diff = await delta_engine.compare(old, new)

        fixed = diff.security_delta.fixed_violations
        unchanged = diff.security_delta.unchanged_violations
        assert [r.resource_ref for r in fixed[0].results] == ["aws_ebs_volume.a"]
        assert [r.resource_ref for g in unchanged if g.code == "SEC004" for r in g.results] == [
            "aws_ebs_volume.b"
        ]

    @pytest.mark.asyncio
    async def test_non_text_raises(self, delta_engine: DeltaEngine, bucket_only_template: str):
        with pytest.raises(ParseError):
            await delta_engine.compare(bucket_only_template, 42)

    @pytest.mark.asyncio
    async def test_diff_audits_direct(self, audit_engine, bucket_only_template: str, hardened_template: str):
        old = await audit_engine.audit(bucket_only_template)
        new = await audit_engine.audit(hardened_template)

        delta = diff_audits(old, new)

        assert delta.score_change == 45
        assert delta.total_issues_change == -3
        assert {g.code for g in delta.fixed_violations} == {"SEC001", "SEC006", "SEC009"}
        assert delta.to_dict()["score_change"] == 45
