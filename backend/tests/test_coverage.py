"""
Coverage calculation.

Covers:
- keyword aspects credited with the best weight among linking controls
- union aggregation when the requirement declares no keywords
- 0-100 bounds and idempotence
- compliance status rules, deprecated controls ignored
"""
from types import SimpleNamespace

from crosswalk.models.enums import ComplianceStatus, ControlStatus
from crosswalk.services.coverage import aspect_set, compute_coverage, normalize_aspect


def _link(control_id, weight, aspects=()):
    return SimpleNamespace(control_id=control_id, contribution_weight=weight, coverage_aspects=list(aspects))


def _control(status=ControlStatus.IMPLEMENTED, verified=True):
    return SimpleNamespace(status=status, has_verified_evidence=verified)


class TestAspects:
    def test_normalize(self):
        assert normalize_aspect("  Phishing-Resistant ") == "phishing resistant"
        assert normalize_aspect("privileged_access") == "privileged access"

    def test_aspect_set_drops_blanks(self):
        assert aspect_set(["MFA", "mfa", " ", ""]) == {"mfa"}


class TestKeywordCoverage:
    def test_single_aspect_of_three(self):
        result = compute_coverage(
            [_link("CTRL-MFA", 60, ["mfa"])],
            ["mfa", "phishing-resistant", "privileged access"],
            {"CTRL-MFA": _control()},
        )
        assert result.coverage_score == 20.0
        assert result.compliance_status == ComplianceStatus.PARTIAL
        assert result.covered_aspects == ["mfa"]
        assert result.missing_aspects == ["phishing resistant", "privileged access"]

    def test_best_weight_wins_per_aspect(self):
        links = [_link("A", 40, ["mfa"]), _link("B", 90, ["mfa"])]
        result = compute_coverage(links, ["mfa"], {"A": _control(), "B": _control()})
        assert result.coverage_score == 90.0

    def test_full_coverage_with_verified_evidence_is_compliant(self):
        links = [_link("A", 100, ["mfa"]), _link("B", 100, ["logging"])]
        result = compute_coverage(links, ["mfa", "logging"], {"A": _control(), "B": _control()})
        assert result.coverage_score == 100.0
        assert result.compliance_status == ComplianceStatus.COMPLIANT

    def test_full_coverage_without_evidence_is_partial(self):
        links = [_link("A", 100, ["mfa"])]
        result = compute_coverage(links, ["mfa"], {"A": _control(verified=False)})
        assert result.coverage_score == 100.0
        assert result.compliance_status == ComplianceStatus.PARTIAL

    def test_unrelated_aspects_score_zero(self):
        result = compute_coverage([_link("A", 100, ["backups"])], ["mfa"], {"A": _control()})
        assert result.coverage_score == 0.0
        assert result.compliance_status == ComplianceStatus.NON_COMPLIANT


class TestUnionCoverage:
    def test_overlapping_aspects_are_not_double_counted(self):
        links = [_link("A", 60, ["mfa"]), _link("B", 60, ["mfa"])]
        result = compute_coverage(links, [], {"A": _control(), "B": _control()})
        assert result.coverage_score == 60.0

    def test_partial_overlap_adds_fresh_share(self):
        links = [_link("A", 60, ["mfa"]), _link("B", 40, ["mfa", "logging"])]
        result = compute_coverage(links, [], {"A": _control(), "B": _control()})
        assert result.coverage_score == 80.0

    def test_capped_at_100(self):
        links = [_link("A", 80), _link("B", 80)]
        result = compute_coverage(links, None, {"A": _control(), "B": _control()})
        assert result.coverage_score == 100.0

    def test_weights_clamped(self):
        result = compute_coverage([_link("A", 250)], None, {"A": _control()})
        assert result.coverage_score == 100.0
        result = compute_coverage([_link("A", -5)], None, {"A": _control()})
        assert result.coverage_score == 0.0


class TestStatus:
    def test_no_links_is_non_compliant(self):
        result = compute_coverage([], ["mfa"], {})
        assert result.coverage_score == 0.0
        assert result.compliance_status == ComplianceStatus.NON_COMPLIANT

    def test_not_applicable_only_when_flagged(self):
        result = compute_coverage([], ["mfa"], {}, not_applicable=True)
        assert result.compliance_status == ComplianceStatus.NOT_APPLICABLE

    def test_deprecated_control_does_not_count(self):
        links = [_link("OLD", 100, ["mfa"]), _link("NEW", 30, ["mfa"])]
        controls = {"OLD": _control(ControlStatus.DEPRECATED), "NEW": _control()}
        result = compute_coverage(links, ["mfa"], controls)
        assert result.coverage_score == 30.0
        assert result.counted_control_ids == ["NEW"]

    def test_unknown_control_does_not_count(self):
        result = compute_coverage([_link("GHOST", 100, ["mfa"])], ["mfa"], {})
        assert result.compliance_status == ComplianceStatus.NON_COMPLIANT

    def test_idempotent(self):
        args = ([_link("A", 55, ["mfa"]), _link("B", 70, ["logging"])], ["mfa", "logging", "backups"],
                {"A": _control(), "B": _control(verified=False)})
        assert compute_coverage(*args) == compute_coverage(*args)
