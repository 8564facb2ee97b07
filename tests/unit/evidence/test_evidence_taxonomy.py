"""Tests for the evidence taxonomy and sufficiency checks."""

import pytest

from firm_governance.common.exceptions import ValidationError
from firm_governance.core.packs import check_pack_compatibility
from firm_governance.core.types import JurisdictionPack
from firm_governance.evidence.taxonomy import (
    EVIDENCE_TAXONOMY,
    EvidenceItem,
    EvidenceRequirement,
    EvidenceType,
    evidence_satisfies_minimum,
    get_evidence_definition,
    score_evidence,
    validate_agent_evidence_minimum,
    validate_evidence_sufficiency,
)


class TestTaxonomy:
    """Test the closed set of evidence categories."""

    def test_every_type_is_defined(self):
        assert set(EVIDENCE_TAXONOMY) == set(EvidenceType)

    def test_definition_lookup(self):
        definition = get_evidence_definition(EvidenceType.FINANCIAL_RECORDS)
        assert definition.name == "Financial Records"
        assert "trial balance" in definition.examples

    def test_lookup_accepts_string(self):
        assert get_evidence_definition("LEGAL_SOURCES").evidence_type == EvidenceType.LEGAL_SOURCES


class TestEvidenceSatisfiesMinimum:
    """Test required-type coverage."""

    def test_missing_type_reported(self):
        result = evidence_satisfies_minimum(
            ["CLIENT_INSTRUCTION"],
            ["CLIENT_INSTRUCTION", "FINANCIAL_RECORDS"],
        )
        assert result.satisfied is False
        assert result.missing == [EvidenceType.FINANCIAL_RECORDS]

    def test_all_present(self):
        result = evidence_satisfies_minimum(
            [EvidenceType.FINANCIAL_RECORDS, EvidenceType.CLIENT_INSTRUCTION],
            [EvidenceType.CLIENT_INSTRUCTION],
        )
        assert result.satisfied is True
        assert result.missing == []

    def test_missing_keeps_required_order(self):
        result = evidence_satisfies_minimum(
            [],
            ["WORKPAPER_TRAIL", "CLIENT_INSTRUCTION", "WORKPAPER_TRAIL"],
        )
        assert result.missing == [EvidenceType.WORKPAPER_TRAIL, EvidenceType.CLIENT_INSTRUCTION]

    def test_empty_requirement_is_satisfied(self):
        assert evidence_satisfies_minimum([], []).satisfied is True

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            evidence_satisfies_minimum(["SELFIE"], [])


class TestAgentEvidenceMinimum:
    """Per-agent minimum evidence from the rules document."""

    def test_missing_types_in_configured_order(self, rules):
        linked = [EvidenceType.FINANCIAL_RECORDS, EvidenceType.WORKPAPER_TRAIL]
        result = validate_agent_evidence_minimum("agent_tax_mt", linked, rules.agent_evidence_minimum)
        assert result.satisfied is False
        assert result.missing == [EvidenceType.SOURCE_DOCUMENTS, EvidenceType.LEGAL_SOURCES]

    def test_satisfied(self, rules):
        linked = rules.agent_evidence_minimum["agent_notary_rw"]
        result = validate_agent_evidence_minimum("agent_notary_rw", linked, rules.agent_evidence_minimum)
        assert result.satisfied is True

    def test_unlisted_agent_has_no_minimum(self, rules):
        result = validate_agent_evidence_minimum("agent_unknown", [], rules.agent_evidence_minimum)
        assert result.satisfied is True
        assert result.missing == []


class TestValidateEvidenceSufficiency:
    """Test scoring and sufficiency."""

    def test_fully_sufficient(self):
        items = [
            EvidenceItem(evidence_type=EvidenceType.CLIENT_INSTRUCTION),
            EvidenceItem(evidence_type=EvidenceType.FINANCIAL_RECORDS),
        ]
        requirement = EvidenceRequirement(
            required_types={EvidenceType.CLIENT_INSTRUCTION, EvidenceType.FINANCIAL_RECORDS},
            min_items=2,
        )
        result = validate_evidence_sufficiency(items, requirement)
        assert result.sufficient is True
        assert result.score == 100.0

    def test_partial_coverage_score(self):
        items = [EvidenceItem(evidence_type=EvidenceType.CLIENT_INSTRUCTION)]
        requirement = EvidenceRequirement(
            required_types={EvidenceType.CLIENT_INSTRUCTION, EvidenceType.FINANCIAL_RECORDS},
            min_items=4,
        )
        result = validate_evidence_sufficiency(items, requirement)
        assert result.sufficient is False
        assert result.missing == [EvidenceType.FINANCIAL_RECORDS]
        # 50 * 1/2 + 50 * 1/4
        assert result.score == 37.5

    def test_too_few_items(self):
        items = [EvidenceItem(evidence_type=EvidenceType.CLIENT_INSTRUCTION)]
        requirement = EvidenceRequirement(
            required_types={EvidenceType.CLIENT_INSTRUCTION},
            min_items=3,
        )
        result = validate_evidence_sufficiency(items, requirement)
        assert result.missing == []
        assert result.sufficient is False

    def test_empty_requirement(self):
        result = validate_evidence_sufficiency([], EvidenceRequirement(min_items=0))
        assert result.sufficient is True
        assert result.score == 100.0


class TestEvidenceItems:
    """Test item-level helpers."""

    def test_score_evidence_mean(self):
        items = [
            EvidenceItem(evidence_type=EvidenceType.SOURCE_DOCUMENTS, score=80),
            EvidenceItem(evidence_type=EvidenceType.SOURCE_DOCUMENTS, score=60),
            EvidenceItem(evidence_type=EvidenceType.SOURCE_DOCUMENTS),
        ]
        assert score_evidence(items) == 70.0

    def test_score_evidence_none_scored(self):
        assert score_evidence([EvidenceItem(evidence_type=EvidenceType.LEGAL_SOURCES)]) == 0.0

    def test_evidence_id_prefix(self):
        assert EvidenceItem(evidence_type=EvidenceType.LEGAL_SOURCES).evidence_id.startswith("ev_")

    def test_pack_usability(self):
        malta = EvidenceItem(evidence_type=EvidenceType.REGISTRY_EXTRACTS, jurisdiction_pack="MT_CSP")
        global_item = EvidenceItem(evidence_type=EvidenceType.LEGAL_SOURCES)
        assert malta.usable_for(JurisdictionPack.MT_CSP)
        assert not malta.usable_for(JurisdictionPack.RW_NOTARY)
        assert global_item.usable_for(JurisdictionPack.RW_TAX)


class TestPackCompatibility:
    """GLOBAL fits everything; other packs only themselves."""

    @pytest.mark.parametrize("target", list(JurisdictionPack))
    def test_global_fits_any(self, target):
        assert check_pack_compatibility(JurisdictionPack.GLOBAL, target)

    def test_distinct_packs_exclusive(self):
        assert not check_pack_compatibility("MT_TAX", "RW_TAX")
        assert check_pack_compatibility("RW_TAX", "RW_TAX")

    @pytest.mark.parametrize("item, target", [("GLOBAL", "XX_TAX"), ("XX_TAX", "GLOBAL"), ("MT_TAX", "")])
    def test_unknown_pack_is_validation_error(self, item, target):
        with pytest.raises(ValidationError):
            check_pack_compatibility(item, target)
