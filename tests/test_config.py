"""
Tests for config.py.
"""

from rnaseq_qc.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.count_threshold == 5
        assert settings.library_size_reference == 20_000_000
        assert settings.top_n_genes == 500
        assert settings.stabilize_method == "rlog"
        assert settings.apply_corrections is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RNASEQ_QC_COUNT_THRESHOLD", "10")
        monkeypatch.setenv("RNASEQ_QC_STABILIZE_METHOD", "vst")
        settings = Settings()
        assert settings.count_threshold == 10
        assert settings.stabilize_method == "vst"
