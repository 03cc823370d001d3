"""Tests for pair feature extraction."""

import asyncio

import numpy as np
import pytest

from conftest import make_candidate, make_job
from services.pipeline.embeddings import EmbeddingService, HashingEmbedder
from services.pipeline.errors import EmbeddingTimeoutError, FeatureExtractionError
from services.pipeline.feature_extractor import (
    FeatureExtractor,
    coverage,
    education_level,
    experience_alignment,
    jaccard,
    salary_alignment,
    seniority_level,
)
from models.schemas.profiles import SalaryRange


def _extractor(**kwargs) -> FeatureExtractor:
    return FeatureExtractor(EmbeddingService("hashing", dimension=8, timeout=2.0), **kwargs)


class _SlowEmbedder:
    dimension = 8

    def encode(self, text):
        import time
        time.sleep(0.5)
        return np.ones(8)


class TestHelpers:
    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0

    def test_coverage_nothing_wanted(self):
        assert coverage({"python"}, set()) == 1.0
        assert coverage(set(), {"python", "go"}) == 0.0

    def test_experience_alignment(self):
        assert experience_alignment(5, 5) == 1.0
        assert experience_alignment(3, 5) == 0.7
        assert experience_alignment(0, 0) == 1.0

    def test_education_level(self):
        assert education_level("PhD in Physics") == "phd"
        assert education_level("MBA") == "master"
        assert education_level("BSc Computer Science") == "bachelor"
        assert education_level("Bootcamp") == "none"

    def test_salary_alignment(self):
        assert salary_alignment(SalaryRange(min=100, max=120), SalaryRange(min=110, max=150)) == 1.0
        assert salary_alignment(None, SalaryRange(min=1, max=2)) == 0.0

    def test_seniority(self):
        assert seniority_level(0.5) == "entry"
        assert seniority_level(20) == "executive"


class TestFeatureExtractor:
    @pytest.mark.asyncio
    async def test_vector_layout(self):
        extractor = _extractor()
        fv = await extractor.extract_pair(make_candidate(0), make_job(0))
        assert fv.dimension == extractor.dimension == 38
        assert fv.names == extractor.feature_names
        assert fv.names[-8:] == [f"embedding_{i}" for i in range(8)]
        assert fv.embedding_dimension == 8
        assert fv.candidate_id == "cand-0"
        assert fv.job_id == "job-0"

    @pytest.mark.asyncio
    async def test_deterministic(self):
        a = await _extractor().extract_pair(make_candidate(0), make_job(0))
        b = await _extractor().extract_pair(make_candidate(0), make_job(0))
        assert a.values == b.values
        assert a.feature_hash() == b.feature_hash()

    @pytest.mark.asyncio
    async def test_matching_pair_scores_higher_overlap(self):
        extractor = _extractor()
        good = await extractor.extract_pair(make_candidate(0), make_job(0))
        bad = await extractor.extract_pair(make_candidate(1), make_job(0))
        idx = extractor.feature_names.index("required_skill_coverage")
        assert good.values[idx] == 1.0
        assert bad.values[idx] == 0.0

    @pytest.mark.asyncio
    async def test_toggles_shrink_vector(self):
        extractor = _extractor(use_text_embeddings=False, use_categorical_encoding=False)
        fv = await extractor.extract_pair(make_candidate(0), make_job(0))
        assert fv.dimension == 12
        assert fv.embedding_dimension == 0

    @pytest.mark.asyncio
    async def test_raw_numeric_when_normalization_off(self):
        extractor = _extractor(use_numerical_normalization=False)
        fv = await extractor.extract_pair(make_candidate(0, years=5), make_job(0))
        assert fv.values[extractor.feature_names.index("candidate_completion")] == 80.0
        assert fv.values[extractor.feature_names.index("job_years_required")] == 4.0

    @pytest.mark.asyncio
    async def test_accepts_dicts(self):
        extractor = _extractor()
        fv = await extractor.extract_pair(
            make_candidate(0).model_dump(), make_job(0).model_dump()
        )
        expected = await extractor.extract_pair(make_candidate(0), make_job(0))
        assert fv.values == expected.values

    @pytest.mark.asyncio
    async def test_missing_required_field(self):
        with pytest.raises(FeatureExtractionError, match="title"):
            await _extractor().extract_pair(make_candidate(0), {"id": "job-x"})

    @pytest.mark.asyncio
    async def test_precomputed_sample_dimension_checked(self):
        extractor = _extractor()
        with pytest.raises(FeatureExtractionError):
            await extractor.extract_sample({"label": 1, "features": [0.1, 0.2]})
        fv = await extractor.extract_sample({"label": 1, "features": [0.5] * extractor.dimension})
        assert fv.dimension == extractor.dimension

    @pytest.mark.asyncio
    async def test_embedding_timeout(self):
        service = EmbeddingService("slow", dimension=8, timeout=0.05, embedder=_SlowEmbedder())
        with pytest.raises(EmbeddingTimeoutError):
            await FeatureExtractor(service).extract_pair(make_candidate(0), make_job(0))
        # let the worker thread finish before the loop closes
        await asyncio.sleep(0.6)


class TestEmbeddings:
    def test_hashing_is_stable(self):
        e = HashingEmbedder(16)
        assert np.array_equal(e.encode("python fastapi"), e.encode("python fastapi"))

    def test_hashing_counts_tokens(self):
        e = HashingEmbedder(16)
        single = e.encode("python")
        assert single.shape == (16,)
        assert np.abs(single).sum() == 1.0
        assert np.array_equal(e.encode("python Python"), 2 * single)
        assert np.array_equal(e.encode("PYTHON"), e.encode("python"))
        assert not e.encode("").any()

    @pytest.mark.asyncio
    async def test_memoized_vectors_identical(self):
        service = EmbeddingService("hashing", dimension=16, timeout=1.0)
        first = await service.embed("python developer")
        second = await service.embed("python developer")
        assert np.array_equal(first, second)
