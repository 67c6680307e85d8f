"""Tests for ScoreCalculator — weighted index, rank, national stats."""

from __future__ import annotations

import random

import pytest
from uuid_extensions import uuid7

from mii.scoring.calculator import ScoreCalculator
from mii.scoring.errors import ComputationError
from mii.scoring.models import DimensionScore, MIIDimension

from mii_factories import make_municipality


@pytest.fixture
def calculator() -> ScoreCalculator:
    return ScoreCalculator()


def _dims(values: dict[MIIDimension, float]) -> list[DimensionScore]:
    return [DimensionScore(dimension=d, value=v) for d, v in values.items()]


class TestOverallScore:
    def test_reference_scenario(self, calculator: ScoreCalculator) -> None:
        dims = _dims({
            MIIDimension.LEADERSHIP: 55.0,
            MIIDimension.STRATEGY: 500 / 6,
            MIIDimension.CULTURE: 40.0,
            MIIDimension.PARTNERSHIPS: 20.0,
            MIIDimension.CAPABILITIES: 100 / 6,
            MIIDimension.IMPACT: 60.0,
        })
        assert calculator.overall_score(dims) == pytest.approx(47.25)

    def test_all_hundred_is_hundred(self, calculator: ScoreCalculator) -> None:
        dims = _dims({d: 100.0 for d in MIIDimension})
        assert calculator.overall_score(dims) == pytest.approx(100.0)

    def test_weighted_sum_property(self, calculator: ScoreCalculator) -> None:
        rng = random.Random(7)
        weights = calculator.weights
        for _ in range(200):
            values = {d: rng.uniform(0.0, 100.0) for d in MIIDimension}
            overall = calculator.overall_score(_dims(values))
            assert 0.0 <= overall <= 100.0
            expected = sum(weights[d] * v for d, v in values.items())
            assert overall == pytest.approx(expected)

    def test_not_rounded(self, calculator: ScoreCalculator) -> None:
        dims = _dims({d: 33.3333 for d in MIIDimension})
        assert calculator.overall_score(dims) == pytest.approx(33.3333)

    def test_five_dimensions_rejected(self, calculator: ScoreCalculator) -> None:
        dims = _dims({d: 50.0 for d in list(MIIDimension)[:5]})
        with pytest.raises(ComputationError):
            calculator.overall_score(dims)

    def test_duplicate_dimension_rejected(self, calculator: ScoreCalculator) -> None:
        dims = _dims({d: 50.0 for d in MIIDimension})
        dims.append(DimensionScore(dimension=MIIDimension.IMPACT, value=10.0))
        with pytest.raises(ComputationError):
            calculator.overall_score(dims)


class TestRank:
    def test_descending_by_score(self) -> None:
        a, b, c = uuid7(), uuid7(), uuid7()
        ranks = ScoreCalculator.rank({a: 50.0, b: 80.0, c: 65.0})
        assert ranks == {b: 1, c: 2, a: 3}

    def test_ties_broken_by_id(self) -> None:
        ids = sorted((uuid7() for _ in range(3)), key=str)
        ranks = ScoreCalculator.rank({ids[2]: 70.0, ids[0]: 70.0, ids[1]: 70.0})
        assert [ranks[i] for i in ids] == [1, 2, 3]

    def test_permutation_property(self) -> None:
        rng = random.Random(11)
        for size in (1, 2, 5, 40):
            scores = {uuid7(): float(rng.randint(0, 10)) for _ in range(size)}
            ranks = ScoreCalculator.rank(scores)
            assert sorted(ranks.values()) == list(range(1, size + 1))

    def test_empty(self) -> None:
        assert ScoreCalculator.rank({}) == {}


class TestNationalStats:
    def test_average_of_active_scored(self) -> None:
        munis = [
            make_municipality(mii_score=60.0),
            make_municipality(mii_score=80.0),
            make_municipality(mii_score=10.0, is_active=False),
            make_municipality(mii_score=None),
            make_municipality(mii_score=5.0, is_deleted=True),
        ]
        stats = ScoreCalculator.national_stats(munis)
        assert stats.municipality_count == 2
        assert stats.average_score == pytest.approx(70.0)
        assert stats.dimension_averages == {}

    def test_dimension_averages(self) -> None:
        a = make_municipality(mii_score=60.0)
        b = make_municipality(mii_score=80.0)
        outsider = make_municipality(mii_score=None)
        stats = ScoreCalculator.national_stats(
            [a, b, outsider],
            {
                a.municipality_id: {d: 60.0 for d in MIIDimension},
                b.municipality_id: {d: 80.0 for d in MIIDimension},
                outsider.municipality_id: {d: 0.0 for d in MIIDimension},
            },
        )
        assert stats.dimension_averages[MIIDimension.IMPACT] == pytest.approx(70.0)

    def test_no_participants(self) -> None:
        stats = ScoreCalculator.national_stats([make_municipality(is_active=False)])
        assert stats.municipality_count == 0
        assert stats.average_score is None
        assert stats.dimension_averages == {}
