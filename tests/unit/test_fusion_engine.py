"""
Unit tests for the detection fusion engine.

Tests clustering, group statistics, sensitivity filtering and clip placement.
"""

import itertools
import random

import pytest

from src.killcam.config import DetectionSettings
from src.killcam.fusion.engine import (
    DetectionFusionEngine,
    combine_detections,
    estimate_kill_count,
    extract_weapon,
    group_nearby_detections,
    passes_sensitivity,
    summarize_group,
)
from src.killcam.models import Modality

from tests.conftest import make_detection


@pytest.fixture
def scenario_detections():
    return [
        make_detection(10, 90, Modality.KILLFEED),
        make_detection(11, 60, Modality.AUDIO),
        make_detection(50, 80, Modality.VISUAL),
    ]


@pytest.mark.unit
class TestGrouping:
    """Test suite for forward-chain clustering."""

    def test_empty_input(self):
        assert group_nearby_detections([]) == []

    def test_splits_on_gap(self, scenario_detections):
        groups = group_nearby_detections(scenario_detections, threshold=2.0)

        assert [[d.timestamp for d in g] for g in groups] == [[10, 11], [50]]

    def test_gap_equal_to_threshold_joins(self):
        groups = group_nearby_detections([make_detection(0), make_detection(2.0)], threshold=2.0)
        assert len(groups) == 1

    def test_forward_chaining_drifts(self):
        """Each member is within 2s of the previous one, so all chain together."""
        detections = [make_detection(t) for t in (0, 1.5, 3.0, 4.5, 6.0)]

        groups = group_nearby_detections(detections, threshold=2.0)

        assert len(groups) == 1
        assert groups[0][-1].timestamp - groups[0][0].timestamp == 6.0

    def test_input_order_does_not_matter(self, sample_detections):
        expected = group_nearby_detections(sample_detections)

        for permutation in itertools.permutations(sample_detections):
            assert group_nearby_detections(list(permutation)) == expected

    def test_simultaneous_detections_are_ordered_deterministically(self):
        detections = [
            make_detection(5, 70, Modality.AUDIO, "b"),
            make_detection(5, 80, Modality.VISUAL, "a"),
            make_detection(5, 85, Modality.KILLFEED, "c"),
        ]

        group = group_nearby_detections(detections)[0]

        assert [d.modality for d in group] == [Modality.KILLFEED, Modality.VISUAL, Modality.AUDIO]


@pytest.mark.unit
class TestGroupStatistics:
    """Test suite for per-group summaries."""

    def test_summary_values(self, sample_detections):
        group = group_nearby_detections(sample_detections)[0]

        summary = summarize_group(group)

        assert summary.avg_timestamp == pytest.approx((10.0 + 10.5 + 11.0 + 11.5) / 4)
        assert summary.max_confidence == 88
        assert summary.weapon == "Vandal"
        assert summary.enemies_killed == 2
        assert summary.is_multi_kill is True

    def test_max_confidence_is_true_max(self):
        group = [make_detection(1, c) for c in (40, 95, 60)]
        assert summarize_group(group).max_confidence == 95

    def test_kill_count_floor_is_one(self):
        group = [make_detection(1, 70, Modality.AUDIO), make_detection(2, 75, Modality.VISUAL)]
        assert estimate_kill_count(group) == 1

    def test_kill_count_counts_killfeed_members(self):
        group = [make_detection(t, 85, Modality.KILLFEED) for t in (1, 2, 3)]
        assert estimate_kill_count(group) == 3

    def test_weapon_first_match_in_group_order(self):
        group = [
            make_detection(1, evidence="no weapon here"),
            make_detection(2, evidence="Killed with OPERATOR"),
            make_detection(3, evidence="vandal"),
        ]
        assert extract_weapon(group) == "Operator"

    def test_weapon_unknown(self):
        assert extract_weapon([make_detection(1, evidence="eliminated")]) == "Unknown"

    def test_empty_group_rejected(self):
        with pytest.raises(ValueError):
            summarize_group([])


@pytest.mark.unit
class TestFusion:
    """Test suite for DetectionFusionEngine.fuse."""

    def test_two_clips_at_default_sensitivity(self, scenario_detections):
        engine = DetectionFusionEngine(sensitivity=80)

        clips = engine.fuse(scenario_detections)

        assert len(clips) == 2
        assert clips[0].confidence == 90
        assert clips[0].enemies_killed == 1
        assert clips[0].is_multi_kill is False
        assert clips[1].confidence == 80

    def test_low_sensitivity_drops_weak_group(self, scenario_detections):
        engine = DetectionFusionEngine(sensitivity=10)

        clips = engine.fuse(scenario_detections)

        assert len(clips) == 1
        assert clips[0].confidence == 90

    def test_timestamp_clamped_at_zero(self):
        engine = DetectionFusionEngine(pre_kill_buffer=3)

        clips = engine.fuse([make_detection(1.0), make_detection(2.0)])

        assert clips[0].timestamp == 0

    def test_clip_placement_and_duration(self):
        engine = DetectionFusionEngine(clip_duration=12, pre_kill_buffer=2.5)

        clip = engine.fuse([make_detection(20), make_detection(21)])[0]

        assert clip.timestamp == pytest.approx(18.0)
        assert clip.duration == 12

    def test_empty_input_gives_no_clips(self):
        assert DetectionFusionEngine().fuse([]) == []

    def test_clip_ids_follow_group_index(self, scenario_detections):
        clips = DetectionFusionEngine(sensitivity=10).fuse(scenario_detections + [make_detection(100, 95)])
        assert [c.id for c in clips] == ["clip-1", "clip-3"]

    def test_fusion_is_idempotent(self, sample_detections):
        engine = DetectionFusionEngine()
        shuffled = list(sample_detections)
        random.Random(7).shuffle(shuffled)

        assert engine.fuse(sample_detections) == engine.fuse(shuffled)

    @pytest.mark.parametrize("low,high", [(10, 50), (50, 80), (80, 100)])
    def test_sensitivity_monotonic(self, sample_detections, low, high):
        detections = sample_detections + [make_detection(80 + i * 10, c) for i, c in enumerate((15, 35, 55, 75))]

        low_ids = {c.id for c in DetectionFusionEngine(sensitivity=low).fuse(detections)}
        high_ids = {c.id for c in DetectionFusionEngine(sensitivity=high).fuse(detections)}

        assert low_ids <= high_ids

    def test_disabled_modalities_are_ignored(self, scenario_detections):
        engine = DetectionFusionEngine(enabled_modalities=[Modality.VISUAL])

        clips = engine.fuse(scenario_detections)

        assert len(clips) == 1
        assert clips[0].confidence == 80

    def test_passes_sensitivity_bar(self):
        assert passes_sensitivity(90, 10)
        assert not passes_sensitivity(89.9, 10)

    @pytest.mark.parametrize("kwargs", [
        {'sensitivity': -5},
        {'sensitivity': 101},
        {'clip_duration': 0},
        {'pre_kill_buffer': -1},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            DetectionFusionEngine(**kwargs)

    def test_combine_detections_uses_settings(self, scenario_detections):
        settings = DetectionSettings(sensitivity=10, clip_duration=20, pre_kill_buffer=4, audio_detection=False)

        clips = combine_detections(scenario_detections, settings)

        assert len(clips) == 1
        assert clips[0].duration == 20
        assert clips[0].timestamp == pytest.approx(6.0)
