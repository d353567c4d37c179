from __future__ import annotations

import pytest

from repwatch.counter.keypoints import KP, LEFT_WRIST, NOSE, NUM_KEYPOINTS, RIGHT_WRIST

pipeline = pytest.importorskip("repwatch.counter.pipeline")


def test_landmark_mapping_covers_every_keypoint():
    assert len(pipeline.MP_TO_COCO) == NUM_KEYPOINTS == len(KP)
    assert pipeline.MP_TO_COCO[NOSE] == 0
    assert pipeline.MP_TO_COCO[LEFT_WRIST] == 15
    assert pipeline.MP_TO_COCO[RIGHT_WRIST] == 16
