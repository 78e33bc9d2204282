"""Confidence calibration: scale the judge's self-reported confidence by data completeness."""


def calibrate_confidence(judge_confidence: float, completeness_score: float) -> float:
    """
    Calibrated confidence = judge confidence x completeness / 100.

    A judge that is 90% confident on a record that is only 60% complete
    yields 0.54.
    """
    return judge_confidence * (completeness_score / 100)
