from collections import namedtuple

# usable: frame may be classified; missing: indices under the threshold; min_visibility: lowest score seen
GateResult = namedtuple("GateResult", ["usable", "missing", "min_visibility"])


class VisibilityGate:
    """Decides whether a frame carries every required landmark with enough confidence."""

    def __init__(self, required, min_visibility):
        self.required = tuple(required)
        self.min_visibility = min_visibility

    @classmethod
    def for_exercise(cls, config, kind, lighting="normal"):
        settings = config.exercise(kind)
        return cls(settings.critical_landmarks, config.min_visibility(kind, lighting))

    def check(self, frame):
        scores = [frame[idx].visibility for idx in self.required]
        missing = tuple(idx for idx, score in zip(self.required, scores) if score < self.min_visibility)
        return GateResult(not missing, missing, min(scores) if scores else 1.0)
