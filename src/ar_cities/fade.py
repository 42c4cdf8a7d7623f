"""
Per-label visibility alpha with asymmetric fade rates.
"""

from typing import Dict, Iterable, KeysView

_SNAP_EPS = 1e-9


class FadeTracker:
    """
    Alpha per entity key, driven toward 1 while targeted and toward 0 otherwise.

    Fading in is faster than fading out, so a label that only wins its slot
    on some frames still becomes visible. A key is forgotten once it is back
    at 0 and no longer targeted.
    """

    def __init__(self, fade_in_per_s: float = 4.0, fade_out_per_s: float = 3.0,
                 max_dt: float = 0.1):
        self.fade_in_per_s = fade_in_per_s
        self.fade_out_per_s = fade_out_per_s
        self.max_dt = max_dt
        self._alpha: Dict[str, float] = {}

    def alpha(self, key: str) -> float:
        return self._alpha.get(key, 0.0)

    def keys(self) -> KeysView:
        return self._alpha.keys()

    def __len__(self) -> int:
        return len(self._alpha)

    def __contains__(self, key: str) -> bool:
        return key in self._alpha

    def update(self, targets: Iterable[str], dt: float) -> None:
        """Advance every tracked or targeted key by one frame of ``dt`` seconds."""
        targets = set(targets)
        dt = max(0.0, min(self.max_dt, dt))

        for key in set(self._alpha) | targets:
            cur = self._alpha.get(key, 0.0)
            visible = key in targets
            if visible:
                nxt = min(1.0, cur + self.fade_in_per_s * dt)
                if nxt > 1.0 - _SNAP_EPS:
                    nxt = 1.0
            else:
                nxt = max(0.0, cur - self.fade_out_per_s * dt)
                if nxt < _SNAP_EPS:
                    nxt = 0.0

            if nxt <= 0.0 and not visible:
                del self._alpha[key]
            else:
                self._alpha[key] = nxt
