"""
Terminal presentation of rating distributions.

One tqdm bar per rating category, updated on every snapshot the engine emits.
"""

from tqdm import tqdm

from .histogram import CATEGORIES, Histogram

LABELS = {
    ".stars.stars-5": "*****",
    ".stars.stars-4": "**** ",
    ".stars.stars-3": "***  ",
    ".stars.stars-2": "**   ",
    ".stars.stars-1": "*    ",
    ".stars.trash": "trash",
}


class TqdmPresenter:
    """
    Renders snapshots as progress bars.

    Every bar shares the same scale, `peak + progress_hint`, so the bars
    stay comparable while pages are still coming in.
    """

    def __init__(self, disable: bool = False, file=None):
        self.disable = disable
        self.file = file
        self._bars = None
        self.snapshots = 0
        self.last = None

    def _open(self):
        self._bars = [
            tqdm(
                total=1,
                desc=LABELS[sel],
                position=i,
                ncols=90,
                leave=True,
                disable=self.disable,
                file=self.file,
                bar_format="{desc} |{bar}| {n_fmt}x"
            )
            for i, sel in enumerate(CATEGORIES)
        ]

    def on_snapshot(self, histogram: Histogram, progress_hint: int):
        if self._bars is None:
            self._open()
        scale = max(1, histogram.peak + progress_hint)
        for bar, count in zip(self._bars, histogram.counts):
            bar.total = scale
            bar.n = count
            bar.refresh()
        self.snapshots += 1
        self.last = histogram

    def close(self):
        if self._bars:
            for bar in self._bars:
                bar.close()
        self._bars = None
