import os, json, logging

logging.getLogger("matplotlib").setLevel(logging.WARNING)
logging.getLogger("matplotlib.font_manager").setLevel(logging.WARNING)

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for plotting
import matplotlib.pyplot as plt

from .histogram import CATEGORIES, Histogram
from .presenter import LABELS

logger = logging.getLogger(__name__)


class Storage:
    def __init__(self, root: str):
        self.root = root
        self.reports_dir = os.path.join(root, 'reports')
        os.makedirs(self.reports_dir, exist_ok=True)

    def write_summary_json(self, summary: dict, filename: str = "summary.json"):
        p = os.path.join(self.reports_dir, filename)
        with open(p, "w", encoding="utf-8") as f:
            json.dump(summary, f, ensure_ascii=False, indent=2)
        return p

    def save_chart(self, histogram: Histogram, title: str = "Rating Distribution",
                   filename: str = "distribution.png"):
        """Bar chart of the distribution, best rating on the left."""
        p = os.path.join(self.reports_dir, filename)
        plt.figure()
        plt.bar([LABELS[sel].strip() for sel in CATEGORIES], histogram.counts)
        plt.title(title)
        plt.ylabel("ratings")
        plt.tight_layout()
        plt.savefig(p)
        plt.close()
        return p

    def write_report(self, resource_url: str, histogram: Histogram, status: dict) -> dict:
        """
        Write summary JSON and chart for one session.

        Returns:
            dict: The summary that was written
        """
        summary = {
            "resource_url": resource_url,
            "distribution": histogram.as_dict(),
            "total": histogram.total,
            **status,
        }
        self.write_summary_json(summary)
        try:
            self.save_chart(histogram)
        except Exception as e:
            logger.warning("chart failed: %s", e)
        return summary
