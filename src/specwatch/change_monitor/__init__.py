"""
Change monitoring for specwatch.

Diffs consecutive snapshots of a target, classifies the differences and
records them as changelog entries.
"""

from specwatch.change_monitor.analyzer import ChangeAnalyzer
from specwatch.change_monitor.changelog import ChangelogWriter
from specwatch.change_monitor.classifier import SeverityClassifier

__all__ = ["ChangeAnalyzer", "ChangelogWriter", "SeverityClassifier"]
