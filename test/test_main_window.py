import re

import pytest

pytest.importorskip("PyQt5.QtWidgets")

from gui.main_window import MainWindow  # noqa: E402

LABEL_NAMES = ("titleLabel", "videoLabel", "iconLabel", "emotionLabel", "statusLabel")


def test_stylesheet_styles_each_named_label():
    stylesheet = MainWindow._get_main_stylesheet(None)

    for name in LABEL_NAMES:
        assert f"QLabel#{name}" in stylesheet
    assert ":pressed" not in stylesheet
    assert "QMainWindow" not in stylesheet


def test_stylesheet_rules_are_balanced():
    stylesheet = MainWindow._get_main_stylesheet(None)

    assert stylesheet.count("{") == stylesheet.count("}")
    selectors = re.findall(r"^\s*([^{}\n]+?)\s*\{", stylesheet, re.MULTILINE)
    assert "QPushButton, QComboBox" in selectors
