import importlib
import logging
import os

from vrf_lottery.utils import logger as logger_module


def test_dotenv_settings_reach_logging(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("LOG_LEVEL=DEBUG\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("LOG_LEVEL")
    monkeypatch.setattr(logger_module, "_configured", False)
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    old_level = root.level

    try:
        import vrf_lottery.main as main_module
        importlib.reload(main_module)

        assert os.environ["LOG_LEVEL"] == "DEBUG"
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(old_level)
