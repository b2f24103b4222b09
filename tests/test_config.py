import json

from vrf_lottery.lottery.models import LotteryConfig
from vrf_lottery.utils.config import get_config_value, load_config, save_config


def test_load_config_file_and_env(tmp_path, monkeypatch):
    path = tmp_path / "lottery.conf"
    path.write_text(json.dumps({"lottery": {"entrance_fee": 100, "interval": 60}}))
    monkeypatch.setenv("LOTTERY_INTERVAL", "45")
    monkeypatch.setenv("KEEPER_CHECK_INTERVAL", "2")

    config = load_config(path)

    assert config["lottery"]["entrance_fee"] == 100
    assert config["lottery"]["interval"] == "45"
    assert get_config_value(config, "keeper.check_interval") == "2"
    assert get_config_value(config, "server.port", 6080) == 6080

    lottery_config = LotteryConfig.from_dict(config)
    assert lottery_config.entrance_fee == 100
    assert lottery_config.interval == 45
    assert lottery_config.num_words == 1


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(tmp_path / "absent.conf")
    lottery_config = LotteryConfig.from_dict(config)
    assert lottery_config.entrance_fee == 10 ** 16
    assert lottery_config.interval == 30
    assert lottery_config.callback_gas_limit == 500_000
    assert lottery_config.subscription_id == 588


def test_save_config_round_trip(tmp_path):
    path = tmp_path / "out" / "lottery.conf"
    save_config({"server": {"port": 7000}}, path)
    assert json.loads(path.read_text()) == {"server": {"port": 7000}}
