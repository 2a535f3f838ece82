import os
import unittest
from unittest import mock

from config import load_settings
from interfaces.telegram.callback_data import (
    encode_ownership_confirmation,
    parse_ownership_confirmation,
)


class CallbackDataTests(unittest.TestCase):
    def test_ownership_confirmation_encoding(self):
        data = encode_ownership_confirmation("111", "222", accepted=True)
        self.assertEqual(data, "own:yes:111:222")
        self.assertEqual(parse_ownership_confirmation(data), (True, "111", "222"))
        self.assertEqual(
            parse_ownership_confirmation(encode_ownership_confirmation("1", "2", accepted=False)),
            (False, "1", "2"),
        )

    def test_malformed_callback_data_is_rejected(self):
        for data in ("own:yes:111", "own:maybe:1:2", "from:1:to:2:3", "own:yes::2"):
            with self.assertRaises(ValueError):
                parse_ownership_confirmation(data)


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = load_settings()

        self.assertEqual(settings.db_path, "chipvault.db")
        self.assertIsNone(settings.database_url)
        self.assertEqual(settings.chip_rate, 1)
        self.assertEqual(settings.min_deposit, 1)
        self.assertEqual(settings.wallet_opening_balance, 0)
        self.assertEqual(settings.log_level, "INFO")

    def test_values_from_environment(self):
        env = {
            "VAULT_OWNER": "discord:1",
            "GAME_SERVER_ADDRESS": "discord:2",
            "CHIP_RATE": "100",
            "MIN_DEPOSIT": "10",
            "WALLET_OPENING_BALANCE": "250",
            "DATABASE_URL": "postgresql://localhost/chipvault",
            "LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        self.assertEqual(settings.vault_owner, "discord:1")
        self.assertEqual(settings.game_server_address, "discord:2")
        self.assertEqual(settings.chip_rate, 100)
        self.assertEqual(settings.min_deposit, 10)
        self.assertEqual(settings.wallet_opening_balance, 250)
        self.assertEqual(settings.database_url, "postgresql://localhost/chipvault")
        self.assertEqual(settings.log_level, "DEBUG")

    def test_malformed_integers_fail_fast(self):
        for value in ("abc", "0"):
            with mock.patch.dict(os.environ, {"CHIP_RATE": value}, clear=True):
                with self.assertRaises(RuntimeError):
                    load_settings()
        with mock.patch.dict(os.environ, {"WALLET_OPENING_BALANCE": "-1"}, clear=True):
            with self.assertRaises(RuntimeError):
                load_settings()


if __name__ == "__main__":
    unittest.main()
