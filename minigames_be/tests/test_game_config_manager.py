import json
import os
from decimal import Decimal

import pytest

from minigames_be.config_validator import ConfigValidationError
from minigames_be.utils.game_config_manager import GameConfigManager, DEFAULT_GAME_SETTINGS


def test_defaults_cover_every_game():
    manager = GameConfigManager.from_app_config({})
    assert set(manager.game_keys()) == {'dice', 'coinflip', 'mines', 'card_coming', 'taka_coming', 'crash'}
    assert manager.get_game_config('dice')['min_bet'] == DEFAULT_GAME_SETTINGS['dice']['min_bet']

def test_overrides_merge_over_defaults():
    manager = GameConfigManager.from_app_config({'GAME_SETTINGS': {'dice': {'max_bet': Decimal('50')}}})
    dice = manager.get_game_config('dice')
    assert dice['max_bet'] == Decimal('50')
    assert dice['paytable'] == DEFAULT_GAME_SETTINGS['dice']['paytable']

def test_unknown_game_rejected():
    with pytest.raises(ConfigValidationError):
        GameConfigManager.from_app_config({'GAME_SETTINGS': {'roulette': {'min_bet': 1}}})

def test_inverted_range_rejected_at_load():
    with pytest.raises(ConfigValidationError):
        GameConfigManager.from_app_config({'GAME_SETTINGS': {'crash': {'min_bet': 100, 'max_bet': 10}}})

def test_settings_file_applies_before_app_settings(tmp_path):
    path = tmp_path / 'games.json'
    path.write_text(json.dumps({'coinflip': {'min_bet': 2, 'max_bet': 20}}))
    manager = GameConfigManager.from_app_config({
        'GAME_SETTINGS_FILE': str(path),
        'GAME_SETTINGS': {'coinflip': {'max_bet': 30}},
    })
    coinflip = manager.get_game_config('coinflip')
    assert coinflip['min_bet'] == 2
    assert coinflip['max_bet'] == 30

def test_returned_settings_are_copies():
    manager = GameConfigManager.from_app_config({})
    manager.get_game_config('dice')['paytable']['small'] = 100
    assert manager.get_game_config('dice')['paytable']['small'] == DEFAULT_GAME_SETTINGS['dice']['paytable']['small']

def test_client_config_hides_server_settings():
    manager = GameConfigManager.from_app_config({})
    crash = manager.get_client_config('crash')
    assert crash['game'] == 'crash'
    assert crash['min_bet'] == str(DEFAULT_GAME_SETTINGS['crash']['min_bet'])
    assert 'house_edge_factor' not in crash
    assert 'base_rate' not in crash
    mines = manager.get_client_config('mines')
    assert 'paytable' not in mines
    assert mines['grid_size'] == 25

def test_unknown_game_lookups_return_none():
    manager = GameConfigManager.from_app_config({})
    assert manager.get_game_config('roulette') is None
    assert manager.get_client_config('roulette') is None
    assert len(manager.all_client_configs()) == len(manager.game_keys())
