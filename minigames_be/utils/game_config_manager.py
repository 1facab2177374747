"""
Game Configuration Manager
Holds the per-game settings (bet limits, paytables, house edge, round timing)
and exposes a sanitized view for clients.
"""

import copy
from typing import Any, Dict, Optional

from minigames_be.config_validator import (
    ConfigValidationError, load_game_settings_file, validate_game_settings
)
from minigames_be.utils import (
    coinflip_helper, crash_helper, dice_helper, mines_helper, slots_helper
)

DEFAULT_GAME_SETTINGS: Dict[str, Dict[str, Any]] = {
    'dice': {
        'name': 'BigSmall',
        'min_bet': dice_helper.STAKE_CONFIG['min_bet'],
        'max_bet': dice_helper.STAKE_CONFIG['max_bet'],
        'paytable': dict(dice_helper.PAYOUT_MULTIPLIERS),
    },
    'coinflip': {
        'name': 'HeadAndTail',
        'min_bet': coinflip_helper.STAKE_CONFIG['min_bet'],
        'max_bet': coinflip_helper.STAKE_CONFIG['max_bet'],
        'paytable': dict(coinflip_helper.PAYOUT_MULTIPLIERS),
    },
    'mines': {
        'name': 'Minebd',
        'min_bet': mines_helper.STAKE_CONFIG['min_bet'],
        'max_bet': mines_helper.STAKE_CONFIG['max_bet'],
        'grid_size': mines_helper.GRID_SIZE,
        'house_edge_factor': mines_helper.HOUSE_EDGE_FACTOR,
        # keyed by mine count as a string so the table round-trips through JSON
        'paytable': {str(k): list(v) for k, v in mines_helper.CURATED_MULTIPLIERS.items()},
    },
    'card_coming': {
        'name': 'CardComing',
        'min_bet': slots_helper.STAKE_CONFIG['min_bet'],
        'max_bet': slots_helper.STAKE_CONFIG['max_bet'],
        'paytable': dict(slots_helper.CARD_COMING_SYMBOL_VALUES),
        'reels': copy.deepcopy(slots_helper.CARD_COMING_REELS),
        'multiplier_reel': list(slots_helper.CARD_COMING_MULTIPLIER_REEL),
        'cap_tiers': [],
        'cap_multiple': slots_helper.CARD_COMING_DEFAULT_CAP_MULTIPLE,
    },
    'taka_coming': {
        'name': 'TakaComing',
        'min_bet': slots_helper.STAKE_CONFIG['min_bet'],
        'max_bet': slots_helper.STAKE_CONFIG['max_bet'],
        'high_stake': slots_helper.TAKA_COMING_HIGH_STAKE,
        'cap_tiers': [[upper, cap] for upper, cap in slots_helper.TAKA_COMING_CAP_TIERS],
        'cap_multiple': slots_helper.TAKA_COMING_DEFAULT_CAP_MULTIPLE,
    },
    'crash': {
        'name': 'AviBD',
        'min_bet': crash_helper.STAKE_CONFIG['min_bet'],
        'max_bet': crash_helper.STAKE_CONFIG['max_bet'],
        'house_edge_factor': crash_helper.HOUSE_EDGE_FACTOR,
        'max_crash_point': crash_helper.MAX_CRASH_POINT,
        'base_rate': crash_helper.BASE_RATE,
        'acceleration': crash_helper.ACCELERATION,
        'waiting_duration_seconds': 5,
        'crash_pause_seconds': 3,
        'tick_rate_hz': 60,
        'history_size': 15,
        'auto_cashout_threshold': None,
    },
}

# Keys a client may see, per game; everything else stays server-side
CLIENT_KEYS = {
    'dice': ('paytable',),
    'coinflip': ('paytable',),
    'mines': ('grid_size',),
    'card_coming': ('paytable', 'multiplier_reel'),
    'taka_coming': ('high_stake',),
    'crash': ('max_crash_point', 'waiting_duration_seconds', 'crash_pause_seconds', 'auto_cashout_threshold'),
}


def _merge(base: Dict[str, Dict[str, Any]], overrides: Dict[str, Dict[str, Any]], source: str):
    for game, options in (overrides or {}).items():
        if game not in base:
            raise ConfigValidationError(f"{source}: unknown game '{game}'")
        if not isinstance(options, dict):
            raise ConfigValidationError(f"{source}: settings for '{game}' must be an object")
        base[game].update(copy.deepcopy(options))


class GameConfigManager:
    """Merged, validated game settings: built-in defaults < GAME_SETTINGS_FILE < GAME_SETTINGS."""

    def __init__(self, settings: Dict[str, Dict[str, Any]]):
        errors = validate_game_settings(settings)
        if errors:
            raise ConfigValidationError("Invalid game settings:\n" + "\n".join(f"  - {e}" for e in errors))
        self._settings = settings

    @classmethod
    def from_app_config(cls, config) -> 'GameConfigManager':
        settings = copy.deepcopy(DEFAULT_GAME_SETTINGS)
        settings_file = config.get('GAME_SETTINGS_FILE')
        if settings_file:
            _merge(settings, load_game_settings_file(settings_file), settings_file)
        _merge(settings, config.get('GAME_SETTINGS') or {}, 'GAME_SETTINGS')
        return cls(settings)

    def game_keys(self):
        return list(self._settings.keys())

    def get_game_config(self, game: str) -> Optional[Dict[str, Any]]:
        """Full server-side settings for one game, or None."""
        settings = self._settings.get(game)
        return copy.deepcopy(settings) if settings is not None else None

    def get_client_config(self, game: str) -> Optional[Dict[str, Any]]:
        settings = self._settings.get(game)
        if settings is None:
            return None
        client_config = {
            'game': game,
            'name': settings.get('name', game),
            'min_bet': str(settings['min_bet']),
            'max_bet': str(settings['max_bet']),
        }
        for key in CLIENT_KEYS.get(game, ()):
            if key in settings:
                client_config[key] = copy.deepcopy(settings[key])
        return client_config

    def all_client_configs(self):
        return [self.get_client_config(game) for game in self._settings]
