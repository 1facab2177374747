"""
Game variants.

Every game exposes the same capability to the settlement orchestrator:

    validate_stake(stake)                     -> Decimal, or InvalidStakeException
    validate_prediction(prediction)           -> normalized prediction, or ValidationException
    draw(rng, stake, prediction)              -> outcome dict (JSON-serializable)
    compute_payout(stake, outcome, prediction)-> Decimal, pure

Phase transitions are shared by all variants and live in WagerSession.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from minigames_be.exceptions import InvalidStakeException, ValidationException
from minigames_be.utils import (
    coinflip_helper, crash_helper, dice_helper, mines_helper, slots_helper
)
from minigames_be.utils.money import to_amount

INSTANT = 'instant'
BOARD = 'board'
ROUND = 'round'


class Game:
    key = None
    kind = INSTANT

    def __init__(self, settings: Dict[str, Any]):
        self.settings = settings
        self.name = settings.get('name', self.key)
        self.min_bet = to_amount(settings['min_bet'])
        self.max_bet = to_amount(settings['max_bet'])

    @property
    def resolves_on_commit(self):
        return self.kind == INSTANT

    def validate_stake(self, stake) -> Decimal:
        if isinstance(stake, bool) or stake is None:
            raise InvalidStakeException(status_message="Stake must be a number.")
        try:
            raw = Decimal(repr(stake) if isinstance(stake, float) else str(stake))
        except InvalidOperation:
            raise InvalidStakeException(status_message="Stake must be a number.")
        if not raw.is_finite():
            raise InvalidStakeException(status_message="Stake must be a number.")
        amount = to_amount(raw)
        if amount != raw:
            raise InvalidStakeException(
                status_message="Stake can have at most two decimal places.",
                details={'stake': str(raw)}
            )
        if amount <= 0 or amount < self.min_bet or amount > self.max_bet:
            raise InvalidStakeException(
                status_message=f"Stake must be between {self.min_bet} and {self.max_bet}.",
                details={'stake': str(amount), 'min_bet': str(self.min_bet), 'max_bet': str(self.max_bet)}
            )
        return amount

    def validate_prediction(self, prediction):
        return prediction

    def draw(self, rng, stake=None, prediction=None) -> Dict[str, Any]:
        raise NotImplementedError

    def compute_payout(self, stake, outcome, prediction=None) -> Decimal:
        raise NotImplementedError

    @staticmethod
    def multiplier_for(stake, payout):
        if not stake:
            return 0.0
        return round(float(Decimal(payout) / Decimal(stake)), 4)


class DiceGame(Game):
    key = 'dice'

    def validate_prediction(self, prediction):
        result = dice_helper.validate_selection(prediction)
        if not result['success']:
            raise ValidationException(status_message=result['error'], details={'prediction': prediction})
        return prediction

    def draw(self, rng, stake=None, prediction=None):
        dice = dice_helper.roll_dice(rng)
        total = sum(dice)
        return {'dice': dice, 'total': total, 'result': dice_helper.classify_total(total)}

    def compute_payout(self, stake, outcome, prediction=None):
        return dice_helper.compute_payout(stake, outcome, prediction, self.settings.get('paytable'))


class CoinFlipGame(Game):
    key = 'coinflip'

    def validate_prediction(self, prediction):
        result = coinflip_helper.validate_side(prediction)
        if not result['success']:
            raise ValidationException(status_message=result['error'], details={'prediction': prediction})
        return prediction

    def draw(self, rng, stake=None, prediction=None):
        return {'side': coinflip_helper.flip_coin(rng)}

    def compute_payout(self, stake, outcome, prediction=None):
        return coinflip_helper.compute_payout(stake, outcome, prediction, self.settings.get('paytable'))


class CardComingGame(Game):
    key = 'card_coming'

    def draw(self, rng, stake=None, prediction=None):
        return slots_helper.spin_reels(
            rng,
            self.settings.get('reels') or slots_helper.CARD_COMING_REELS,
            self.settings.get('multiplier_reel') or slots_helper.CARD_COMING_MULTIPLIER_REEL,
        )

    def compute_payout(self, stake, outcome, prediction=None):
        return slots_helper.card_coming_payout(
            stake, outcome,
            symbol_values=self.settings.get('paytable'),
            cap_tiers=self.settings.get('cap_tiers') or (),
            default_cap_multiple=self.settings.get('cap_multiple', slots_helper.CARD_COMING_DEFAULT_CAP_MULTIPLE),
        )


class TakaComingGame(Game):
    key = 'taka_coming'

    def draw(self, rng, stake=None, prediction=None):
        high_stake = self.settings.get('high_stake', slots_helper.TAKA_COMING_HIGH_STAKE)
        reels, multiplier_reel = slots_helper.taka_coming_strips(stake, high_stake)
        outcome = slots_helper.spin_reels(rng, reels, multiplier_reel)
        outcome['high'] = Decimal(stake) >= Decimal(high_stake)
        return outcome

    def compute_payout(self, stake, outcome, prediction=None):
        return slots_helper.taka_coming_payout(
            stake, outcome,
            cap_tiers=self.settings.get('cap_tiers'),
            default_cap_multiple=self.settings.get('cap_multiple', slots_helper.TAKA_COMING_DEFAULT_CAP_MULTIPLE),
        )


class MinesGame(Game):
    key = 'mines'
    kind = BOARD

    def __init__(self, settings):
        super().__init__(settings)
        self.grid_size = settings.get('grid_size', mines_helper.GRID_SIZE)
        self.house_edge_factor = settings.get('house_edge_factor', mines_helper.HOUSE_EDGE_FACTOR)
        paytable = settings.get('paytable') or {}
        self.curated = {int(k): list(v) for k, v in paytable.items()}
        self._tables = {}

    def validate_prediction(self, prediction):
        result = mines_helper.validate_mine_count(prediction, self.grid_size)
        if not result['success']:
            raise ValidationException(status_message=result['error'], details={'mine_count': prediction})
        return prediction

    def multiplier_table(self, mine_count):
        if mine_count not in self._tables:
            self._tables[mine_count] = mines_helper.build_multiplier_table(
                mine_count, self.grid_size, self.house_edge_factor, self.curated
            )
        return self._tables[mine_count]

    def max_safe_steps(self, mine_count):
        return mines_helper.max_safe_steps(mine_count, self.grid_size)

    def draw(self, rng, stake=None, prediction=None):
        return {'mine_positions': mines_helper.place_mines(rng, prediction, self.grid_size)}

    def compute_payout(self, stake, outcome, prediction=None):
        return mines_helper.compute_payout(stake, outcome, self.multiplier_table(prediction))


class CrashGame(Game):
    key = 'crash'
    kind = ROUND

    def __init__(self, settings):
        super().__init__(settings)
        self.house_edge_factor = settings.get('house_edge_factor', crash_helper.HOUSE_EDGE_FACTOR)
        self.max_crash_point = settings.get('max_crash_point', crash_helper.MAX_CRASH_POINT)
        self.base_rate = settings.get('base_rate', crash_helper.BASE_RATE)
        self.acceleration = settings.get('acceleration', crash_helper.ACCELERATION)

    def validate_prediction(self, prediction):
        """prediction is the auto cash-out threshold; falls back to the configured default."""
        if prediction is None:
            prediction = self.settings.get('auto_cashout_threshold')
        result = crash_helper.validate_auto_cashout(prediction, self.max_crash_point)
        if not result['success']:
            raise ValidationException(status_message=result['error'], details={'auto_cashout': prediction})
        return float(prediction) if prediction is not None else None

    def draw(self, rng, stake=None, prediction=None):
        return {'crash_point': crash_helper.generate_crash_point(rng, self.house_edge_factor, self.max_crash_point)}

    def multiplier_at(self, elapsed_seconds):
        return crash_helper.multiplier_at(elapsed_seconds, self.base_rate, self.acceleration)

    def seconds_to_reach(self, multiplier):
        return crash_helper.seconds_to_reach(multiplier, self.base_rate, self.acceleration)

    def compute_payout(self, stake, outcome, prediction=None):
        return crash_helper.compute_payout(stake, outcome)


GAME_CLASSES = {cls.key: cls for cls in (DiceGame, CoinFlipGame, CardComingGame, TakaComingGame, MinesGame, CrashGame)}


def build_game_registry(config_manager) -> Dict[str, Game]:
    registry = {}
    for key in config_manager.game_keys():
        cls = GAME_CLASSES.get(key)
        if cls is not None:
            registry[key] = cls(config_manager.get_game_config(key))
    return registry
