# settlement/utils/__init__.py

from settlement.utils.money import (
    q,
    round_rupees,
    to_paise,
    from_paise,
    split_commission,
)

__all__ = [
    'q',
    'round_rupees',
    'to_paise',
    'from_paise',
    'split_commission',
]
