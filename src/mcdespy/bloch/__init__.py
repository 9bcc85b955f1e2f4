from .core import (
    block_diag,
    exchange,
    exchange_rates,
    infinitesimal_rf,
    magnitude,
    off_resonance,
    relaxation,
    repeat_block,
    rf_rotation,
    spoiling,
    sum_pools,
    transverse_complex,
    z_rotation,
)
from .equations import (
    one_spgr,
    one_ssfp,
    one_ssfp_finite,
    three_spgr,
    three_ssfp,
    three_ssfp_finite,
    two_spgr,
    two_ssfp,
    two_ssfp_finite,
)

__all__ = [
    "block_diag",
    "exchange",
    "exchange_rates",
    "infinitesimal_rf",
    "magnitude",
    "off_resonance",
    "one_spgr",
    "one_ssfp",
    "one_ssfp_finite",
    "relaxation",
    "repeat_block",
    "rf_rotation",
    "spoiling",
    "sum_pools",
    "three_spgr",
    "three_ssfp",
    "three_ssfp_finite",
    "transverse_complex",
    "two_spgr",
    "two_ssfp",
    "two_ssfp_finite",
    "z_rotation",
]
